"""
Per-user assistant session.

Routes each turn either to the active flow or to the command interpreter,
keeps the transcript, and is the one place where store failures are turned
into a user-facing message (dropping any in-progress flow).
"""

from loguru import logger

from finchat.assistant.context import AssistantContext
from finchat.assistant.flows import advance_flow, start_flow
from finchat.assistant.interpreter import interpret
from finchat.assistant.states import FlowKind
from finchat.assistant.suggestions import suggestions
from finchat.assistant.utils import DEFAULT_CURRENCY, is_exit
from finchat.db.repository import LedgerStore
from finchat.models.schemas import ChatMessage

GREETING = (
    "Hi! I can log expenses, set your monthly income, or create savings goals. "
    "Tell me what you need."
)
SIGNED_OUT = "Sign in to let me make changes for you."
FALLBACK_ERROR = "I ran into an issue handling that request."


class AssistantSession:
    def __init__(
        self,
        store: LedgerStore,
        user_id: str,
        *,
        enabled: bool = True,
        currency: str = DEFAULT_CURRENCY,
        lookup_window: int | None = None,
        recent_limit: int | None = None,
    ):
        extra = {}
        if lookup_window is not None:
            extra["lookup_window"] = lookup_window
        if recent_limit is not None:
            extra["recent_limit"] = recent_limit
        self.context = AssistantContext(store=store, user_id=user_id, currency=currency, **extra)
        self.enabled = enabled
        self.is_open = False
        self.processing = False
        self.error: str | None = None
        self.active_flow = None
        self.messages: list[ChatMessage] = [ChatMessage(role="assistant", text=GREETING)]

    @property
    def user_id(self) -> str:
        return self.context.user_id

    @property
    def active_flow_kind(self) -> FlowKind | None:
        return self.active_flow.kind if self.active_flow is not None else None

    @property
    def suggestions(self) -> list[str]:
        return suggestions(self.active_flow)

    def open(self) -> list[str]:
        was_open = self.is_open
        self.is_open = True
        if not self.enabled and not was_open:
            return self._say([SIGNED_OUT])
        return []

    @property
    def is_idle(self) -> bool:
        return not self.is_open and self.active_flow is None and not self.processing

    def reset(self) -> None:
        self.active_flow = None
        self.error = None
        self.processing = False

    def _say(self, texts: list[str]) -> list[str]:
        cleaned = [t for t in texts if t and t.strip()]
        for text in cleaned:
            self.messages.append(ChatMessage(role="assistant", text=text))
        return cleaned

    def start_flow(self, kind: FlowKind) -> list[str]:
        if not self.enabled:
            return self._say(["Sign in to start that task."])
        init = start_flow(kind)
        self.active_flow = init.state
        self.error = None
        self.is_open = True
        logger.info("Started {} flow for {}", kind.value, self.user_id)
        return self._say([init.intro])

    async def submit(self, text: str) -> list[str]:
        """Handle one user turn and return the assistant's replies."""
        trimmed = (text or "").strip()
        if not trimmed or self.processing:
            return []

        self.messages.append(ChatMessage(role="user", text=trimmed))
        self.is_open = True
        if not self.enabled:
            return self._say([SIGNED_OUT])

        # A bare "no" closes the assistant only when no flow is asking a yes/no question
        wants_exit = is_exit(trimmed) or (self.active_flow is None and trimmed.lower() == "no")

        self.processing = True
        self.error = None
        try:
            if wants_exit:
                if self.active_flow is not None:
                    logger.info("Cancelled {} flow for {}", self.active_flow.kind.value, self.user_id)
                    self.active_flow = None
                    replies = self._say(["No problem, cancelling that."])
                else:
                    replies = self._say(["Understood. I'll hide for now."])
                self.is_open = False
                return replies

            if self.active_flow is not None:
                result = await advance_flow(self.context, self.active_flow, trimmed)
                self.active_flow = result.next_state
                return self._say(result.messages)

            response = await interpret(self.context, trimmed)
            replies = self._say([response.message])
            if response.start_flow is not None:
                replies += self.start_flow(response.start_flow)
            return replies
        except Exception as e:
            logger.error("Error handling turn for {}: {}", self.user_id, e)
            self.error = str(e) or "Something went wrong"
            self.active_flow = None
            return self._say([str(e) or FALLBACK_ERROR])
        finally:
            self.processing = False


class SessionManager:
    """One in-memory session per user id."""

    def __init__(self, store: LedgerStore, **session_options):
        self.store = store
        self.session_options = session_options
        self._sessions: dict[str, AssistantSession] = {}

    def get(self, user_id: str) -> AssistantSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = AssistantSession(self.store, user_id, **self.session_options)
            self._sessions[user_id] = session
        return session

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def drop(self, user_id: str) -> bool:
        return self._sessions.pop(user_id, None) is not None

    def release(self, session: AssistantSession) -> bool:
        """Forget ``session`` once the user has closed it and no flow is pending."""
        if not session.is_idle or self._sessions.get(session.user_id) is not session:
            return False
        del self._sessions[session.user_id]
        logger.debug("Released idle session for {}", session.user_id)
        return True
