from dataclasses import dataclass

from finchat.assistant.utils import DEFAULT_CURRENCY, format_currency
from finchat.db.repository import LedgerStore

LOOKUP_WINDOW = 120
RECENT_LIMIT = 15


@dataclass(frozen=True)
class AssistantContext:
    """Who the turn is for and where their records live.

    Passed explicitly to the interpreter and flows so every store call names
    its user.
    """

    store: LedgerStore
    user_id: str
    currency: str = DEFAULT_CURRENCY
    lookup_window: int = LOOKUP_WINDOW
    recent_limit: int = RECENT_LIMIT

    def money(self, amount: float) -> str:
        return format_currency(amount, self.currency)
