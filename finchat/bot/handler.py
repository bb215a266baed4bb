from loguru import logger
from telegram import ReplyKeyboardMarkup, ReplyKeyboardRemove, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)
from telegram.helpers import escape_markdown

from finchat.assistant.interpreter import COMMAND_HELP
from finchat.assistant.lookup import decorate_expense
from finchat.assistant.session import AssistantSession
from finchat.config import get_settings
from finchat.deps import get_repository, get_sessions

settings = get_settings()

KEYBOARD_COLUMNS = 3
RECENT_COUNT = 10


def build_keyboard(suggestions: list[str]) -> ReplyKeyboardMarkup | ReplyKeyboardRemove:
    """Lay quick replies out as a reply keyboard, a few buttons per row."""
    if not suggestions:
        return ReplyKeyboardRemove()
    rows = [
        suggestions[i : i + KEYBOARD_COLUMNS]
        for i in range(0, len(suggestions), KEYBOARD_COLUMNS)
    ]
    return ReplyKeyboardMarkup(rows, resize_keyboard=True, one_time_keyboard=True)


def _session_for(update: Update) -> AssistantSession:
    return get_sessions().get(str(update.effective_user.id))


async def _reply(update: Update, session: AssistantSession, replies: list[str]) -> None:
    """Send each reply; the keyboard rides on the last one."""
    if replies:
        for text in replies[:-1]:
            await update.message.reply_text(text)
        await update.message.reply_text(
            replies[-1], reply_markup=build_keyboard(session.suggestions)
        )
    get_sessions().release(session)


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start command."""
    session = _session_for(update)
    session.open()
    await _reply(update, session, [session.messages[0].text, COMMAND_HELP])


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /help command."""
    session = _session_for(update)
    await _reply(
        update,
        session,
        [
            COMMAND_HELP,
            "Commands:\n"
            "/recent — Show your latest expenses\n"
            "/cancel — Stop the current step-by-step task\n"
            "/help — Show this message",
        ],
    )


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /cancel command."""
    session = _session_for(update)
    replies = await session.submit("cancel")
    await _reply(update, session, replies)


async def recent_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /recent command."""
    user_id = str(update.effective_user.id)
    expenses = await get_repository().fetch_recent_expenses(user_id, RECENT_COUNT)
    items = [m for m in (decorate_expense(e, settings.currency) for e in expenses) if m]
    if not items:
        await update.message.reply_text("No expenses logged yet.")
        return

    lines = ["*Recent expenses:*\n"]
    for i, item in enumerate(items, 1):
        summary = escape_markdown(item.summary, version=1)
        lines.append(f"{i}. {summary} — {item.display_date}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle incoming text messages. Every turn goes through the user's session."""
    user_text = update.message.text.strip()
    logger.info("Telegram message: {}", user_text)

    await update.message.chat.send_action("typing")

    session = _session_for(update)
    replies = await session.submit(user_text)
    await _reply(update, session, replies)


async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle voice notes. Only captioned ones can be understood."""
    if not update.message.caption:
        await update.message.reply_text(
            "I received your voice note! Unfortunately I can't transcribe it yet.\n"
            "Could you type out the message instead?"
        )
        return

    session = _session_for(update)
    replies = await session.submit(update.message.caption)
    await _reply(update, session, replies)


def build_bot_app() -> Application:
    """Build and return the Telegram bot application."""
    app = Application.builder().token(settings.telegram_bot_token).build()

    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("cancel", cancel_command))
    app.add_handler(CommandHandler("recent", recent_command))

    app.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    return app
