"""
Lexical primitives shared by the interpreter, flows and lookup.

Every parser is a pure function that returns ``None`` when the input does not
fit its grammar. Classifiers are plain vocabulary checks; callers decide what
an ambiguous word ("no") means in their context.
"""

import math
import re
from datetime import date, datetime, timedelta, timezone

from dateutil import parser as date_parser

STANDARD_CATEGORIES = [
    "Groceries",
    "Dining Out",
    "Rent",
    "Utilities",
    "Transportation",
    "Entertainment",
    "Shopping",
    "Health",
    "Travel",
    "Other",
]

DEFAULT_CURRENCY = "USD"

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "INR": "₹",
}

ISO_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

SKIP_WORDS = {"skip", "no", "none", "nah", "n/a"}
EXIT_WORDS = {"exit", "close", "cancel", "stop", "bye", "goodbye"}
EXIT_PHRASES = [
    "no thanks",
    "no thank you",
    "no help needed",
    "nothing else",
    "that is all",
    "that will be all",
    "all good",
    "im good",
    "i'm good",
    "all set",
]
YES_WORDS = {"yes", "y", "sure", "yeah", "yep", "ok", "okay", "affirmative"}
NO_WORDS = {"no", "n", "nope", "nah"}
DONE_WORDS = {
    "done",
    "finished",
    "all done",
    "no more",
    "complete",
    "none",
    "that is all",
    "that's all",
    "thats all",
}


def parse_amount(raw: str | None) -> float | None:
    """Parse a loosely formatted amount like "$1,234.50".

    Everything except digits, ``.``, ``,`` and ``-`` is dropped and commas are
    treated as thousands separators. The sign is preserved.
    """
    if not raw:
        return None
    cleaned = re.sub(r"[^0-9.,-]", "", raw).replace(",", "")
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def normalize_category(raw: str | None) -> str | None:
    if not raw:
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None

    lowered = trimmed.lower()
    for label in STANDARD_CATEGORIES:
        if label.lower() == lowered:
            return label

    return re.sub(r"\b\w", lambda m: m.group(0).upper(), lowered)


def utc_today(now: datetime | None = None) -> date:
    """Calendar day in UTC, the same day expenses are stamped and filtered by."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).date()


def parse_calendar_day(raw: str | None, today: date | None = None) -> str | None:
    """Normalize a date token to ``YYYY-MM-DD``.

    Accepts strict ISO days, "today"/"yesterday" (relative to ``today``,
    default the UTC day), and anything dateutil can read ("June 12 2024",
    "12/06/2024").
    """
    if not raw:
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None

    today = today or utc_today()
    lowered = trimmed.lower()
    if lowered == "today":
        return today.isoformat()
    if lowered == "yesterday":
        return (today - timedelta(days=1)).isoformat()

    if ISO_DAY_RE.match(trimmed):
        try:
            return date.fromisoformat(trimmed).isoformat()
        except ValueError:
            pass

    try:
        parsed = date_parser.parse(trimmed)
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()


def format_currency(amount: float, currency: str = DEFAULT_CURRENCY) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    body = f"{abs(amount):,.2f}"
    sign = "-" if amount < 0 else ""
    if symbol:
        return f"{sign}{symbol}{body}"
    return f"{sign}{currency.upper()} {body}"


def format_plain_amount(amount: float) -> str:
    """Render an amount the way a user would type it: "40", "12.5"."""
    text = f"{round(amount, 2):.2f}"
    return text.rstrip("0").rstrip(".")


def _normalized(value: str) -> str:
    return value.strip().lower()


def is_skip(value: str) -> bool:
    return _normalized(value) in SKIP_WORDS


def is_exit(value: str) -> bool:
    normalized = _normalized(value)
    if not normalized:
        return False
    if normalized in EXIT_WORDS:
        return True
    return any(phrase in normalized for phrase in EXIT_PHRASES)


def is_yes(value: str) -> bool:
    return _normalized(value) in YES_WORDS


def is_no(value: str) -> bool:
    return _normalized(value) in NO_WORDS


def is_done(value: str) -> bool:
    return _normalized(value) in DONE_WORDS


def dedupe(items: list[str]) -> list[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
