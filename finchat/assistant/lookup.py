"""
Fuzzy expense lookup.

Free text such as "groceries on 2024-06-12", "June 12" or "Dining Out" is
resolved into an optional calendar day and category, then matched against a
bounded window of the user's most recent expenses.
"""

import re
from datetime import date
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from finchat.assistant.utils import (
    format_currency,
    is_skip,
    normalize_category,
    parse_calendar_day,
)
from finchat.models.schemas import Expense

if TYPE_CHECKING:
    from finchat.assistant.context import AssistantContext

EMBEDDED_ISO_RE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")
SEGMENT_SPLIT_RE = re.compile(r"[,;]| and ", re.IGNORECASE)
FILLER_RE = re.compile(r"^(?:on|from|at|in|for|dated|of)\b|\b(?:on|from|at|in|for|dated|of)$", re.IGNORECASE)

UNFILTERED_WORDS = {"recent", "latest", "all", "any", "show all", "list", "everything"}


class ExpenseLookupFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    date_iso: str | None = None
    category: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.date_iso is None and self.category is None

    def describe(self) -> str:
        parts = []
        if self.category:
            parts.append(self.category)
        if self.date_iso:
            parts.append(f"on {self.date_iso}")
        return " ".join(parts)


class ExpenseWithMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    expense: Expense
    display_date: str
    formatted_amount: str
    iso_day: str
    summary: str


class LookupResult(BaseModel):
    matches: list[ExpenseWithMeta]
    recent_fallback: list[ExpenseWithMeta]

    @property
    def has_any(self) -> bool:
        return bool(self.recent_fallback)


def _clean_fragment(text: str) -> str:
    cleaned = text.strip(" ,;.-")
    # Drop connector words left around a removed date ("groceries on")
    while True:
        stripped = FILLER_RE.sub("", cleaned).strip(" ,;.-")
        if stripped == cleaned:
            return cleaned
        cleaned = stripped


def _remove_text(text: str, fragment: str) -> str:
    return re.sub(re.escape(fragment), " ", text, flags=re.IGNORECASE)


def _category_from(fragment: str) -> str | None:
    cleaned = _clean_fragment(fragment)
    if not cleaned or any(ch.isdigit() for ch in cleaned):
        return None
    return normalize_category(cleaned)


def resolve_filters(raw: str | None, today: date | None = None) -> ExpenseLookupFilters:
    text = (raw or "").strip()
    if not text or is_skip(text) or text.lower() in UNFILTERED_WORDS:
        return ExpenseLookupFilters()

    date_iso = None
    date_text = None
    category = None

    iso_match = EMBEDDED_ISO_RE.search(text)
    if iso_match:
        date_iso = parse_calendar_day(iso_match.group(0), today=today)
        if date_iso:
            date_text = iso_match.group(0)

    for segment in SEGMENT_SPLIT_RE.split(text):
        segment = segment.strip()
        if not segment:
            continue
        if date_iso is None:
            parsed = parse_calendar_day(segment, today=today)
            if parsed:
                date_iso, date_text = parsed, segment
                continue
        if category is None:
            remainder = _remove_text(segment, date_text) if date_text else segment
            category = _category_from(remainder)

    if date_iso is None:
        date_iso = parse_calendar_day(text, today=today)
        if date_iso:
            date_text = text

    if category is None:
        remainder = _remove_text(text, date_text) if date_text else text
        category = _category_from(remainder)

    return ExpenseLookupFilters(date_iso=date_iso, category=category)


def decorate_expense(expense: Expense, currency: str = "USD") -> ExpenseWithMeta | None:
    """Attach display fields; expenses without a creation time are dropped."""
    if expense.created_at is None:
        return None
    created = expense.created_at
    formatted = format_currency(expense.amount, currency)
    summary = f"{formatted} {expense.category or 'Uncategorized'}"
    if expense.note:
        summary += f" ({expense.note})"
    return ExpenseWithMeta(
        expense=expense,
        display_date=f"{created:%b} {created.day}, {created.year}",
        formatted_amount=formatted,
        iso_day=created.date().isoformat(),
        summary=summary,
    )


async def lookup_expenses(
    ctx: "AssistantContext", filters: ExpenseLookupFilters
) -> LookupResult:
    records = await ctx.store.fetch_recent_expenses(ctx.user_id, ctx.lookup_window)
    decorated = [
        item
        for item in (decorate_expense(e, ctx.currency) for e in records)
        if item is not None
    ]

    matches = decorated
    if filters.date_iso:
        matches = [item for item in matches if item.iso_day == filters.date_iso]
    if filters.category:
        wanted = filters.category.lower()
        matches = [
            item
            for item in matches
            if item.expense.category and item.expense.category.lower() == wanted
        ]

    return LookupResult(matches=matches, recent_fallback=decorated[: ctx.recent_limit])
