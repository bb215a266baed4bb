import itertools
from datetime import datetime, timedelta, timezone

import pytest

from finchat.assistant.context import AssistantContext
from finchat.db.repository import ExpenseNotFoundError, LedgerRepository
from finchat.models.schemas import Expense


class RecordingStore:
    """In-memory stand-in for the ledger that records every call."""

    def __init__(self, expenses: list[Expense] | None = None):
        # Seeded newest first, like the real store returns them
        self.expenses = list(expenses or [])
        self.calls: list[tuple] = []
        self.fail_with: Exception | None = None
        self._ids = itertools.count(1000)

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def calls_to(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def add_expense(self, user_id, expense):
        self._maybe_fail()
        self.calls.append(("add_expense", user_id, expense))
        return next(self._ids)

    async def update_expense(self, user_id, expense_id, changes):
        self._maybe_fail()
        if not any(e.id == expense_id for e in self.expenses):
            raise ExpenseNotFoundError(expense_id)
        self.calls.append(("update_expense", user_id, expense_id, changes))

    async def delete_expense(self, user_id, expense_id):
        self._maybe_fail()
        if not any(e.id == expense_id for e in self.expenses):
            raise ExpenseNotFoundError(expense_id)
        self.calls.append(("delete_expense", user_id, expense_id))
        self.expenses = [e for e in self.expenses if e.id != expense_id]

    async def fetch_recent_expenses(self, user_id, max_count):
        self.calls.append(("fetch_recent_expenses", user_id, max_count))
        return self.expenses[:max_count]

    async def add_goal(self, user_id, goal):
        self._maybe_fail()
        self.calls.append(("add_goal", user_id, goal))
        return next(self._ids)

    async def upsert_user_profile(self, user_id, profile):
        self._maybe_fail()
        self.calls.append(("upsert_user_profile", user_id, profile))


@pytest.fixture
def make_expense():
    def _make(id, amount, category=None, note=None, day="2024-06-12", created_at=None):
        if created_at is None:
            created_at = datetime.fromisoformat(day).replace(hour=12, tzinfo=timezone.utc)
        return Expense(
            id=id,
            user_id="user-1",
            amount=amount,
            total_amount=amount,
            category=category,
            note=note,
            created_at=created_at,
        )

    return _make


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def seeded_store(make_expense):
    return RecordingStore(
        [
            make_expense(5, 18.5, "Dining Out", "tacos", day="2024-06-14"),
            make_expense(4, 45, "Groceries", day="2024-06-12"),
            make_expense(3, 1200, "Rent", day="2024-06-12"),
            make_expense(2, 60, "Groceries", "weekly shop", day="2024-06-05"),
            make_expense(1, 9.99, None, day="2024-06-01"),
        ]
    )


@pytest.fixture
def ctx(store):
    return AssistantContext(store=store, user_id="user-1")


@pytest.fixture
def seeded_ctx(seeded_store):
    return AssistantContext(store=seeded_store, user_id="user-1")


@pytest.fixture
def clock():
    """Deterministic clock: each call is one hour after the previous."""
    start = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
    ticks = itertools.count()

    def _now():
        return start + timedelta(hours=next(ticks))

    return _now


@pytest.fixture
def repo(clock):
    return LedgerRepository(None, clock=clock)
