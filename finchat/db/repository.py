from datetime import datetime, timezone
from typing import Callable, Protocol

from loguru import logger
from tinydb import Query, TinyDB
from tinydb.storages import MemoryStorage

from finchat.models.schemas import (
    ActivityEntry,
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    Goal,
    GoalCreate,
    ProfileUpdate,
    UserProfile,
)


class LedgerError(Exception):
    """Base error for ledger store failures."""


class ExpenseNotFoundError(LedgerError):
    def __init__(self, expense_id: int):
        super().__init__(f"Expense #{expense_id} was not found.")
        self.expense_id = expense_id


class LedgerStore(Protocol):
    """Operations the assistant needs from a per-user record store."""

    async def add_expense(self, user_id: str, expense: ExpenseCreate) -> int: ...

    async def update_expense(
        self, user_id: str, expense_id: int, changes: ExpenseUpdate
    ) -> None: ...

    async def delete_expense(self, user_id: str, expense_id: int) -> None: ...

    async def fetch_recent_expenses(self, user_id: str, max_count: int) -> list[Expense]: ...

    async def add_goal(self, user_id: str, goal: GoalCreate) -> int: ...

    async def upsert_user_profile(self, user_id: str, profile: ProfileUpdate) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerRepository:
    """TinyDB-backed ledger. Every record is partitioned by ``user_id``."""

    def __init__(
        self,
        db_path: str | None = "finchat_ledger.json",
        clock: Callable[[], datetime] | None = None,
    ):
        if db_path:
            self.db = TinyDB(db_path)
        else:
            self.db = TinyDB(storage=MemoryStorage)
        self.expenses = self.db.table("expenses")
        self.goals = self.db.table("goals")
        self.profiles = self.db.table("profiles")
        self.activity = self.db.table("activity")
        self._now = clock or _utcnow

    # -- expenses ---------------------------------------------------------

    async def add_expense(self, user_id: str, expense: ExpenseCreate) -> int:
        record = Expense(
            user_id=user_id,
            amount=expense.amount,
            total_amount=expense.total_amount if expense.total_amount is not None else expense.amount,
            category=expense.category or None,
            note=expense.note or None,
            splits=expense.splits or [],
            created_at=self._now(),
        )
        data = record.model_dump(mode="json")
        data.pop("id", None)
        doc_id = self.expenses.insert(data)
        logger.info("Added expense #{} for {}", doc_id, user_id)

        self._log_activity(
            ActivityEntry(
                user_id=user_id,
                type="expense",
                reference_id=doc_id,
                title=record.category or "Expense",
                amount=record.amount,
                snapshot={
                    "total_amount": record.total_amount,
                    "note": record.note,
                    "splits": [s.model_dump() for s in record.splits],
                },
            )
        )
        return doc_id

    async def get_expense(self, user_id: str, expense_id: int) -> Expense | None:
        doc = self.expenses.get(doc_id=expense_id)
        if doc is None or doc.get("user_id") != user_id:
            return None
        return Expense(id=doc.doc_id, **doc)

    async def update_expense(
        self, user_id: str, expense_id: int, changes: ExpenseUpdate
    ) -> None:
        if await self.get_expense(user_id, expense_id) is None:
            raise ExpenseNotFoundError(expense_id)
        # Only provided fields are written
        updates = changes.model_dump(mode="json", exclude_none=True)
        if updates:
            self.expenses.update(updates, doc_ids=[expense_id])
        logger.info("Updated expense #{} for {}", expense_id, user_id)

    async def delete_expense(self, user_id: str, expense_id: int) -> None:
        if await self.get_expense(user_id, expense_id) is None:
            raise ExpenseNotFoundError(expense_id)
        self.expenses.remove(doc_ids=[expense_id])
        logger.info("Deleted expense #{} for {}", expense_id, user_id)

    async def fetch_recent_expenses(self, user_id: str, max_count: int = 20) -> list[Expense]:
        Ex = Query()
        docs = self.expenses.search(Ex.user_id == user_id)
        expenses = [Expense(id=doc.doc_id, **doc) for doc in docs]
        floor = datetime.min.replace(tzinfo=timezone.utc)
        expenses.sort(
            key=lambda e: (_as_aware(e.created_at) or floor, e.id or 0),
            reverse=True,
        )
        return expenses[:max_count]

    # -- goals ------------------------------------------------------------

    async def add_goal(self, user_id: str, goal: GoalCreate) -> int:
        now = self._now()
        category = goal.category.strip() if goal.category else None
        record = Goal(
            user_id=user_id,
            title=goal.title,
            target_amount=goal.target_amount,
            deadline=goal.deadline or None,
            category=category or None,
            created_at=now,
            updated_at=now,
        )
        data = record.model_dump(mode="json")
        data.pop("id", None)
        doc_id = self.goals.insert(data)
        logger.info("Added goal #{} for {}", doc_id, user_id)

        self._log_activity(
            ActivityEntry(
                user_id=user_id,
                type="goal",
                reference_id=doc_id,
                title=record.title,
                amount=record.target_amount,
                snapshot={
                    "target_amount": record.target_amount,
                    "category": record.category,
                    "deadline": record.deadline,
                },
            )
        )
        return doc_id

    async def list_goals(self, user_id: str) -> list[Goal]:
        Gl = Query()
        docs = self.goals.search(Gl.user_id == user_id)
        return [Goal(id=doc.doc_id, **doc) for doc in reversed(docs)]

    # -- profile ----------------------------------------------------------

    async def upsert_user_profile(self, user_id: str, profile: ProfileUpdate) -> None:
        Pr = Query()
        updates = profile.model_dump(mode="json", exclude_none=True)
        updates["updated_at"] = self._now().isoformat()
        self.profiles.upsert({"user_id": user_id, **updates}, Pr.user_id == user_id)
        logger.info("Updated profile for {}", user_id)

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        Pr = Query()
        doc = self.profiles.get(Pr.user_id == user_id)
        if doc is None:
            return None
        return UserProfile(**doc)

    # -- activity ---------------------------------------------------------

    def _log_activity(self, entry: ActivityEntry) -> None:
        try:
            data = entry.model_dump(mode="json")
            data.pop("id", None)
            data["created_at"] = self._now().isoformat()
            self.activity.insert(data)
        except Exception as e:
            logger.warning("Failed to log {} activity: {}", entry.type, e)

    async def recent_activity(self, user_id: str, limit: int = 20) -> list[ActivityEntry]:
        Ac = Query()
        docs = self.activity.search(Ac.user_id == user_id)
        entries = [ActivityEntry(id=doc.doc_id, **doc) for doc in docs]
        entries.sort(key=lambda a: a.id or 0, reverse=True)
        return entries[:limit]


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
