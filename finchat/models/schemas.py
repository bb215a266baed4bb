from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class SplitEntry(BaseModel):
    label: str
    amount: float


class Expense(BaseModel):
    id: int | None = None
    user_id: str
    amount: float
    total_amount: float | None = None
    category: str | None = None
    note: str | None = None
    splits: list[SplitEntry] = []
    created_at: datetime | None = None


class ExpenseCreate(BaseModel):
    amount: float
    total_amount: float | None = None
    category: str | None = None
    note: str | None = None
    splits: list[SplitEntry] | None = None


class ExpenseUpdate(BaseModel):
    amount: float | None = None
    total_amount: float | None = None
    category: str | None = None
    note: str | None = None
    splits: list[SplitEntry] | None = None


class Goal(BaseModel):
    id: int | None = None
    user_id: str
    title: str
    target_amount: float
    deadline: str | None = None
    category: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GoalCreate(BaseModel):
    title: str
    target_amount: float
    deadline: str | None = None
    category: str | None = None


class UserProfile(BaseModel):
    user_id: str
    monthly_income: float | None = None
    currency: str | None = None
    updated_at: datetime | None = None


class ProfileUpdate(BaseModel):
    monthly_income: float | None = None
    currency: str | None = None


class ActivityEntry(BaseModel):
    id: int | None = None
    user_id: str
    type: Literal["expense", "goal"]
    reference_id: int
    title: str
    amount: float
    snapshot: dict[str, Any] | None = None
    created_at: datetime | None = None


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)


class ChatRequest(BaseModel):
    user_id: str
    message: str


class ChatResponse(BaseModel):
    replies: list[str]
    suggestions: list[str]
    active_flow: str | None = None
    error: str | None = None


class TranscriptResponse(BaseModel):
    messages: list[ChatMessage]
    suggestions: list[str]
    active_flow: str | None = None
