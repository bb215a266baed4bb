"""
Flow state variants.

One frozen model per flow kind, each with its own step enum and accumulated
fields. Transitions build new instances with ``model_copy(update=...)``;
nothing mutates a state in place.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from finchat.assistant.lookup import ExpenseLookupFilters, ExpenseWithMeta


class FlowKind(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"
    GOAL = "goal"
    DELETE_EXPENSE = "delete_expense"
    UPDATE_EXPENSE = "update_expense"


class ExpenseStep(str, Enum):
    AWAIT_AMOUNT = "await_amount"
    AWAIT_SELF_SHARE = "await_self_share"
    AWAIT_SPLIT_DECISION = "await_split_decision"
    AWAIT_PARTICIPANT = "await_participant"
    AWAIT_CATEGORY = "await_category"
    AWAIT_NOTE = "await_note"


class IncomeStep(str, Enum):
    AWAIT_AMOUNT = "await_amount"


class GoalStep(str, Enum):
    AWAIT_TITLE = "await_title"
    AWAIT_AMOUNT = "await_amount"


class DeleteStep(str, Enum):
    AWAIT_DATE = "await_date"
    AWAIT_SELECTION = "await_selection"


class UpdateStep(str, Enum):
    AWAIT_DATE = "await_date"
    AWAIT_SELECTION = "await_selection"
    AWAIT_NEW_AMOUNT = "await_new_amount"


class SplitParticipant(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    amount: float


class _FrozenState(BaseModel):
    model_config = ConfigDict(frozen=True)


class ExpenseFlowState(_FrozenState):
    kind: Literal[FlowKind.EXPENSE] = FlowKind.EXPENSE
    step: ExpenseStep = ExpenseStep.AWAIT_AMOUNT
    total_amount: float | None = None
    self_share: float | None = None
    remainder: float = 0.0
    participants: tuple[SplitParticipant, ...] = ()
    category: str | None = None
    note: str | None = None

    @property
    def allocated(self) -> float:
        return sum(p.amount for p in self.participants)

    @property
    def unassigned(self) -> float:
        return self.remainder - self.allocated


class IncomeFlowState(_FrozenState):
    kind: Literal[FlowKind.INCOME] = FlowKind.INCOME
    step: IncomeStep = IncomeStep.AWAIT_AMOUNT


class GoalFlowState(_FrozenState):
    kind: Literal[FlowKind.GOAL] = FlowKind.GOAL
    step: GoalStep = GoalStep.AWAIT_TITLE
    title: str | None = None


class DeleteExpenseFlowState(_FrozenState):
    kind: Literal[FlowKind.DELETE_EXPENSE] = FlowKind.DELETE_EXPENSE
    step: DeleteStep = DeleteStep.AWAIT_DATE
    filters: ExpenseLookupFilters = ExpenseLookupFilters()
    candidates: tuple[ExpenseWithMeta, ...] = ()


class UpdateExpenseFlowState(_FrozenState):
    kind: Literal[FlowKind.UPDATE_EXPENSE] = FlowKind.UPDATE_EXPENSE
    step: UpdateStep = UpdateStep.AWAIT_DATE
    filters: ExpenseLookupFilters = ExpenseLookupFilters()
    candidates: tuple[ExpenseWithMeta, ...] = ()
    selection: ExpenseWithMeta | None = None


FlowState = Annotated[
    Union[
        ExpenseFlowState,
        IncomeFlowState,
        GoalFlowState,
        DeleteExpenseFlowState,
        UpdateExpenseFlowState,
    ],
    Field(discriminator="kind"),
]


class FlowAdvanceResult(BaseModel):
    messages: list[str]
    next_state: FlowState | None = None


class FlowInit(BaseModel):
    state: FlowState
    intro: str
