from finchat.assistant.states import (
    DeleteExpenseFlowState,
    DeleteStep,
    ExpenseFlowState,
    ExpenseStep,
    GoalFlowState,
    GoalStep,
    IncomeFlowState,
    UpdateExpenseFlowState,
    UpdateStep,
)
from finchat.assistant.utils import STANDARD_CATEGORIES, dedupe, format_plain_amount

DEFAULT_SUGGESTIONS = [
    "Add expense 25 groceries",
    "Set income 5000",
    "Add goal vacation 1200",
    "Update expense",
    "Delete expense",
]

QUICK_AMOUNTS = ["10", "25", "50", "100"]
INCOME_AMOUNTS = ["3000", "4000", "5000", "6000"]
GOAL_TITLES = ["Emergency fund", "Vacation", "New laptop"]
GOAL_AMOUNTS = ["500", "1000", "5000"]
LOOKUP_HINTS = ["Recent", "Today", "Yesterday", "Groceries", "Dining Out"]


def suggestions(state) -> list[str]:
    """Quick replies for the current flow step, or the idle defaults."""
    if state is None:
        return list(DEFAULT_SUGGESTIONS)
    if isinstance(state, ExpenseFlowState):
        items = _expense_suggestions(state)
    elif isinstance(state, IncomeFlowState):
        items = INCOME_AMOUNTS
    elif isinstance(state, GoalFlowState):
        items = GOAL_TITLES if state.step == GoalStep.AWAIT_TITLE else GOAL_AMOUNTS
    elif isinstance(state, (DeleteExpenseFlowState, UpdateExpenseFlowState)):
        items = _lookup_suggestions(state)
    else:
        items = []
    return dedupe(list(items))


def _expense_suggestions(state: ExpenseFlowState) -> list[str]:
    total = state.total_amount or 0.0
    if state.step == ExpenseStep.AWAIT_AMOUNT:
        return QUICK_AMOUNTS
    if state.step == ExpenseStep.AWAIT_SELF_SHARE:
        return [format_plain_amount(total), format_plain_amount(total / 2)]
    if state.step == ExpenseStep.AWAIT_SPLIT_DECISION:
        return ["Yes", "No"]
    if state.step == ExpenseStep.AWAIT_PARTICIPANT:
        if state.unassigned > 0.01:
            return [format_plain_amount(state.unassigned), "Done"]
        return ["Done"]
    if state.step == ExpenseStep.AWAIT_CATEGORY:
        return STANDARD_CATEGORIES + ["Skip"]
    if state.step == ExpenseStep.AWAIT_NOTE:
        return ["Skip"]
    return []


def _lookup_suggestions(state) -> list[str]:
    if state.step in (DeleteStep.AWAIT_DATE, UpdateStep.AWAIT_DATE):
        return LOOKUP_HINTS
    if state.step in (DeleteStep.AWAIT_SELECTION, UpdateStep.AWAIT_SELECTION):
        return [str(index) for index in range(1, len(state.candidates) + 1)]
    if state.step == UpdateStep.AWAIT_NEW_AMOUNT and state.selection is not None:
        current = state.selection.expense.amount
        return [format_plain_amount(current), format_plain_amount(round(current))]
    return []
