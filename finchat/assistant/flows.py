"""
Multi-turn flows.

Each flow kind is a small state machine. ``advance_flow`` consumes one user
turn and returns the assistant's replies plus the next state: the same state
object when the input was rejected, a new one on a valid transition, or
``None`` once the flow has committed (or has nothing to act on).
"""

import re

from loguru import logger

from finchat.assistant.context import AssistantContext
from finchat.assistant.lookup import ExpenseWithMeta, LookupResult, lookup_expenses, resolve_filters
from finchat.assistant.states import (
    DeleteExpenseFlowState,
    DeleteStep,
    ExpenseFlowState,
    ExpenseStep,
    FlowAdvanceResult,
    FlowInit,
    FlowKind,
    GoalFlowState,
    GoalStep,
    IncomeFlowState,
    SplitParticipant,
    UpdateExpenseFlowState,
    UpdateStep,
)
from finchat.assistant.utils import (
    format_plain_amount,
    is_done,
    is_no,
    is_skip,
    is_yes,
    normalize_category,
    parse_amount,
)
from finchat.models.schemas import ExpenseCreate, ExpenseUpdate, GoalCreate, ProfileUpdate, SplitEntry

# Largest rounding gap (in currency units) tolerated when reconciling splits
SPLIT_TOLERANCE = 0.01

SELECTION_RE = re.compile(r"#?\s*(\d+)\.?")

CATEGORY_PROMPT = 'Which category should I file this under? Say "skip" to leave it uncategorized.'
NOTE_PROMPT = 'Any note you\'d like to add? You can also say "skip".'
SPLIT_PROMPT = 'Did you split this with anyone? Answer "yes" or "no".'
LOOKUP_PROMPT = (
    'Tell me a date (YYYY-MM-DD), a category, or both. Say "recent" to see your latest expenses.'
)


def start_flow(kind: FlowKind) -> FlowInit:
    if kind == FlowKind.EXPENSE:
        return FlowInit(
            state=ExpenseFlowState(),
            intro="Let's log an expense. What was the total amount?",
        )
    if kind == FlowKind.INCOME:
        return FlowInit(
            state=IncomeFlowState(),
            intro="Sure! What is your monthly income right now?",
        )
    if kind == FlowKind.GOAL:
        return FlowInit(
            state=GoalFlowState(),
            intro="Happy to help with a goal. What would you like to call this goal?",
        )
    if kind == FlowKind.DELETE_EXPENSE:
        return FlowInit(
            state=DeleteExpenseFlowState(),
            intro=f"Which expense should I delete? {LOOKUP_PROMPT}",
        )
    if kind == FlowKind.UPDATE_EXPENSE:
        return FlowInit(
            state=UpdateExpenseFlowState(),
            intro=f"Which expense should I update? {LOOKUP_PROMPT}",
        )
    raise ValueError(f"Unknown assistant flow: {kind}")


async def advance_flow(ctx: AssistantContext, state, text: str) -> FlowAdvanceResult:
    """Advance ``state`` by one user turn."""
    logger.debug("Flow {} at {} <- {!r}", state.kind.value, state.step.value, text)
    if isinstance(state, ExpenseFlowState):
        return await _advance_expense(ctx, state, text.strip())
    if isinstance(state, IncomeFlowState):
        return await _advance_income(ctx, state, text.strip())
    if isinstance(state, GoalFlowState):
        return await _advance_goal(ctx, state, text.strip())
    if isinstance(state, DeleteExpenseFlowState):
        return await _advance_delete(ctx, state, text.strip())
    if isinstance(state, UpdateExpenseFlowState):
        return await _advance_update(ctx, state, text.strip())
    raise ValueError(f"Unsupported flow state: {type(state).__name__}")


def _reprompt(state, *messages: str) -> FlowAdvanceResult:
    return FlowAdvanceResult(messages=list(messages), next_state=state)


def _done(*messages: str) -> FlowAdvanceResult:
    return FlowAdvanceResult(messages=list(messages), next_state=None)


def _positive(amount: float | None) -> bool:
    return amount is not None and amount > 0


# -- expense ---------------------------------------------------------------


async def _advance_expense(
    ctx: AssistantContext, state: ExpenseFlowState, text: str
) -> FlowAdvanceResult:
    if state.step == ExpenseStep.AWAIT_AMOUNT:
        total = parse_amount(text)
        if not _positive(total):
            return _reprompt(state, 'I need a positive amount. For example, "25.60".')
        return FlowAdvanceResult(
            messages=[
                f"Got it, {ctx.money(total)} in total.",
                "How much of that was your share? Enter the full amount if it was all yours.",
            ],
            next_state=state.model_copy(
                update={"step": ExpenseStep.AWAIT_SELF_SHARE, "total_amount": total}
            ),
        )

    if state.step == ExpenseStep.AWAIT_SELF_SHARE:
        total = state.total_amount or 0.0
        share = parse_amount(text)
        if not _positive(share):
            return _reprompt(state, "Your share needs to be a positive amount.")
        if share - total > SPLIT_TOLERANCE:
            return _reprompt(
                state, f"Your share can't be more than the total of {ctx.money(total)}."
            )
        remainder = max(total - share, 0.0)
        lead = f"Your share is {ctx.money(share)}"
        if remainder > SPLIT_TOLERANCE:
            lead += f", leaving {ctx.money(remainder)} for others"
        return FlowAdvanceResult(
            messages=[lead + ".", SPLIT_PROMPT],
            next_state=state.model_copy(
                update={
                    "step": ExpenseStep.AWAIT_SPLIT_DECISION,
                    "self_share": share,
                    "remainder": remainder,
                }
            ),
        )

    if state.step == ExpenseStep.AWAIT_SPLIT_DECISION:
        if is_yes(text):
            if state.remainder <= SPLIT_TOLERANCE:
                return FlowAdvanceResult(
                    messages=["There's nothing left to split, so it's all yours.", CATEGORY_PROMPT],
                    next_state=state.model_copy(
                        update={"step": ExpenseStep.AWAIT_CATEGORY, "participants": ()}
                    ),
                )
            example = format_plain_amount(state.remainder)
            return FlowAdvanceResult(
                messages=[
                    f'Who else chipped in? Send a name and amount like "Alex {example}". '
                    'Say "done" when everyone is added.'
                ],
                next_state=state.model_copy(update={"step": ExpenseStep.AWAIT_PARTICIPANT}),
            )
        if is_no(text) or is_skip(text):
            return FlowAdvanceResult(
                messages=[CATEGORY_PROMPT],
                next_state=state.model_copy(
                    update={"step": ExpenseStep.AWAIT_CATEGORY, "participants": ()}
                ),
            )
        return _reprompt(state, SPLIT_PROMPT)

    if state.step == ExpenseStep.AWAIT_PARTICIPANT:
        if is_done(text):
            return _finish_split(ctx, state)
        return _add_participant(ctx, state, text)

    if state.step == ExpenseStep.AWAIT_CATEGORY:
        category = None if is_skip(text) else normalize_category(text)
        return FlowAdvanceResult(
            messages=[NOTE_PROMPT],
            next_state=state.model_copy(
                update={"step": ExpenseStep.AWAIT_NOTE, "category": category}
            ),
        )

    if state.step == ExpenseStep.AWAIT_NOTE:
        note = None if is_skip(text) else (text or None)
        return await _commit_expense(ctx, state.model_copy(update={"note": note}))

    return _done("Let's start over.")


def _finish_split(ctx: AssistantContext, state: ExpenseFlowState) -> FlowAdvanceResult:
    discrepancy = (state.total_amount or 0.0) - (state.self_share or 0.0) - state.allocated
    if abs(discrepancy) > SPLIT_TOLERANCE:
        if discrepancy > 0:
            detail = f"{ctx.money(discrepancy)} is still unassigned"
        else:
            detail = f"the split covers {ctx.money(-discrepancy)} more than the total"
        return _reprompt(
            state,
            f"The amounts don't add up yet ({discrepancy:+.2f}): {detail}. "
            'Add another person or say "cancel" to start over.',
        )

    count = len(state.participants)
    people = "person" if count == 1 else "people"
    return FlowAdvanceResult(
        messages=[f"Split recorded with {count} {people}.", CATEGORY_PROMPT],
        next_state=state.model_copy(update={"step": ExpenseStep.AWAIT_CATEGORY}),
    )


def _add_participant(
    ctx: AssistantContext, state: ExpenseFlowState, text: str
) -> FlowAdvanceResult:
    # "Alex 40 dollars": the last token with a digit is the amount
    tokens = text.split()
    amount_index = next(
        (i for i in range(len(tokens) - 1, -1, -1) if any(ch.isdigit() for ch in tokens[i])),
        None,
    )
    amount = parse_amount(tokens[amount_index]) if amount_index is not None else None
    if amount is None:
        return _reprompt(state, 'Send a name and amount, like "Alex 20", or say "done".')
    if amount <= 0:
        return _reprompt(state, "Each person's amount needs to be positive.")

    name = " ".join(tokens[:amount_index]).strip() or f"Person {len(state.participants) + 1}"
    owed = (state.total_amount or 0.0) - (state.self_share or 0.0)
    allocated = state.allocated + amount
    overshoot = allocated - owed
    if overshoot > SPLIT_TOLERANCE:
        return _reprompt(
            state,
            f"That puts the split {ctx.money(overshoot)} over the {ctx.money(owed)} "
            f"left after your share. {ctx.money(max(state.unassigned, 0.0))} is still unassigned.",
        )

    participants = state.participants + (SplitParticipant(name=name, amount=amount),)
    remaining = owed - allocated
    if remaining > SPLIT_TOLERANCE:
        status = f'{ctx.money(remaining)} still unassigned. Add another person or say "done".'
    else:
        status = 'Everything is covered. Say "done" to continue.'
    return FlowAdvanceResult(
        messages=[f"Added {name} for {ctx.money(amount)}. {status}"],
        next_state=state.model_copy(update={"participants": participants}),
    )


async def _commit_expense(
    ctx: AssistantContext, state: ExpenseFlowState
) -> FlowAdvanceResult:
    share = state.self_share or 0.0
    split_used = bool(state.participants)
    splits = None
    if split_used:
        splits = [SplitEntry(label="Me", amount=share)] + [
            SplitEntry(label=p.name, amount=p.amount) for p in state.participants
        ]

    payload = ExpenseCreate(
        amount=share,
        total_amount=state.total_amount if split_used else share,
        category=state.category,
        note=state.note,
        splits=splits,
    )
    expense_id = await ctx.store.add_expense(ctx.user_id, payload)
    logger.info("Expense flow committed #{} for {}", expense_id, ctx.user_id)

    logged = f"All set! I logged {ctx.money(share)}"
    if state.category:
        logged += f" under {state.category}"
    messages = [logged + "."]
    if split_used:
        names = ", ".join(p.name for p in state.participants)
        messages.append(f"The {ctx.money(payload.total_amount)} bill is split with {names}.")
    messages.append("Need anything else?")
    return _done(*messages)


# -- income ----------------------------------------------------------------


async def _advance_income(
    ctx: AssistantContext, state: IncomeFlowState, text: str
) -> FlowAdvanceResult:
    amount = parse_amount(text)
    if not _positive(amount):
        return _reprompt(state, 'Enter a positive amount, e.g. "5400".')

    await ctx.store.upsert_user_profile(
        ctx.user_id, ProfileUpdate(monthly_income=amount, currency=ctx.currency)
    )
    logger.info("Income flow committed for {}", ctx.user_id)
    return _done(
        f"Done! Monthly income updated to {ctx.money(amount)}.",
        "Anything else I can do?",
    )


# -- goal ------------------------------------------------------------------


async def _advance_goal(
    ctx: AssistantContext, state: GoalFlowState, text: str
) -> FlowAdvanceResult:
    if state.step == GoalStep.AWAIT_TITLE:
        if not text:
            return _reprompt(state, "Give the goal a name to help track it.")
        return FlowAdvanceResult(
            messages=["Great! What amount are you aiming for?"],
            next_state=state.model_copy(update={"step": GoalStep.AWAIT_AMOUNT, "title": text}),
        )

    if state.step == GoalStep.AWAIT_AMOUNT:
        target = parse_amount(text)
        if not _positive(target):
            return _reprompt(state, "Enter the savings target as a positive number.")
        title = state.title or "New goal"
        goal_id = await ctx.store.add_goal(
            ctx.user_id, GoalCreate(title=title, target_amount=target)
        )
        logger.info("Goal flow committed #{} for {}", goal_id, ctx.user_id)
        return _done(
            f'Goal "{title}" set for {ctx.money(target)}.',
            "Happy to help with another goal or expense!",
        )

    return _done("Let's start that goal over.")


# -- delete / update -------------------------------------------------------


def _candidate_listing(
    result: LookupResult, filters, candidates: list[ExpenseWithMeta], verb: str
) -> list[str]:
    if filters.is_empty:
        header = "Here are your most recent expenses:"
    elif result.matches:
        header = f"Here's what I found for {filters.describe()}:"
    else:
        header = (
            f"I couldn't find expenses for {filters.describe()}. "
            "Here are your most recent ones instead:"
        )
    lines = [
        f"{index}. {item.summary} - {item.display_date}"
        for index, item in enumerate(candidates, start=1)
    ]
    return [header, "\n".join(lines), f"Reply with the number of the expense to {verb}."]


def _parse_selection(text: str, count: int) -> int | None:
    match = SELECTION_RE.fullmatch(text)
    if not match:
        return None
    index = int(match.group(1))
    if 1 <= index <= count:
        return index
    return None


async def _present_candidates(
    ctx: AssistantContext, state, text: str, verb: str, selection_step
) -> FlowAdvanceResult:
    filters = resolve_filters(text)
    result = await lookup_expenses(ctx, filters)
    if not result.has_any:
        return _done(f"You don't have any expenses to {verb} yet.")

    if filters.is_empty:
        candidates = result.recent_fallback
    else:
        candidates = result.matches or result.recent_fallback
    return FlowAdvanceResult(
        messages=_candidate_listing(result, filters, candidates, verb),
        next_state=state.model_copy(
            update={
                "step": selection_step,
                "filters": filters,
                "candidates": tuple(candidates),
            }
        ),
    )


def _selection_hint(count: int) -> str:
    if count == 1:
        return 'Reply with "1" to pick that expense.'
    return f"Reply with a number between 1 and {count}."


async def _advance_delete(
    ctx: AssistantContext, state: DeleteExpenseFlowState, text: str
) -> FlowAdvanceResult:
    if state.step == DeleteStep.AWAIT_DATE:
        return await _present_candidates(
            ctx, state, text, "delete", DeleteStep.AWAIT_SELECTION
        )

    if state.step == DeleteStep.AWAIT_SELECTION:
        index = _parse_selection(text, len(state.candidates))
        if index is None:
            return _reprompt(state, _selection_hint(len(state.candidates)))
        chosen = state.candidates[index - 1]
        await ctx.store.delete_expense(ctx.user_id, chosen.expense.id)
        logger.info("Delete flow removed #{} for {}", chosen.expense.id, ctx.user_id)
        removed = f"Deleted {chosen.formatted_amount}"
        if chosen.expense.category:
            removed += f" from {chosen.expense.category}"
        return _done(removed + ".", "Anything else?")

    return _done("Let's start over.")


async def _advance_update(
    ctx: AssistantContext, state: UpdateExpenseFlowState, text: str
) -> FlowAdvanceResult:
    if state.step == UpdateStep.AWAIT_DATE:
        return await _present_candidates(
            ctx, state, text, "update", UpdateStep.AWAIT_SELECTION
        )

    if state.step == UpdateStep.AWAIT_SELECTION:
        index = _parse_selection(text, len(state.candidates))
        if index is None:
            return _reprompt(state, _selection_hint(len(state.candidates)))
        chosen = state.candidates[index - 1]
        return FlowAdvanceResult(
            messages=[
                f"{chosen.summary} from {chosen.display_date} is currently {chosen.formatted_amount}.",
                "What should the new amount be?",
            ],
            next_state=state.model_copy(
                update={"step": UpdateStep.AWAIT_NEW_AMOUNT, "selection": chosen}
            ),
        )

    if state.step == UpdateStep.AWAIT_NEW_AMOUNT and state.selection is not None:
        amount = parse_amount(text)
        if not _positive(amount):
            return _reprompt(state, "Enter the new amount as a positive number.")
        chosen = state.selection
        await ctx.store.update_expense(
            ctx.user_id,
            chosen.expense.id,
            ExpenseUpdate(amount=amount, total_amount=amount),
        )
        logger.info("Update flow changed #{} for {}", chosen.expense.id, ctx.user_id)
        return _done(
            f"Updated that expense from {chosen.formatted_amount} to {ctx.money(amount)}.",
            "Anything else?",
        )

    return _done("Let's start over.")
