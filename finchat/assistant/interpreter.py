"""
Single-shot command interpreter.

Classifies an idle-mode utterance by keyword prefix. When the utterance
carries everything needed it commits right away, otherwise it asks the
session to start the matching flow.
"""

import re
from enum import Enum

from loguru import logger
from pydantic import BaseModel

from finchat.assistant.context import AssistantContext
from finchat.assistant.states import FlowKind
from finchat.assistant.utils import normalize_category, parse_amount
from finchat.models.schemas import ExpenseCreate, GoalCreate, ProfileUpdate

COMMAND_HELP = (
    'Try commands like "add expense 45 groceries", "delete expense groceries", '
    '"update expense June 12", or "set income 5000".'
)

NUMBER_RE = re.compile(r"-?\d+[\d.,]*")
NOTE_MARKER = " note "


class Intent(str, Enum):
    ADD_EXPENSE = "add_expense"
    SET_INCOME = "set_income"
    ADD_GOAL = "add_goal"
    DELETE_EXPENSE = "delete_expense"
    UPDATE_EXPENSE = "update_expense"
    HELP = "help"
    UNKNOWN = "unknown"


class CommandResult(BaseModel):
    message: str
    intent: Intent
    start_flow: FlowKind | None = None


def classify(text: str) -> Intent:
    lower = text.strip().lower()
    if not lower:
        return Intent.HELP
    if lower.startswith(("set income", "update income")):
        return Intent.SET_INCOME
    if lower.startswith(("add expense", "log expense")):
        return Intent.ADD_EXPENSE
    if lower.startswith(("delete expense", "remove expense")):
        return Intent.DELETE_EXPENSE
    if lower.startswith(("update expense", "edit expense")):
        return Intent.UPDATE_EXPENSE
    if lower.startswith(("add goal", "create goal")):
        return Intent.ADD_GOAL
    if lower == "help" or "what can you do" in lower:
        return Intent.HELP
    return Intent.UNKNOWN


async def interpret(ctx: AssistantContext, text: str) -> CommandResult:
    normalized = text.strip()
    if not normalized:
        return CommandResult(message=f"I didn't catch that. {COMMAND_HELP}", intent=Intent.HELP)

    intent = classify(normalized)
    logger.debug("Interpreted {!r} as {}", normalized, intent.value)

    if intent == Intent.SET_INCOME:
        return await _set_income(ctx, normalized)
    if intent == Intent.ADD_EXPENSE:
        return await _add_expense(ctx, normalized)
    if intent == Intent.DELETE_EXPENSE:
        return CommandResult(
            message="Let me help delete that expense.",
            intent=intent,
            start_flow=FlowKind.DELETE_EXPENSE,
        )
    if intent == Intent.UPDATE_EXPENSE:
        return CommandResult(
            message="Sure, let's update that expense.",
            intent=intent,
            start_flow=FlowKind.UPDATE_EXPENSE,
        )
    if intent == Intent.ADD_GOAL:
        return await _add_goal(ctx, normalized)
    if intent == Intent.HELP:
        return CommandResult(message=COMMAND_HELP, intent=intent)

    return CommandResult(
        message=f"I'm not sure how to help with that yet. {COMMAND_HELP}",
        intent=Intent.UNKNOWN,
    )


async def _set_income(ctx: AssistantContext, text: str) -> CommandResult:
    match = NUMBER_RE.search(text)
    amount = parse_amount(match.group(0)) if match else None
    if amount is None or amount <= 0:
        return CommandResult(
            message="Let me walk you through updating income.",
            intent=Intent.SET_INCOME,
            start_flow=FlowKind.INCOME,
        )

    await ctx.store.upsert_user_profile(
        ctx.user_id, ProfileUpdate(monthly_income=amount, currency=ctx.currency)
    )
    logger.info("Set monthly income for {}", ctx.user_id)
    return CommandResult(
        message=f"Got it! I set your monthly income to {ctx.money(amount)}.",
        intent=Intent.SET_INCOME,
    )


def _payload_after(tokens: list[str], keyword: str) -> list[str]:
    for index, token in enumerate(tokens):
        if token.lower() == keyword:
            return tokens[index + 1 :]
    return tokens


async def _add_expense(ctx: AssistantContext, text: str) -> CommandResult:
    # "add expense 45 groceries note dinner with Sam"
    payload = _payload_after(text.split(), "expense")
    amount_index = next(
        (i for i, token in enumerate(payload) if any(ch.isdigit() for ch in token)), None
    )
    amount = parse_amount(payload[amount_index]) if amount_index is not None else None
    if amount is None or amount <= 0:
        return CommandResult(
            message="Let's capture that expense step-by-step.",
            intent=Intent.ADD_EXPENSE,
            start_flow=FlowKind.EXPENSE,
        )

    remaining = " ".join(t for i, t in enumerate(payload) if i != amount_index).strip()
    category = None
    note = None
    if remaining:
        marker = remaining.lower().find(NOTE_MARKER)
        if marker >= 0:
            category = normalize_category(remaining[:marker])
            note = remaining[marker + len(NOTE_MARKER) :].strip() or None
        else:
            category = normalize_category(remaining)

    expense_id = await ctx.store.add_expense(
        ctx.user_id,
        ExpenseCreate(amount=amount, total_amount=amount, category=category, note=note),
    )
    logger.info("Logged expense #{} for {} from command", expense_id, ctx.user_id)

    category_text = f" under {category}" if category else ""
    return CommandResult(
        message=f"Logged {ctx.money(amount)}{category_text}. Need anything else?",
        intent=Intent.ADD_EXPENSE,
    )


async def _add_goal(ctx: AssistantContext, text: str) -> CommandResult:
    payload = _payload_after(text.split(), "goal")
    target = parse_amount(payload[-1]) if payload else None
    if target is None or target <= 0:
        return CommandResult(
            message="I can guide you through creating that goal.",
            intent=Intent.ADD_GOAL,
            start_flow=FlowKind.GOAL,
        )

    # Titles are free text and may contain numbers, so only the last token is the target
    title = " ".join(payload[:-1]).strip() or "New goal"
    goal_id = await ctx.store.add_goal(ctx.user_id, GoalCreate(title=title, target_amount=target))
    logger.info("Created goal #{} for {} from command", goal_id, ctx.user_id)
    return CommandResult(
        message=f'Created the goal "{title}" with a target of {ctx.money(target)}.',
        intent=Intent.ADD_GOAL,
    )
