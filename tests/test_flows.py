import asyncio

import pytest

from finchat.assistant.flows import advance_flow, start_flow
from finchat.assistant.states import (
    DeleteStep,
    ExpenseFlowState,
    ExpenseStep,
    FlowKind,
    GoalStep,
    SplitParticipant,
    UpdateStep,
)
from finchat.assistant.suggestions import suggestions
from finchat.models.schemas import SplitEntry


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def step(ctx, state, text):
    return asyncio.run(advance_flow(ctx, state, text))


def drive(ctx, kind, inputs):
    """Feed ``inputs`` one turn at a time; return the final state and all results."""
    state = start_flow(kind).state
    results = []
    for text in inputs:
        assert state is not None, f"flow ended before {text!r}"
        result = step(ctx, state, text)
        results.append(result)
        state = result.next_state
    return state, results


# ---------------------------------------------------------------------
# start_flow
# ---------------------------------------------------------------------

@pytest.mark.parametrize("kind", list(FlowKind))
def test_every_flow_kind_starts(kind):
    init = start_flow(kind)
    assert init.state.kind == kind
    assert init.intro


def test_unknown_flow_kind_is_rejected():
    with pytest.raises(ValueError):
        start_flow("teleport")


# ---------------------------------------------------------------------
# Expense flow
# ---------------------------------------------------------------------

def test_split_expense_commits_shares(ctx, store):
    state, results = drive(
        ctx, FlowKind.EXPENSE, ["100", "60", "yes", "Alex 40", "done", "skip", "skip"]
    )

    assert state is None
    [(_, user_id, expense)] = store.calls_to("add_expense")
    assert user_id == "user-1"
    assert expense.amount == 60
    assert expense.total_amount == 100
    assert expense.category is None
    assert expense.note is None
    assert expense.splits == [
        SplitEntry(label="Me", amount=60),
        SplitEntry(label="Alex", amount=40),
    ]
    assert "Alex" in " ".join(results[-1].messages)


def test_split_shares_add_up_to_total(ctx, store):
    drive(
        ctx,
        FlowKind.EXPENSE,
        ["90", "30", "yes", "Sam Lee 20.5", "Jo 39.5", "done", "dining out", "birthday"],
    )

    [(_, _, expense)] = store.calls_to("add_expense")
    assert sum(s.amount for s in expense.splits) == pytest.approx(expense.total_amount, abs=0.01)
    assert [s.label for s in expense.splits] == ["Me", "Sam Lee", "Jo"]
    assert expense.category == "Dining Out"
    assert expense.note == "birthday"


def test_participant_overshoot_is_rejected_until_corrected(ctx, store):
    state, _ = drive(ctx, FlowKind.EXPENSE, ["100", "60", "yes"])
    assert state.step == ExpenseStep.AWAIT_PARTICIPANT

    over = step(ctx, state, "Alex 50")
    assert over.next_state == state
    assert "$10.00" in over.messages[0]

    early = step(ctx, state, "done")
    assert early.next_state == state
    assert "+40.00" in early.messages[0]

    added = step(ctx, state, "Alex 40")
    assert added.next_state.participants == (SplitParticipant(name="Alex", amount=40),)

    finished = step(ctx, added.next_state, "done")
    assert finished.next_state.step == ExpenseStep.AWAIT_CATEGORY
    assert store.calls_to("add_expense") == []


def test_done_reports_unassigned_remainder(ctx):
    state, _ = drive(ctx, FlowKind.EXPENSE, ["100", "60", "yes", "Alex 15"])
    result = step(ctx, state, "done")

    assert result.next_state == state
    assert "+25.00" in result.messages[0]
    assert "$25.00" in result.messages[0]


def test_done_reports_overallocation(ctx):
    # Participants can only exceed the share by hand-built state
    state = ExpenseFlowState(
        step=ExpenseStep.AWAIT_PARTICIPANT,
        total_amount=100,
        self_share=60,
        remainder=40,
        participants=(SplitParticipant(name="Alex", amount=45),),
    )
    result = step(ctx, state, "done")

    assert result.next_state == state
    assert "-5.00" in result.messages[0]


def test_unnamed_participant_gets_default_name(ctx, store):
    drive(ctx, FlowKind.EXPENSE, ["50", "25", "yes", "10", "15", "done", "skip", "skip"])

    [(_, _, expense)] = store.calls_to("add_expense")
    assert [s.label for s in expense.splits] == ["Me", "Person 1", "Person 2"]


def test_participant_amount_may_be_followed_by_words(ctx, store):
    state, results = drive(ctx, FlowKind.EXPENSE, ["100", "60", "yes", "Alex 40 dollars"])

    assert state.participants == (SplitParticipant(name="Alex", amount=40),)
    assert results[-1].messages[0].startswith("Added Alex for $40.00.")


def test_declining_split_logs_own_share_only(ctx, store):
    state, results = drive(ctx, FlowKind.EXPENSE, ["80", "80", "no", "groceries", "weekly shop"])

    assert state is None
    [(_, _, expense)] = store.calls_to("add_expense")
    assert expense.amount == 80
    assert expense.total_amount == 80
    assert expense.splits is None
    assert expense.category == "Groceries"
    assert expense.note == "weekly shop"
    assert "$80.00" in results[-1].messages[0]


def test_yes_with_nothing_left_skips_participants(ctx):
    state, results = drive(ctx, FlowKind.EXPENSE, ["25", "25", "yes"])

    assert state.step == ExpenseStep.AWAIT_CATEGORY
    assert state.participants == ()


def test_share_may_exceed_total_within_tolerance(ctx):
    state, _ = drive(ctx, FlowKind.EXPENSE, ["10", "10.005"])
    assert state.step == ExpenseStep.AWAIT_SPLIT_DECISION
    assert state.remainder == 0


@pytest.mark.parametrize(
    "prefix, bad_input",
    [
        ([], "lots"),
        ([], "0"),
        ([], "-20"),
        (["100"], "abc"),
        (["100"], "0"),
        (["100"], "150"),
        (["100", "60"], "maybe"),
        (["100", "60", "yes"], "Alex"),
        (["100", "60", "yes"], "Alex -5"),
        (["100", "60", "yes"], "Alex 0"),
    ],
)
def test_invalid_expense_input_keeps_state(ctx, store, prefix, bad_input):
    state, _ = drive(ctx, FlowKind.EXPENSE, prefix)
    result = step(ctx, state, bad_input)

    assert result.next_state == state
    assert result.messages
    assert store.calls_to("add_expense") == []


def test_no_in_split_decision_declines_split(ctx):
    state, _ = drive(ctx, FlowKind.EXPENSE, ["100", "60"])
    result = step(ctx, state, "no")

    assert result.next_state.step == ExpenseStep.AWAIT_CATEGORY


def test_transitions_do_not_mutate_previous_state(ctx):
    first = start_flow(FlowKind.EXPENSE).state
    second = step(ctx, first, "100").next_state

    assert first.step == ExpenseStep.AWAIT_AMOUNT
    assert first.total_amount is None
    assert second.total_amount == 100


# ---------------------------------------------------------------------
# Income flow
# ---------------------------------------------------------------------

def test_income_flow(ctx, store):
    state, results = drive(ctx, FlowKind.INCOME, ["five thousand", "5,400"])

    assert results[0].next_state.kind == FlowKind.INCOME
    assert state is None
    [(_, _, profile)] = store.calls_to("upsert_user_profile")
    assert profile.monthly_income == 5400
    assert "$5,400.00" in results[-1].messages[0]


# ---------------------------------------------------------------------
# Goal flow
# ---------------------------------------------------------------------

def test_goal_flow(ctx, store):
    state, results = drive(ctx, FlowKind.GOAL, ["  ", "Emergency fund ", "-1", "2500"])

    assert results[0].next_state.step == GoalStep.AWAIT_TITLE
    assert results[1].next_state.title == "Emergency fund"
    assert results[2].next_state.step == GoalStep.AWAIT_AMOUNT
    assert state is None
    [(_, _, goal)] = store.calls_to("add_goal")
    assert goal.title == "Emergency fund"
    assert goal.target_amount == 2500


# ---------------------------------------------------------------------
# Delete flow
# ---------------------------------------------------------------------

def test_delete_on_empty_store_ends_immediately(ctx, store):
    state, results = drive(ctx, FlowKind.DELETE_EXPENSE, ["groceries"])

    assert state is None
    assert len(results[0].messages) == 1
    assert store.calls_to("delete_expense") == []


def test_delete_by_category(seeded_ctx, seeded_store):
    state, results = drive(seeded_ctx, FlowKind.DELETE_EXPENSE, ["groceries"])

    assert state.step == DeleteStep.AWAIT_SELECTION
    assert [c.expense.id for c in state.candidates] == [4, 2]
    listing = results[0].messages[1]
    assert listing.splitlines()[0].startswith("1. $45.00 Groceries")

    done = step(seeded_ctx, state, "2")
    assert done.next_state is None
    assert seeded_store.calls_to("delete_expense") == [("delete_expense", "user-1", 2)]
    assert "$60.00" in done.messages[0]
    assert "Groceries" in done.messages[0]


def test_delete_falls_back_to_recent(seeded_ctx):
    state, results = drive(seeded_ctx, FlowKind.DELETE_EXPENSE, ["travel"])

    assert "couldn't find" in results[0].messages[0]
    assert [c.expense.id for c in state.candidates] == [5, 4, 3, 2, 1]
    assert state.filters.category == "Travel"


@pytest.mark.parametrize("reply", ["recent", "skip", ""])
def test_unfiltered_delete_lists_only_recent_expenses(ctx, store, make_expense, reply):
    store.expenses = [make_expense(i, float(i), "Other") for i in range(40, 0, -1)]

    state, results = drive(ctx, FlowKind.DELETE_EXPENSE, [reply])

    assert [c.expense.id for c in state.candidates] == list(range(40, 25, -1))
    assert results[0].messages[0] == "Here are your most recent expenses:"
    assert len(results[0].messages[1].splitlines()) == 15
    assert suggestions(state) == [str(i) for i in range(1, 16)]


def test_filtered_delete_lists_every_match(ctx, store, make_expense):
    store.expenses = [make_expense(i, float(i), "Other") for i in range(40, 0, -1)]

    state, _ = drive(ctx, FlowKind.DELETE_EXPENSE, ["other"])

    assert len(state.candidates) == 40


@pytest.mark.parametrize("reply", ["0", "6", "two", "1.5", ""])
def test_delete_bad_selection_reprompts(seeded_ctx, seeded_store, reply):
    state, _ = drive(seeded_ctx, FlowKind.DELETE_EXPENSE, ["recent"])
    result = step(seeded_ctx, state, reply)

    assert result.next_state == state
    assert "between 1 and 5" in result.messages[0]
    assert seeded_store.calls_to("delete_expense") == []


# ---------------------------------------------------------------------
# Update flow
# ---------------------------------------------------------------------

def test_update_flow(seeded_ctx, seeded_store):
    state, results = drive(seeded_ctx, FlowKind.UPDATE_EXPENSE, ["2024-06-12", "#2"])

    assert state.step == UpdateStep.AWAIT_NEW_AMOUNT
    assert state.selection.expense.id == 3
    assert "$1,200.00" in results[-1].messages[0]

    rejected = step(seeded_ctx, state, "free")
    assert rejected.next_state == state

    done = step(seeded_ctx, state, "1,150")
    assert done.next_state is None
    [(_, user_id, expense_id, changes)] = seeded_store.calls_to("update_expense")
    assert (user_id, expense_id) == ("user-1", 3)
    assert changes.amount == 1150
    assert changes.total_amount == 1150
    assert "$1,150.00" in done.messages[0]


def test_update_on_empty_store_ends_immediately(ctx):
    state, results = drive(ctx, FlowKind.UPDATE_EXPENSE, ["recent"])

    assert state is None
    assert "update" in results[0].messages[0]
