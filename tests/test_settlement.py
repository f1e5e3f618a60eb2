import itertools
import logging

import pytest
from src.models import Item, Meal, MealSnapshot, Payment
from src.settlement import (
    aggregate_balances,
    compute_settlement,
    match_transfers,
    meal_deltas,
    round_to_unit,
    to_cents,
)


def make_meal(meal_id, items=(), payments=(), settled=False, restaurant="Noodle Bar", date="2026-10-01"):
    return MealSnapshot(
        meal=Meal(id=meal_id, restaurant=restaurant, date=date, settled=settled),
        items=[
            Item(id=n, meal_id=meal_id, person=person or "Shared", description="dish", amount=amount, shared=shared)
            for n, (person, amount, shared) in enumerate(items, start=1)
        ],
        payments=[
            Payment(id=n, meal_id=meal_id, person=person, amount=amount)
            for n, (person, amount) in enumerate(payments, start=1)
        ],
    )


def apply_transfers(balances, transfers):
    adjusted = dict(balances)
    for t in transfers:
        adjusted[t.source] += t.amount
        adjusted[t.target] -= t.amount
    return adjusted


def test_single_payer_single_consumer():
    result = compute_settlement([make_meal(1, items=[("Alice", 300, False)], payments=[("Bob", 300)])])
    assert result.balances == {"Alice": -300.0, "Bob": 300.0}
    assert [t.to_dict() for t in result.transactions] == [{"from": "Alice", "to": "Bob", "amount": 300}]
    assert result.unsettled_count == 1


def test_shared_item_with_single_participant():
    result = compute_settlement([
        make_meal(1, items=[("Alice", 100, False), (None, 60, True)], payments=[("Alice", 160)])
    ])
    assert result.balances == {"Alice": 0.0}
    assert result.transactions == []


def test_balances_accumulate_across_meals():
    meals = [
        make_meal(1, items=[("Alice", 200, False)], payments=[("Bob", 200)]),
        make_meal(2, items=[("Bob", 50, False)], payments=[("Carol", 50)]),
    ]
    result = compute_settlement(meals)
    assert result.balances == {"Alice": -200.0, "Bob": 150.0, "Carol": 50.0}
    assert [t.to_dict() for t in result.transactions] == [
        {"from": "Alice", "to": "Bob", "amount": 150},
        {"from": "Alice", "to": "Carol", "amount": 50},
    ]


def test_payment_without_items():
    result = compute_settlement([make_meal(1, payments=[("Dave", 120)])])
    assert result.balances == {"Dave": 120.0}
    assert result.transactions == []
    summary = result.meal_summaries[0]
    assert summary.total_spent == 0
    assert summary.total_paid == 120.0
    assert not summary.missing_payer


def test_empty_input():
    result = compute_settlement([])
    assert result.balances == {}
    assert result.transactions == []
    assert result.meal_summaries == []
    assert result.unsettled_count == 0
    assert result.to_dict() == {"balances": {}, "transactions": [], "mealSummaries": [], "unsettledCount": 0}


def test_settled_meals_are_ignored():
    meals = [
        make_meal(1, items=[("Alice", 80, False)], payments=[("Bob", 80)], settled=True),
        make_meal(2, items=[("Carol", 40, False)], payments=[("Bob", 40)]),
    ]
    result = compute_settlement(meals)
    assert result.balances == {"Carol": -40.0, "Bob": 40.0}
    assert result.unsettled_count == 1


def test_shared_cost_even_split():
    meal = make_meal(
        1,
        items=[("Alice", 50, False), ("Bob", 70, False), ("Carol", 90, False), (None, 300, True)],
        payments=[("Alice", 510)],
    )
    deltas = meal_deltas(meal)
    assert deltas["Bob"] == -(7000 + 10000)
    assert deltas["Carol"] == -(9000 + 10000)
    assert deltas["Alice"] == -(5000 + 10000) + 51000


def test_shared_cost_remainder_cents_go_to_first_participants():
    meal = make_meal(1, items=[("Alice", 0, False), ("Bob", 0, False), ("Carol", 0, False), (None, 100, True)])
    deltas = meal_deltas(meal)
    assert deltas == {"Alice": -3334, "Bob": -3333, "Carol": -3333}
    assert sum(deltas.values()) == -10000


def test_shared_item_without_participants_is_not_charged(caplog):
    meal = make_meal(7, items=[(None, 90, True)], payments=[("Alice", 90)])
    with caplog.at_level(logging.WARNING, logger="src.settlement"):
        result = compute_settlement([meal])
    assert result.balances == {"Alice": 90.0}
    assert result.meal_summaries[0].unattributed_shared
    assert "no personal items" in caplog.text


def test_conservation_without_shared_items():
    meal = make_meal(
        1,
        items=[("Alice", 12.5, False), ("Bob", 8.25, False), ("Alice", 3.1, False)],
        payments=[("Carol", 20), ("Bob", 5)],
    )
    deltas = meal_deltas(meal)
    assert sum(deltas.values()) == to_cents(25) - to_cents(23.85)


def test_transfers_clear_balances():
    meals = [
        make_meal(1, items=[("Alice", 130, False), ("Bob", 90, False), ("Carol", 40, False), (None, 60, True)],
                  payments=[("Dave", 320)]),
        make_meal(2, items=[("Dave", 75, False), ("Erin", 25, False)], payments=[("Alice", 100)]),
    ]
    result = compute_settlement(meals)
    adjusted = apply_transfers(result.balances, result.transactions)
    for person, remaining in adjusted.items():
        assert abs(remaining) <= len(result.transactions) * 0.5 + 0.01, person


def test_no_self_transfers_and_positive_amounts():
    balances = {"Alice": -5000, "Bob": 2500, "Carol": 2500, "Dave": -1000, "Erin": 1000}
    transfers = match_transfers(balances)
    assert transfers
    for t in transfers:
        assert t.source != t.target
        assert t.amount > 0


def test_deterministic_output():
    meals = [
        make_meal(1, items=[("Alice", 100, False), ("Bob", 100, False)], payments=[("Carol", 100), ("Dave", 100)]),
        make_meal(2, items=[("Carol", 30, False), ("Erin", 30, False)], payments=[("Alice", 60)]),
    ]
    first = compute_settlement(meals)
    second = compute_settlement(meals)
    assert first.transactions == second.transactions
    assert first.to_dict() == second.to_dict()


def test_ties_keep_first_appearance_order():
    balances = {"Alice": -1000, "Bob": -1000, "Carol": 1000, "Dave": 1000}
    transfers = match_transfers(balances)
    assert [(t.source, t.target) for t in transfers] == [("Alice", "Carol"), ("Bob", "Dave")]


def test_near_zero_balances_are_ignored():
    assert match_transfers({"Alice": -1, "Bob": 1}) == []
    assert match_transfers({}) == []


def test_transfer_amount_rounds_to_whole_units():
    transfers = match_transfers({"Alice": -3350, "Bob": 3350})
    assert transfers[0].amount == 34
    assert transfers[0].exact_amount == 33.5


@pytest.mark.parametrize("cents,expected", [(149, 1), (150, 2), (99, 1), (0, 0)])
def test_round_to_unit(cents, expected):
    assert round_to_unit(cents) == expected


def test_meal_summary_flags_missing_payer():
    result = compute_settlement([make_meal(3, items=[("Alice", 42, False)], restaurant="Pho House")])
    summary = result.meal_summaries[0]
    assert summary.restaurant == "Pho House"
    assert summary.total_spent == 42.0
    assert summary.missing_payer
    assert summary.to_dict()["missingPayer"] is True


def test_aggregate_balances_in_cents():
    balances = aggregate_balances([make_meal(1, items=[("Alice", 9.99, False)], payments=[("Bob", 9.99)])])
    assert balances == {"Alice": -999, "Bob": 999}


def test_sub_unit_pairing_is_not_emitted():
    assert match_transfers({"Alice": -30, "Bob": 30}) == []
    transfers = match_transfers({"Alice": -1030, "Bob": 1000, "Carol": 30})
    assert [t.to_dict() for t in transfers] == [{"from": "Alice", "to": "Bob", "amount": 10}]


def _runs(names):
    return [name for name, _ in itertools.groupby(names)]


@pytest.mark.parametrize("balances", [
    {"Alice": -5000, "Bob": 2500, "Carol": 2500, "Dave": -1000, "Erin": 1000},
    {"Alice": -30000, "Bob": 20000, "Carol": 10000},
    {"Alice": -7000, "Bob": -3000, "Carol": -2000, "Dave": 4000, "Erin": 8000},
    {"Alice": -100, "Bob": -200, "Carol": -300, "Dave": -400, "Erin": 1000},
    {"Alice": -3333, "Bob": -3333, "Carol": 6666},
])
def test_greedy_matching_shape(balances):
    debtors = sorted((p for p, a in balances.items() if a < -1), key=lambda p: balances[p])
    creditors = sorted((p for p, a in balances.items() if a > 1), key=lambda p: -balances[p])
    transfers = match_transfers(balances)

    assert len(transfers) <= len(debtors) + len(creditors) - 1
    assert all(t.source != t.target for t in transfers)
    assert all(t.amount > 0 for t in transfers)
    # each debtor and creditor is handled in one run, largest first
    assert _runs([t.source for t in transfers]) == debtors
    assert _runs([t.target for t in transfers]) == creditors
    for person in debtors:
        paid = sum(t.exact_amount for t in transfers if t.source == person)
        assert paid == pytest.approx(-balances[person] / 100)
