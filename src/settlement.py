"""
settlement.py - debt settlement engine

Pure functions over a snapshot of unsettled meals:
 - aggregate_balances: net balance per person (negative => owes the pool)
 - match_transfers: greedy largest-debtor / largest-creditor pairing
 - compute_settlement: the entry point used by the ledger and the UI

Money is handled in integer cents so that splitting and summing are exact.
Only the suggested transfer amounts are rounded to whole currency units.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Tuple
import logging

from src.models import MealSnapshot

logger = logging.getLogger(__name__)

# balances within one cent of zero are considered settled
TOLERANCE_CENTS = 1


def to_cents(amount) -> int:
    """Convert a currency amount to integer cents, rounding half away from zero."""
    return int(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) * 100)


def from_cents(cents: int) -> float:
    return round(cents / 100, 2)


def round_to_unit(cents: int) -> int:
    """Round a non-negative cent amount to whole currency units (half up)."""
    return (cents + 50) // 100


@dataclass(frozen=True)
class Transfer:
    """A suggested payment from a debtor to a creditor."""
    source: str
    target: str
    amount: int
    exact_amount: float

    def to_dict(self) -> Dict:
        return {"from": self.source, "to": self.target, "amount": self.amount}


@dataclass
class MealSummary:
    """Per-meal totals shown next to the balances."""
    meal_id: int
    restaurant: str
    date: str
    personal_total: float = 0.0
    shared_total: float = 0.0
    total_paid: float = 0.0
    payments: List[Tuple[str, float]] = field(default_factory=list)
    unattributed_shared: bool = False

    @property
    def total_spent(self) -> float:
        return round(self.personal_total + self.shared_total, 2)

    @property
    def missing_payer(self) -> bool:
        return self.total_spent > 0 and not self.payments

    def to_dict(self) -> Dict:
        return {
            "mealId": self.meal_id,
            "restaurant": self.restaurant,
            "date": self.date,
            "totalSpent": self.total_spent,
            "totalPaid": self.total_paid,
            "payments": [{"person": p, "amount": a} for p, a in self.payments],
            "missingPayer": self.missing_payer,
            "unattributedShared": self.unattributed_shared,
        }


@dataclass
class SettlementResult:
    balances: Dict[str, float] = field(default_factory=dict)
    transactions: List[Transfer] = field(default_factory=list)
    meal_summaries: List[MealSummary] = field(default_factory=list)
    unsettled_count: int = 0

    def to_dict(self) -> Dict:
        return {
            "balances": dict(self.balances),
            "transactions": [t.to_dict() for t in self.transactions],
            "mealSummaries": [s.to_dict() for s in self.meal_summaries],
            "unsettledCount": self.unsettled_count,
        }


def _participants(snapshot: MealSnapshot) -> List[str]:
    seen: List[str] = []
    for item in snapshot.items:
        if not item.shared and item.person not in seen:
            seen.append(item.person)
    return seen


def meal_deltas(snapshot: MealSnapshot) -> Dict[str, int]:
    """
    Balance change (in cents) contributed by a single meal.

    Shared cost is divided among the distinct personal-item consumers. When
    the cents do not divide evenly, the first participants (in order of their
    first item) carry one extra cent each. A meal with shared items but no
    personal items divides by one participant that does not exist, so the
    shared cost is not charged to anyone.
    """
    deltas: Dict[str, int] = {}
    participants = _participants(snapshot)

    for item in snapshot.items:
        if not item.shared:
            deltas[item.person] = deltas.get(item.person, 0) - to_cents(item.amount)

    shared_total = sum(to_cents(i.amount) for i in snapshot.items if i.shared)
    if shared_total:
        if not participants:
            logger.warning(
                "Meal id=%s (%s) has shared items (%.2f) but no personal items; shared cost is unattributed",
                snapshot.meal.id, snapshot.meal.restaurant, from_cents(shared_total),
            )
        else:
            share, remainder = divmod(shared_total, len(participants))
            for idx, person in enumerate(participants):
                deltas[person] -= share + (1 if idx < remainder else 0)

    for payment in snapshot.payments:
        deltas[payment.person] = deltas.get(payment.person, 0) + to_cents(payment.amount)
    return deltas


def aggregate_balances(meals: Iterable[MealSnapshot]) -> Dict[str, int]:
    """Sum per-meal deltas over all unsettled meals. Settled meals are skipped."""
    balances: Dict[str, int] = {}
    for snapshot in meals:
        if snapshot.meal.settled:
            continue
        for person, delta in meal_deltas(snapshot).items():
            balances[person] = balances.get(person, 0) + delta
    return balances


def match_transfers(balances: Dict[str, int]) -> List[Transfer]:
    """
    Greedily pair the largest debtor with the largest creditor.

    balances are in cents. Ties keep the iteration order of `balances`
    (sorted() is stable), which makes the output deterministic.
    """
    debtors = [[p, -amt] for p, amt in balances.items() if amt < -TOLERANCE_CENTS]
    creditors = [[p, amt] for p, amt in balances.items() if amt > TOLERANCE_CENTS]
    debtors.sort(key=lambda x: x[1], reverse=True)
    creditors.sort(key=lambda x: x[1], reverse=True)

    transfers: List[Transfer] = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]
        amount = min(debtor[1], creditor[1])
        # pairings under half a unit would round to 0; they are dropped, not emitted
        if round_to_unit(amount) > 0:
            transfers.append(
                Transfer(
                    source=debtor[0],
                    target=creditor[0],
                    amount=round_to_unit(amount),
                    exact_amount=from_cents(amount),
                )
            )
        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] < TOLERANCE_CENTS:
            i += 1
        if creditor[1] < TOLERANCE_CENTS:
            j += 1
    return transfers


def summarize_meal(snapshot: MealSnapshot) -> MealSummary:
    personal = sum(to_cents(i.amount) for i in snapshot.items if not i.shared)
    shared = sum(to_cents(i.amount) for i in snapshot.items if i.shared)
    paid = sum(to_cents(p.amount) for p in snapshot.payments)
    return MealSummary(
        meal_id=snapshot.meal.id,
        restaurant=snapshot.meal.restaurant,
        date=snapshot.meal.date,
        personal_total=from_cents(personal),
        shared_total=from_cents(shared),
        total_paid=from_cents(paid),
        payments=[(p.person, from_cents(to_cents(p.amount))) for p in snapshot.payments],
        unattributed_shared=bool(shared) and not _participants(snapshot),
    )


def compute_settlement(meals: Iterable[MealSnapshot]) -> SettlementResult:
    """
    Compute balances, suggested transfers and per-meal summaries.

    Only meals that are not settled are taken into account. An empty input
    yields an empty result with unsettled_count == 0.
    """
    unsettled = [m for m in meals if not m.meal.settled]
    if not unsettled:
        return SettlementResult()

    balances = aggregate_balances(unsettled)
    transfers = match_transfers(balances)
    logger.info(
        "Computed settlement over %d meals: %d people, %d transfers",
        len(unsettled), len(balances), len(transfers),
    )
    return SettlementResult(
        balances={p: from_cents(c) for p, c in balances.items()},
        transactions=transfers,
        meal_summaries=[summarize_meal(m) for m in unsettled],
        unsettled_count=len(unsettled),
    )
