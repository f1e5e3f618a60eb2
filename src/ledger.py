"""
ledger.py - meal ledger: records, validation and settlement entry point

Responsibilities:
 - keep members, meals, items and payments in a storage backend
   (Google Sheets, local JSON or in-memory, see src.storage)
 - provide the read API the settlement engine needs:
     list_unsettled_meals, get_meal, list_items, list_payments,
     snapshot_unsettled
 - provide the write API consumed by the UI:
     members (get-or-create), meals, items, payments, settle / reopen,
     cleanup of old settled meals
"""

from typing import Any, Callable, Dict, List, Optional
import calendar
import datetime
import logging
import math

from src import config, storage
from src.models import SHARED_PERSON, Item, Meal, MealSnapshot, Member, Payment
from src.settlement import SettlementResult, compute_settlement

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for ledger errors surfaced to the UI."""


class MealNotFoundError(LedgerError):
    pass


class ItemNotFoundError(LedgerError):
    pass


class PaymentNotFoundError(LedgerError):
    pass


class MemberNotFoundError(LedgerError):
    pass


class InvalidAmountError(LedgerError):
    pass


class InvalidNameError(LedgerError):
    pass


def months_before(day: datetime.date, months: int) -> datetime.date:
    """Same day `months` calendar months earlier, clamped to the month's last day."""
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(day.day, last_day))


def _now() -> str:
    return datetime.datetime.now().isoformat(timespec="seconds")


def _clean_name(name: str, what: str = "Name") -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidNameError(f"{what} is required.")
    return name


def _clean_amount(amount: Any) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmountError(f"Amount must be a number, got {amount!r}.")
    if not math.isfinite(value):
        raise InvalidAmountError("Amount must be a finite number.")
    if value < 0:
        raise InvalidAmountError("Amount must not be negative.")
    return round(value, 2)


class MealLedger:
    """
    The UI creates one MealLedger() and uses its methods to read/write data.
    Tests pass an InMemoryBackend so nothing touches the file system.
    """

    def __init__(self, backend=None, retention_months: Optional[int] = None):
        self.backend = backend if backend is not None else storage.default_backend()
        self.retention_months = retention_months or config.retention_months()

    def storage_status(self):
        return storage.storage_status(self.backend)

    # -----------------------
    # state handling
    # -----------------------
    def _load(self) -> Dict[str, Any]:
        # a failed read must not look like an empty ledger, or the next save wipes it
        try:
            data = self.backend.load_state()
        except storage.StorageError as exc:
            raise LedgerError(f"Could not read ledger data: {exc}. Nothing was changed.") from exc
        data = data or {}
        state = storage.empty_state()
        for table in storage.TABLES:
            state[table] = list(data.get(table, []) or [])
            max_id = max((int(r.get("id", 0) or 0) for r in state[table]), default=0)
            try:
                next_raw = int((data.get("next_ids") or {}).get(table, max_id + 1))
            except (TypeError, ValueError):
                next_raw = max_id + 1
            # ids are never reused, even after deletes
            state["next_ids"][table] = max(next_raw, max_id + 1)
        return state

    def _save(self, state: Dict[str, Any]):
        if not self.backend.save_state(state):
            logger.warning("Backend %s failed to save; state not persisted", getattr(self.backend, "name", "?"))
            raise LedgerError("Could not save changes. Check the server logs for details.")

    def _mutate(self, fn: Callable[[Dict[str, Any]], Any]):
        state = self._load()
        result = fn(state)
        self._save(state)
        return result

    @staticmethod
    def _insert(state: Dict[str, Any], table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        record["id"] = state["next_ids"][table]
        record["created_at"] = _now()
        state["next_ids"][table] += 1
        state[table].append(record)
        return record

    @staticmethod
    def _find(state: Dict[str, Any], table: str, record_id: int) -> Optional[Dict[str, Any]]:
        return next((r for r in state[table] if int(r.get("id", 0)) == int(record_id)), None)

    @staticmethod
    def _remove(state: Dict[str, Any], table: str, record_id: int) -> bool:
        before = len(state[table])
        state[table] = [r for r in state[table] if int(r.get("id", 0)) != int(record_id)]
        return len(state[table]) != before

    @staticmethod
    def _ensure_member(state: Dict[str, Any], name: str) -> Dict[str, Any]:
        existing = next((m for m in state["members"] if m.get("name") == name), None)
        if existing:
            return existing
        logger.info("Creating member %r", name)
        return MealLedger._insert(state, "members", {"name": name})

    def _require_meal(self, state: Dict[str, Any], meal_id: int) -> Dict[str, Any]:
        meal = self._find(state, "meals", meal_id)
        if meal is None:
            raise MealNotFoundError(f"Meal #{meal_id} not found.")
        return meal

    # -----------------------
    # members
    # -----------------------
    def list_members(self) -> List[Member]:
        members = [Member.from_dict(d) for d in self._load()["members"]]
        return sorted(members, key=lambda m: m.name)

    def get_or_create_member(self, name: str) -> Member:
        name = _clean_name(name)
        return Member.from_dict(self._mutate(lambda s: self._ensure_member(s, name)))

    def delete_member(self, member_id: int):
        """Remove a member. Past items and payments keep the name."""
        def _delete(state):
            if not self._remove(state, "members", member_id):
                raise MemberNotFoundError(f"Member #{member_id} not found.")
        self._mutate(_delete)
        logger.info("Deleted member id=%s", member_id)

    # -----------------------
    # meals
    # -----------------------
    def list_meals(self) -> List[Dict[str, Any]]:
        """
        Return every meal as a dict with item_count and total added,
        newest date first (then most recently created).
        """
        state = self._load()
        out = []
        for m in state["meals"]:
            items = [i for i in state["items"] if int(i.get("meal_id", 0)) == int(m["id"])]
            row = Meal.from_dict(m).to_dict()
            row["item_count"] = len(items)
            row["total"] = round(sum(float(i.get("amount", 0.0)) for i in items), 2)
            out.append(row)
        out.sort(key=lambda r: (r["date"], r["created_at"], r["id"]), reverse=True)
        return out

    def get_meal(self, meal_id: int) -> Meal:
        return Meal.from_dict(self._require_meal(self._load(), meal_id))

    def create_meal(self, restaurant: str, date: Optional[str] = None) -> Meal:
        restaurant = _clean_name(restaurant, "Restaurant")
        if date:
            try:
                date = datetime.date.fromisoformat(str(date)).isoformat()
            except ValueError:
                raise LedgerError(f"Invalid date {date!r}, expected YYYY-MM-DD.")
        else:
            date = datetime.date.today().isoformat()
        record = self._mutate(
            lambda s: self._insert(s, "meals", {"restaurant": restaurant, "date": date, "settled": False})
        )
        logger.info("Created meal id=%s at %s on %s", record["id"], restaurant, date)
        return Meal.from_dict(record)

    def delete_meal(self, meal_id: int):
        """Delete a meal together with its items and payments."""
        def _delete(state):
            if not self._remove(state, "meals", meal_id):
                raise MealNotFoundError(f"Meal #{meal_id} not found.")
            state["items"] = [i for i in state["items"] if int(i.get("meal_id", 0)) != int(meal_id)]
            state["payments"] = [p for p in state["payments"] if int(p.get("meal_id", 0)) != int(meal_id)]
        self._mutate(_delete)
        logger.info("Deleted meal id=%s", meal_id)

    def _set_settled(self, meal_id: int, settled: bool) -> Meal:
        def _update(state):
            meal = self._require_meal(state, meal_id)
            meal["settled"] = settled
            return meal
        return Meal.from_dict(self._mutate(_update))

    def settle_meal(self, meal_id: int) -> Meal:
        return self._set_settled(meal_id, True)

    def reopen_meal(self, meal_id: int) -> Meal:
        return self._set_settled(meal_id, False)

    def settle_all(self) -> int:
        """Mark every unsettled meal as settled. Returns how many were changed."""
        def _update(state):
            count = 0
            for meal in state["meals"]:
                if not Meal.from_dict(meal).settled:
                    meal["settled"] = True
                    count += 1
            return count
        count = self._mutate(_update)
        logger.info("Marked %d meals as settled", count)
        return count

    # -----------------------
    # items / payments
    # -----------------------
    def list_items(self, meal_id: int) -> List[Item]:
        state = self._load()
        self._require_meal(state, meal_id)
        return [Item.from_dict(i) for i in state["items"] if int(i.get("meal_id", 0)) == int(meal_id)]

    def list_payments(self, meal_id: int) -> List[Payment]:
        state = self._load()
        self._require_meal(state, meal_id)
        return [Payment.from_dict(p) for p in state["payments"] if int(p.get("meal_id", 0)) == int(meal_id)]

    def add_item(self, meal_id: int, person: str, description: str, amount: float, shared: bool = False) -> Item:
        """
        Record an item. Personal items create the consumer as a member if needed;
        shared items are stored under SHARED_PERSON.
        """
        amount = _clean_amount(amount)
        description = _clean_name(description, "Item description")
        person = SHARED_PERSON if shared else _clean_name(person, "Person")

        def _add(state):
            self._require_meal(state, meal_id)
            if not shared:
                self._ensure_member(state, person)
            return self._insert(state, "items", {
                "meal_id": int(meal_id),
                "person": person,
                "description": description,
                "amount": amount,
                "shared": bool(shared),
            })
        return Item.from_dict(self._mutate(_add))

    def delete_item(self, item_id: int):
        def _delete(state):
            if not self._remove(state, "items", item_id):
                raise ItemNotFoundError(f"Item #{item_id} not found.")
        self._mutate(_delete)

    def add_payment(self, meal_id: int, person: str, amount: float) -> Payment:
        amount = _clean_amount(amount)
        person = _clean_name(person, "Person")

        def _add(state):
            self._require_meal(state, meal_id)
            self._ensure_member(state, person)
            return self._insert(state, "payments", {"meal_id": int(meal_id), "person": person, "amount": amount})
        return Payment.from_dict(self._mutate(_add))

    def delete_payment(self, payment_id: int):
        def _delete(state):
            if not self._remove(state, "payments", payment_id):
                raise PaymentNotFoundError(f"Payment #{payment_id} not found.")
        self._mutate(_delete)

    # -----------------------
    # settlement
    # -----------------------
    def list_unsettled_meals(self) -> List[int]:
        return [int(m["id"]) for m in self._load()["meals"] if not Meal.from_dict(m).settled]

    def snapshot_unsettled(self) -> List[MealSnapshot]:
        """All unsettled meals with their items and payments, from a single read."""
        state = self._load()
        snapshots = []
        for m in state["meals"]:
            meal = Meal.from_dict(m)
            if meal.settled:
                continue
            snapshots.append(MealSnapshot(
                meal=meal,
                items=[Item.from_dict(i) for i in state["items"] if int(i.get("meal_id", 0)) == meal.id],
                payments=[Payment.from_dict(p) for p in state["payments"] if int(p.get("meal_id", 0)) == meal.id],
            ))
        return snapshots

    def compute_settlement(self) -> SettlementResult:
        return compute_settlement(self.snapshot_unsettled())

    # -----------------------
    # maintenance
    # -----------------------
    def cleanup_old_meals(self, today: Optional[datetime.date] = None) -> int:
        """
        Delete settled meals dated before the retention horizon, with their
        items and payments. Returns the number of meals removed.
        """
        cutoff = months_before(today or datetime.date.today(), self.retention_months).isoformat()

        def _cleanup(state):
            doomed = {
                int(m["id"]) for m in state["meals"]
                if Meal.from_dict(m).settled and m.get("date", "") < cutoff
            }
            state["meals"] = [m for m in state["meals"] if int(m["id"]) not in doomed]
            state["items"] = [i for i in state["items"] if int(i.get("meal_id", 0)) not in doomed]
            state["payments"] = [p for p in state["payments"] if int(p.get("meal_id", 0)) not in doomed]
            return len(doomed)

        removed = self._mutate(_cleanup)
        logger.info("Cleanup removed %d settled meals dated before %s", removed, cutoff)
        return removed

    def clear(self):
        """Reset all ledger data. Persists the cleared state."""
        self._save(storage.empty_state())
