"""
models.py - Data model definitions

This file defines the ledger records shared by the settlement engine, the
ledger and the UI. Records are serialized to/from simple dicts so they can be
persisted as JSON in data/meal_split.json or as rows in Google Sheets.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any

# person name stored on items that are split among all participants of a meal
SHARED_PERSON = "Shared"


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


@dataclass
class Member:
    """A person taking part in group orders. Names are unique and case-sensitive."""
    id: int = 0
    name: str = ""
    created_at: str = ""

    def to_dict(self) -> Dict:
        return {"id": self.id, "name": self.name, "created_at": self.created_at}

    @staticmethod
    def from_dict(d: Dict) -> "Member":
        return Member(
            id=d.get("id", 0),
            name=d.get("name", ""),
            created_at=d.get("created_at", "") or "",
        )


@dataclass
class Meal:
    """
    One food-ordering event.

    Fields:
      - id: integer unique id assigned by the ledger
      - restaurant: where the food was ordered from
      - date: ISO date string "YYYY-MM-DD"
      - settled: True once the suggested transfers are presumed executed
      - created_at: ISO timestamp, used to order meals sharing a date
    """
    id: int = 0
    restaurant: str = ""
    date: str = ""
    settled: bool = False
    created_at: str = ""

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "restaurant": self.restaurant,
            "date": self.date,
            "settled": self.settled,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Meal":
        return Meal(
            id=d.get("id", 0),
            restaurant=d.get("restaurant", ""),
            date=d.get("date", "") or "",
            settled=_to_bool(d.get("settled", False)),
            created_at=d.get("created_at", "") or "",
        )


@dataclass
class Item:
    """
    One line of consumption within a meal.

    Shared items carry SHARED_PERSON as person; their amount is divided among
    everyone who ordered a personal item in the same meal.
    """
    id: int = 0
    meal_id: int = 0
    person: str = ""
    description: str = ""
    amount: float = 0.0
    shared: bool = False
    created_at: str = ""

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "meal_id": self.meal_id,
            "person": self.person,
            "description": self.description,
            "amount": self.amount,
            "shared": self.shared,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Item":
        shared = _to_bool(d.get("shared", False))
        return Item(
            id=d.get("id", 0),
            meal_id=d.get("meal_id", 0),
            person=d.get("person", "") or (SHARED_PERSON if shared else ""),
            description=d.get("description", ""),
            amount=d.get("amount", 0.0),
            shared=shared,
            created_at=d.get("created_at", "") or "",
        )


@dataclass
class Payment:
    """Money one person advanced for a meal, to be reimbursed by the others."""
    id: int = 0
    meal_id: int = 0
    person: str = ""
    amount: float = 0.0
    created_at: str = ""

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "meal_id": self.meal_id,
            "person": self.person,
            "amount": self.amount,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Payment":
        return Payment(
            id=d.get("id", 0),
            meal_id=d.get("meal_id", 0),
            person=d.get("person", ""),
            amount=d.get("amount", 0.0),
            created_at=d.get("created_at", "") or "",
        )


@dataclass(frozen=True)
class MealSnapshot:
    """A meal together with its items and payments, read at one point in time."""
    meal: Meal
    items: List[Item] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
