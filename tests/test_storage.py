import json

import pytest
from src import config
from src.ledger import LedgerError, MealLedger
from src.models import Item, Meal
from src.storage import GoogleSheetsBackend, InMemoryBackend, JsonFileBackend, StorageError, storage_status


def test_json_backend_round_trip(tmp_path):
    path = tmp_path / "data" / "ledger.json"
    ledger = MealLedger(backend=JsonFileBackend(str(path)))
    meal = ledger.create_meal("Dumpling Den", "2026-10-10")
    ledger.add_item(meal.id, "Alice", "dumplings", 88.5)
    ledger.add_payment(meal.id, "Bob", 88.5)

    reopened = MealLedger(backend=JsonFileBackend(str(path)))
    assert reopened.get_meal(meal.id).restaurant == "Dumpling Den"
    assert reopened.list_items(meal.id)[0].amount == 88.5
    assert reopened.compute_settlement().balances == {"Alice": -88.5, "Bob": 88.5}

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["next_ids"]["meals"] == 2
    assert not list(path.parent.glob("tmp_meal_split_*"))


def test_json_backend_missing_file(tmp_path):
    assert JsonFileBackend(str(tmp_path / "nope.json")).load_state() == {}


def test_in_memory_backend_copies_state():
    backend = InMemoryBackend()
    state = {"meals": [{"id": 1}]}
    backend.save_state(state)
    state["meals"].append({"id": 2})
    assert backend.load_state() == {"meals": [{"id": 1}]}


def test_failed_save_raises_ledger_error():
    class BrokenBackend(InMemoryBackend):
        def save_state(self, data):
            return False

    ledger = MealLedger(backend=BrokenBackend())
    with pytest.raises(LedgerError):
        ledger.create_meal("Nowhere", "2026-10-10")


def test_sheets_backend_unavailable_without_sheet_id(monkeypatch):
    monkeypatch.delenv("GOOGLE_SHEET_ID", raising=False)
    backend = GoogleSheetsBackend()
    assert not backend.available
    assert backend.reason == "GOOGLE_SHEET_ID is not set"
    with pytest.raises(StorageError):
        backend.load_state()
    assert backend.save_state({}) is False


def test_sheets_record_parsing():
    record = GoogleSheetsBackend._parse_record(
        {"id": "3", "meal_id": "1", "person": " Alice ", "amount": "12.5", "shared": "1", "description": "tea"}
    )
    assert record == {"id": 3, "meal_id": 1, "person": "Alice", "amount": 12.5, "shared": True, "description": "tea"}
    assert GoogleSheetsBackend._cell("settled", True) == "1"
    assert GoogleSheetsBackend._cell("amount", 4) == "4.00"


def test_records_from_sheet_strings():
    meal = Meal.from_dict({"id": 1, "restaurant": "A", "date": "2026-10-01", "settled": "0"})
    assert meal.settled is False
    item = Item.from_dict({"id": 2, "meal_id": 1, "person": "", "amount": 5.0, "shared": "true"})
    assert item.shared and item.person == "Shared"


def test_storage_status_messages(tmp_path):
    name, _ = storage_status(InMemoryBackend())
    assert name == "memory"
    backend = JsonFileBackend(str(tmp_path / "x.json"))
    backend.reason = "GOOGLE_SHEET_ID is not set"
    name, msg = storage_status(backend)
    assert name == "local_json"
    assert "GOOGLE_SHEET_ID is not set" in msg


def test_config_retention_months(monkeypatch):
    monkeypatch.setenv("MEAL_SPLIT_RETENTION_MONTHS", "3")
    assert config.retention_months() == 3
    monkeypatch.setenv("MEAL_SPLIT_RETENTION_MONTHS", "soon")
    assert config.retention_months() == config.DEFAULT_RETENTION_MONTHS
    monkeypatch.setenv("MEAL_SPLIT_RETENTION_MONTHS", "0")
    assert config.retention_months() == config.DEFAULT_RETENTION_MONTHS


def test_config_data_file_under_pytest(monkeypatch):
    monkeypatch.delenv("MEAL_SPLIT_DATA_FILE", raising=False)
    assert config.data_file().endswith("tmp_meal_split_test.json")
    monkeypatch.setenv("MEAL_SPLIT_DATA_FILE", "/tmp/elsewhere.json")
    assert config.data_file() == "/tmp/elsewhere.json"


def test_corrupt_json_file_is_not_treated_as_empty(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        JsonFileBackend(str(path)).load_state()

    ledger = MealLedger(backend=JsonFileBackend(str(path)))
    with pytest.raises(LedgerError):
        ledger.create_meal("Dumpling Den", "2026-10-10")
    assert path.read_text(encoding="utf-8") == "{not json"


def test_json_save_failure_returns_false(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    backend = JsonFileBackend(str(blocker / "ledger.json"))
    assert backend.save_state({"meals": []}) is False

    with pytest.raises(LedgerError):
        MealLedger(backend=backend).create_meal("Nowhere", "2026-10-10")
