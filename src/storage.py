"""
storage.py - persistence backends for the meal ledger

Every backend stores one state document:

    {
      "next_ids": {"members": 1, "meals": 1, "items": 1, "payments": 1},
      "members": [...], "meals": [...], "items": [...], "payments": [...]
    }

and exposes load_state() -> dict and save_state(dict) -> bool. load_state
returns {} only when nothing was stored yet; a failed read raises
StorageError so the ledger never mistakes it for an empty ledger. The ledger
reads the whole document, mutates it and writes it back, so each call sees
one consistent snapshot.

Backends:
 - InMemoryBackend: process-local, used by tests
 - JsonFileBackend: local JSON file, written atomically
 - GoogleSheetsBackend: one worksheet per table plus a "meta" sheet
"""

from typing import Any, Dict, List, Optional, Tuple
import ast
import copy
import json
import logging
import os
import shutil
import tempfile

import google.auth
import gspread
from google.oauth2.service_account import Credentials

from src import config

logger = logging.getLogger(__name__)

TABLES = ("members", "meals", "items", "payments")


class StorageError(Exception):
    """Raised by load_state when stored data exists but cannot be read."""


def empty_state() -> Dict[str, Any]:
    return {
        "next_ids": {t: 1 for t in TABLES},
        "members": [],
        "meals": [],
        "items": [],
        "payments": [],
    }


class InMemoryBackend:
    """Keeps the state document in memory. Copies on the way in and out."""

    name = "memory"

    def __init__(self, state: Optional[Dict[str, Any]] = None):
        self._state = copy.deepcopy(state) if state else {}

    def load_state(self) -> Dict[str, Any]:
        return copy.deepcopy(self._state)

    def save_state(self, data: Dict[str, Any]) -> bool:
        self._state = copy.deepcopy(data)
        return True


class JsonFileBackend:
    """Local JSON persistence, written atomically (temp file then move)."""

    name = "local_json"

    def __init__(self, path: Optional[str] = None):
        self.path = path or config.data_file()

    def load_state(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as exc:
            logger.exception("Failed to read data file %s", self.path)
            raise StorageError(f"Could not read {self.path} ({exc.__class__.__name__})") from exc

    def save_state(self, data: Dict[str, Any]) -> bool:
        target = os.path.abspath(self.path)
        dirn = os.path.dirname(target)
        logger.info("Saving data to %s (meals=%d)", target, len(data.get("meals", [])))
        tmp_path = None
        try:
            os.makedirs(dirn, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix="tmp_meal_split_", dir=dirn, text=True)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            shutil.move(tmp_path, target)
        except (OSError, TypeError, ValueError):
            logger.exception("Failed to save data file")
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            return False
        return True


class GoogleSheetsBackend:
    """
    Google Sheets persistence backend.

    Data layout:
      - one worksheet per table ("members", "meals", "items", "payments")
      - worksheet "meta": key/value metadata (next_ids)
    """

    name = "google_sheets"
    META_SHEET_NAME = "meta"
    HEADERS = {
        "members": ["id", "name", "created_at"],
        "meals": ["id", "restaurant", "date", "settled", "created_at"],
        "items": ["id", "meal_id", "person", "description", "amount", "shared", "created_at"],
        "payments": ["id", "meal_id", "person", "amount", "created_at"],
    }
    META_HEADERS = ["key", "value"]
    INT_FIELDS = {"id", "meal_id"}
    FLOAT_FIELDS = {"amount"}
    BOOL_FIELDS = {"settled", "shared"}
    SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

    def __init__(self):
        self.available = False
        self.reason = ""
        self.sheet_id = config.google_sheet_id()
        self._spreadsheet = None
        self._table_ws: Dict[str, Any] = {}
        self._meta_ws = None

        if not self.sheet_id:
            self.reason = "GOOGLE_SHEET_ID is not set"
            return

        try:
            creds = self._build_credentials()
            client = gspread.authorize(creds)
            self._spreadsheet = client.open_by_key(self.sheet_id)
            for table, headers in self.HEADERS.items():
                self._table_ws[table] = self._get_or_create_worksheet(
                    table, rows=1000, cols=max(8, len(headers))
                )
            self._meta_ws = self._get_or_create_worksheet(self.META_SHEET_NAME, rows=50, cols=4)
            self._ensure_headers()
            self.available = True
        except Exception as exc:
            self.available = False
            self.reason = f"Google Sheets init failed ({exc.__class__.__name__})"
            logger.warning("Google Sheets backend unavailable: %s", self.reason)

    def _build_credentials(self):
        service_account_json = config.google_service_account_json()
        service_account_file = config.google_service_account_file()

        if service_account_json:
            try:
                info = json.loads(service_account_json)
            except ValueError:
                # tolerate Python-dict style strings often used by mistake in env vars
                info = ast.literal_eval(service_account_json)
            if not isinstance(info, dict):
                raise ValueError("GOOGLE_SERVICE_ACCOUNT_JSON must decode to an object")
            return Credentials.from_service_account_info(info, scopes=self.SCOPES)

        if service_account_file:
            return Credentials.from_service_account_file(service_account_file, scopes=self.SCOPES)

        creds, _ = google.auth.default(scopes=self.SCOPES)
        return creds

    def _get_or_create_worksheet(self, title: str, rows: int, cols: int):
        try:
            return self._spreadsheet.worksheet(title)
        except gspread.exceptions.WorksheetNotFound:
            return self._spreadsheet.add_worksheet(title=title, rows=rows, cols=cols)

    @staticmethod
    def _ensure_sheet_size(ws, min_rows: int, min_cols: int):
        new_rows = max(ws.row_count, min_rows)
        new_cols = max(ws.col_count, min_cols)
        if new_rows != ws.row_count or new_cols != ws.col_count:
            ws.resize(rows=new_rows, cols=new_cols)

    @staticmethod
    def _write_rows(ws, rows: List[List[str]]):
        # RAW keeps user content as plain values (not spreadsheet formulas).
        ws.update(range_name="A1", values=rows, value_input_option="RAW")

    def _ensure_headers(self):
        for table, headers in self.HEADERS.items():
            ws = self._table_ws[table]
            first = ws.row_values(1) or []
            if [x.strip() for x in first] != headers:
                self._ensure_sheet_size(ws, 2, len(headers))
                self._write_rows(ws, [headers])
        first = self._meta_ws.row_values(1) or []
        if [x.strip() for x in first] != self.META_HEADERS:
            self._ensure_sheet_size(self._meta_ws, 2, len(self.META_HEADERS))
            self._write_rows(self._meta_ws, [self.META_HEADERS])

    @staticmethod
    def _to_int(value: Any, default: int = 0) -> int:
        try:
            return int(float(str(value).strip()))
        except ValueError:
            return default

    @staticmethod
    def _to_float(value: Any, default: float = 0.0) -> float:
        try:
            return float(str(value).strip())
        except ValueError:
            return default

    @classmethod
    def _cell(cls, field: str, value: Any) -> str:
        if field in cls.BOOL_FIELDS:
            return "1" if value else "0"
        if field in cls.FLOAT_FIELDS:
            return f"{round(cls._to_float(value), 2):.2f}"
        return "" if value is None else str(value)

    @classmethod
    def _parse_record(cls, record: Dict[str, str]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, raw in record.items():
            if key in cls.INT_FIELDS:
                out[key] = cls._to_int(raw, 0)
            elif key in cls.FLOAT_FIELDS:
                out[key] = round(cls._to_float(raw, 0.0), 2)
            elif key in cls.BOOL_FIELDS:
                out[key] = str(raw).strip().lower() in ("1", "true", "yes")
            else:
                out[key] = str(raw).strip()
        return out

    def save_state(self, data: Dict[str, Any]) -> bool:
        if not self.available:
            return False

        try:
            self._ensure_headers()
            for table, headers in self.HEADERS.items():
                rows = [headers]
                for record in data.get(table, []) or []:
                    rows.append([self._cell(h, record.get(h, "")) for h in headers])
                ws = self._table_ws[table]
                self._ensure_sheet_size(ws, len(rows) + 10, len(headers))
                ws.clear()
                self._write_rows(ws, rows)

            meta_rows = [
                self.META_HEADERS,
                ["next_ids", json.dumps(data.get("next_ids", {}))],
            ]
            self._ensure_sheet_size(self._meta_ws, len(meta_rows) + 5, len(self.META_HEADERS))
            self._meta_ws.clear()
            self._write_rows(self._meta_ws, meta_rows)
            return True
        except Exception:
            logger.exception("Failed to save ledger state to Google Sheets")
            return False

    def load_state(self) -> Dict[str, Any]:
        if not self.available:
            raise StorageError(self.reason or "Google Sheets backend is not available")

        try:
            self._ensure_headers()
            state: Dict[str, Any] = {}
            for table in self.HEADERS:
                records: List[Dict[str, Any]] = []
                values = self._table_ws[table].get_all_values() or []
                if values:
                    headers = [str(h).strip().lower() for h in values[0]]
                    for row in values[1:]:
                        if not any(str(c).strip() for c in row):
                            continue
                        record = {
                            header: row[idx] if idx < len(row) else ""
                            for idx, header in enumerate(headers)
                            if header
                        }
                        records.append(self._parse_record(record))
                state[table] = records

            meta_map: Dict[str, str] = {}
            for row in (self._meta_ws.get_all_values() or [])[1:]:
                if row and str(row[0]).strip():
                    meta_map[str(row[0]).strip()] = str(row[1]).strip() if len(row) > 1 else ""
            try:
                state["next_ids"] = json.loads(meta_map.get("next_ids") or "{}")
            except ValueError:
                state["next_ids"] = {}
            return state
        except Exception as exc:
            logger.exception("Failed to load ledger state from Google Sheets")
            raise StorageError(f"Google Sheets read failed ({exc.__class__.__name__})") from exc


def default_backend():
    """Google Sheets when configured and reachable, otherwise the local JSON file."""
    sheets = GoogleSheetsBackend()
    if sheets.available:
        return sheets
    fallback = JsonFileBackend()
    fallback.reason = sheets.reason
    return fallback


def storage_status(backend) -> Tuple[str, str]:
    """Return the backend name and a short diagnostic message for the UI."""
    if getattr(backend, "name", "") == "google_sheets":
        return "google_sheets", "Persistent storage active (Google Sheets)."
    if getattr(backend, "name", "") == "memory":
        return "memory", "In-memory storage (data is lost on restart)."
    reason = getattr(backend, "reason", "") or "Google Sheets not configured"
    return "local_json", f"Using local file fallback: {reason}."
