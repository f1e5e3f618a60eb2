"""
config.py - environment-driven settings

Values are read from environment variables. On Streamlit Cloud, app.py copies
the app Secrets into the environment before this module is imported.
"""

import logging
import os
import sys
import tempfile

logger = logging.getLogger(__name__)

_default_data_file = os.path.join(os.path.dirname(__file__), "..", "data", "meal_split.json")

DEFAULT_RETENTION_MONTHS = 6


def running_under_pytest() -> bool:
    return any("pytest" in p for p in sys.argv) or bool(os.getenv("PYTEST_CURRENT_TEST"))


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach a stream handler to the package logger once."""
    root = logging.getLogger("src")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        root.addHandler(handler)
        root.setLevel(level)
    return root


def data_file() -> str:
    """
    Location of the local JSON ledger.
    When running under pytest a temp file is used so tests never touch user data.
    """
    configured = (os.getenv("MEAL_SPLIT_DATA_FILE") or "").strip()
    if configured:
        return configured
    if running_under_pytest():
        return os.path.join(tempfile.gettempdir(), "tmp_meal_split_test.json")
    return _default_data_file


def retention_months() -> int:
    raw = (os.getenv("MEAL_SPLIT_RETENTION_MONTHS") or "").strip()
    if not raw:
        return DEFAULT_RETENTION_MONTHS
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid MEAL_SPLIT_RETENTION_MONTHS=%r", raw)
        return DEFAULT_RETENTION_MONTHS
    if value < 1:
        logger.warning("MEAL_SPLIT_RETENTION_MONTHS must be positive, got %d", value)
        return DEFAULT_RETENTION_MONTHS
    return value


def currency_symbol() -> str:
    return (os.getenv("MEAL_SPLIT_CURRENCY") or "").strip() or "$"


def google_sheet_id() -> str:
    return (os.getenv("GOOGLE_SHEET_ID") or "").strip()


def google_service_account_json() -> str:
    return (os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON") or "").strip()


def google_service_account_file() -> str:
    return (os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE") or "").strip()
