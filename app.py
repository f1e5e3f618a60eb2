"""
app.py - minimal entrypoint for Streamlit app

Keep this file tiny so streamlit can import it without side-effects.
Run the app with:
    streamlit run app.py

This module simply delegates to src.ui.dashboard.main().

"""
import os
import json as _json

import streamlit as _st

# On Streamlit Cloud, transfer secrets to env vars so src.config can read them
_SECRET_KEYS = (
    "GOOGLE_SHEET_ID",
    "GOOGLE_SERVICE_ACCOUNT_JSON",
    "GOOGLE_SERVICE_ACCOUNT_FILE",
    "MEAL_SPLIT_RETENTION_MONTHS",
    "MEAL_SPLIT_CURRENCY",
)


def _secrets_to_env():
    try:
        secrets = dict(_st.secrets)
    except FileNotFoundError:
        # no secrets.toml when running locally
        return
    for key in _SECRET_KEYS:
        if secrets.get(key) and key not in os.environ:
            os.environ[key] = str(secrets[key])
    # Also support the standard Streamlit table-style service account secret:
    # [gcp_service_account] ...fields...
    if "GOOGLE_SERVICE_ACCOUNT_JSON" not in os.environ and secrets.get("gcp_service_account"):
        os.environ["GOOGLE_SERVICE_ACCOUNT_JSON"] = _json.dumps(dict(secrets["gcp_service_account"]))


_secrets_to_env()

from src.ui import dashboard  # noqa: E402


def main():
    dashboard.main()


if __name__ == "__main__":
    main()
