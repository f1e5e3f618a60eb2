"""
dashboard.py - Streamlit UI entrypoint and orchestration

This module wires the UI components (src.ui.components) with the ledger
(src.ledger). The main() function builds the sidebar menu and routes actions
to components and ledger methods.

Design notes:
 - Keep the dashboard responsible only for UI orchestration and presentation.
 - All persistence and validation live in src.ledger; settlement math lives
   in src.settlement.
 - LedgerError is caught here and shown to the user.
"""

import streamlit as st

from src import config
from src.ledger import LedgerError, MealLedger
from src.settlement import SettlementResult
from src.ui import components


def _run(action, *args, **kwargs):
    """Call a ledger action, turning LedgerError into an st.error message."""
    try:
        return action(*args, **kwargs)
    except LedgerError as exc:
        st.error(str(exc))
        return None


def _meals_view(ledger: MealLedger, symbol: str):
    components.display_meal_form(lambda restaurant, date: _run(ledger.create_meal, restaurant, date))

    meal_id = components.display_meal_list(_run(ledger.list_meals) or [], symbol)
    if meal_id is None:
        return
    meal = _run(ledger.get_meal, meal_id)
    if meal is None:
        return

    items = _run(ledger.list_items, meal_id) or []
    payments = _run(ledger.list_payments, meal_id) or []
    members = [m.name for m in _run(ledger.list_members) or []]

    components.display_meal_detail(meal, items, payments, symbol)
    col1, col2 = st.columns(2)
    with col1:
        components.display_items(items, lambda item_id: _run(ledger.delete_item, item_id), symbol)
        components.display_item_form(
            meal_id,
            members,
            lambda inp: _run(ledger.add_item, meal_id, inp.person, inp.description, inp.amount, inp.shared),
        )
    with col2:
        components.display_payments(payments, lambda payment_id: _run(ledger.delete_payment, payment_id), symbol)
        components.display_payment_form(
            meal_id,
            members,
            lambda inp: _run(ledger.add_payment, meal_id, inp.person, inp.amount),
        )

    st.markdown("---")
    if meal.settled:
        if st.button("Reopen meal"):
            _run(ledger.reopen_meal, meal_id)
            components.trigger_rerun()
    elif st.button("Mark meal settled"):
        _run(ledger.settle_meal, meal_id)
        components.trigger_rerun()

    delete_confirm = st.checkbox("I confirm I want to delete this meal")
    if st.button("Delete meal") and delete_confirm:
        _run(ledger.delete_meal, meal_id)
        st.success("Meal deleted.")
        components.trigger_rerun()


def _maintenance_view(ledger: MealLedger):
    st.header("Maintenance")
    st.write(f"Remove settled meals older than {ledger.retention_months} months.")
    if st.button("Clean up old meals"):
        removed = _run(ledger.cleanup_old_meals)
        if removed is not None:
            st.success(f"Removed {removed} meals.")

    st.markdown("---")
    # simple confirm button to avoid accidental data loss
    if st.button("Confirm Clear All Data"):
        _run(ledger.clear)
        st.success("All data cleared.")


def main():
    """
    Streamlit page: sidebar menu controls which view is shown.
    Actions:
      - Meals: create meals, record items and payments, settle / delete
      - Settlement: balances and suggested transfers over unsettled meals
      - Members: add / remove people
      - Maintenance: cleanup of old settled meals, clear all data
    """
    config.configure_logging()
    st.title("Meal Split")
    ledger = MealLedger()
    symbol = config.currency_symbol()

    backend_name, backend_msg = ledger.storage_status()
    if backend_name == "google_sheets":
        st.sidebar.success(backend_msg)
    else:
        st.sidebar.warning(backend_msg)
        st.sidebar.caption(
            "For indefinite cloud persistence, set GOOGLE_SHEET_ID and "
            "GOOGLE_SERVICE_ACCOUNT_JSON in Streamlit app Secrets."
        )

    menu = ["Meals", "Settlement", "Members", "Maintenance"]
    choice = st.sidebar.selectbox("Select an option", menu)

    if choice == "Meals":
        _meals_view(ledger, symbol)
    elif choice == "Settlement":
        components.display_settlement(
            _run(ledger.compute_settlement) or SettlementResult(), symbol, lambda: _run(ledger.settle_all) or 0
        )
    elif choice == "Members":
        components.display_members(
            _run(ledger.list_members) or [],
            on_add=lambda name: _run(ledger.get_or_create_member, name),
            on_delete=lambda member_id: _run(ledger.delete_member, member_id),
        )
    elif choice == "Maintenance":
        _maintenance_view(ledger)


if __name__ == "__main__":
    main()
