"""
components.py - reusable Streamlit components / forms / displays

This module contains pure-UI helpers used by the dashboard:
 - meal list, new-meal form, meal detail (items, payments, add forms)
 - settlement view: meal summaries, balances chart, transfers, XLSX export
 - member management

Forms validate the obvious things (non-empty names, amount > 0) before
calling back into the ledger; the ledger re-validates and raises LedgerError.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from io import BytesIO
import datetime
import streamlit as st
import pandas as pd
import altair as alt

from src.models import Item, Meal, Member, Payment
from src.settlement import SettlementResult


def trigger_rerun():
    if hasattr(st, "rerun"):
        st.rerun()
    elif hasattr(st, "experimental_rerun"):
        st.experimental_rerun()


@dataclass
class ItemInput:
    """Lightweight container passed to the on_submit callback."""
    person: str
    description: str
    amount: float
    shared: bool


@dataclass
class PaymentInput:
    person: str
    amount: float


def _money(amount: float, symbol: str) -> str:
    return f"{symbol}{amount:,.2f}"


def display_meal_form(on_submit: Callable[[str, str], None]):
    """'New meal' form: restaurant and date."""
    st.header("New meal")
    with st.form(key="meal_form", clear_on_submit=True):
        restaurant = st.text_input("Restaurant")
        date_val = st.date_input("Date", value=datetime.date.today())
        if st.form_submit_button("Create meal"):
            if not restaurant.strip():
                st.error("Restaurant is required.")
                return
            on_submit(restaurant.strip(), date_val.isoformat())
            st.success(f"Meal at {restaurant.strip()} created.")


def display_meal_list(meals: List[Dict], symbol: str) -> Optional[int]:
    """
    Render all meals as a table and return the id picked in the selector
    (None when there are no meals).
    """
    st.header("Meals")
    if not meals:
        st.write("No meals recorded.")
        return None

    df = pd.DataFrame(
        [
            {
                "id": m["id"],
                "date": m["date"],
                "restaurant": m["restaurant"],
                "items": m["item_count"],
                "total": float(m["total"]),
                "settled": "yes" if m["settled"] else "",
            }
            for m in meals
        ],
        columns=["id", "date", "restaurant", "items", "total", "settled"],
    )
    st.dataframe(df.style.format({"total": symbol + "{:.2f}"}), use_container_width=True, hide_index=True)

    options = {f"#{m['id']} {m['date']} {m['restaurant']}": m["id"] for m in meals}
    label = st.selectbox("Open meal", options=list(options.keys()))
    return options[label]


def shared_without_participants(items: List[Item]) -> bool:
    """True when a meal has shared items but nobody ordered a personal item."""
    return any(i.shared for i in items) and not any(not i.shared for i in items)


def display_meal_detail(meal: Meal, items: List[Item], payments: List[Payment], symbol: str):
    personal = round(sum(i.amount for i in items if not i.shared), 2)
    shared = round(sum(i.amount for i in items if i.shared), 2)
    paid = round(sum(p.amount for p in payments), 2)

    st.subheader(f"{meal.restaurant} ({meal.date})" + (" - settled" if meal.settled else ""))
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Personal", _money(personal, symbol))
    col2.metric("Shared", _money(shared, symbol))
    col3.metric("Total", _money(personal + shared, symbol))
    col4.metric("Paid", _money(paid, symbol))
    if personal + shared > 0 and not payments:
        st.warning("No payer recorded for this meal yet.")
    if shared_without_participants(items):
        st.warning("Shared items but nobody ordered a personal item: the shared cost will not be split.")


def display_items(items: List[Item], on_delete: Callable[[int], None], symbol: str):
    st.markdown("**Items**")
    if not items:
        st.write("No items yet.")
        return
    for item in items:
        col1, col2 = st.columns([5, 1])
        who = "Shared" if item.shared else item.person
        col1.write(f"{who}: {item.description} {_money(item.amount, symbol)}")
        if col2.button("Delete", key=f"del_item_{item.id}"):
            on_delete(item.id)
            trigger_rerun()


def display_payments(payments: List[Payment], on_delete: Callable[[int], None], symbol: str):
    st.markdown("**Payments**")
    if not payments:
        st.write("No payments yet.")
        return
    for payment in payments:
        col1, col2 = st.columns([5, 1])
        col1.write(f"{payment.person} paid {_money(payment.amount, symbol)}")
        if col2.button("Delete", key=f"del_payment_{payment.id}"):
            on_delete(payment.id)
            trigger_rerun()


def display_item_form(meal_id: int, members: List[str], on_submit: Callable[[ItemInput], None]):
    """
    'Add item' form. The person can be picked from the known members or typed;
    a typed name becomes a new member. Shared items ignore the person.
    """
    with st.form(key=f"item_form_{meal_id}", clear_on_submit=True):
        shared = st.checkbox("Shared item (split among everyone who ordered)")
        picked = st.selectbox("Person", options=[""] + members)
        typed = st.text_input("...or new person")
        description = st.text_input("Item")
        amount = st.number_input("Price", min_value=0.0, format="%.2f")
        if st.form_submit_button("Add item"):
            person = typed.strip() or picked
            if not shared and not person:
                st.error("Pick or type a person, or mark the item as shared.")
                return
            if not description.strip():
                st.error("Item description is required.")
                return
            if amount <= 0:
                st.error("Price must be greater than 0.")
                return
            on_submit(ItemInput(person=person, description=description.strip(), amount=round(amount, 2), shared=shared))
            st.success("Item added.")


def display_payment_form(meal_id: int, members: List[str], on_submit: Callable[[PaymentInput], None]):
    with st.form(key=f"payment_form_{meal_id}", clear_on_submit=True):
        picked = st.selectbox("Paid by", options=[""] + members)
        typed = st.text_input("...or new person")
        amount = st.number_input("Amount", min_value=0.0, format="%.2f")
        if st.form_submit_button("Add payment"):
            person = typed.strip() or picked
            if not person:
                st.error("Pick or type who paid.")
                return
            if amount <= 0:
                st.error("Amount must be greater than 0.")
                return
            on_submit(PaymentInput(person=person, amount=round(amount, 2)))
            st.success("Payment added.")


def display_meal_summaries(result: SettlementResult, symbol: str):
    st.markdown("**Spending per meal**")
    for s in result.meal_summaries:
        line = f"{s.date} {s.restaurant}: spent {_money(s.total_spent, symbol)}, paid {_money(s.total_paid, symbol)}"
        if s.payments:
            payers = ", ".join(f"{p} {_money(a, symbol)}" for p, a in s.payments)
            st.write(f"{line} (paid by {payers})")
        else:
            st.write(line)
        if s.missing_payer:
            st.warning(f"No payer recorded for {s.restaurant} on {s.date}.")
        if s.unattributed_shared:
            st.warning(f"Shared cost at {s.restaurant} on {s.date} has nobody to split it with.")


def _balances_frame(result: SettlementResult) -> pd.DataFrame:
    rows = [{"person": p, "balance": b} for p, b in result.balances.items()]
    return pd.DataFrame(rows, columns=["person", "balance"])


def _transfers_frame(result: SettlementResult) -> pd.DataFrame:
    rows = [{"from": t.source, "to": t.target, "amount": t.amount, "exact_amount": t.exact_amount}
            for t in result.transactions]
    return pd.DataFrame(rows, columns=["from", "to", "amount", "exact_amount"])


def settlement_xlsx(result: SettlementResult) -> bytes:
    """Balances, transfers and meal summaries as an XLSX workbook."""
    summaries = pd.DataFrame(
        [
            {
                "date": s.date,
                "restaurant": s.restaurant,
                "total_spent": s.total_spent,
                "total_paid": s.total_paid,
                "payers": ", ".join(p for p, _ in s.payments),
            }
            for s in result.meal_summaries
        ],
        columns=["date", "restaurant", "total_spent", "total_paid", "payers"],
    )
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        _balances_frame(result).to_excel(writer, index=False, sheet_name="balances")
        _transfers_frame(result).to_excel(writer, index=False, sheet_name="transfers")
        summaries.to_excel(writer, index=False, sheet_name="meals")
    buffer.seek(0)
    return buffer.getvalue()


def display_settlement(result: SettlementResult, symbol: str, on_settle_all: Callable[[], int]):
    """Balances (table + chart), suggested transfers and the 'mark settled' action."""
    st.header("Settlement")
    if not result.unsettled_count:
        st.write("Nothing to settle.")
        return
    st.caption(f"Unsettled meals: {result.unsettled_count}")
    display_meal_summaries(result, symbol)

    st.markdown("**Balances**")
    df = _balances_frame(result)
    if df.empty:
        st.write("No balances to display.")
    else:
        for _, r in df.iterrows():
            sign = "+" if r["balance"] >= 0 else "-"
            st.write(f"  {r['person']}: {sign}{_money(abs(r['balance']), symbol)}")
        chart = alt.Chart(df).mark_bar().encode(
            x=alt.X("person:N", title="Person", sort="-y"),
            y=alt.Y("balance:Q", title=f"Balance ({symbol})"),
            color=alt.condition(alt.datum.balance >= 0, alt.value("#2ca02c"), alt.value("#d62728")),
            tooltip=[
                alt.Tooltip("person:N", title="Person"),
                alt.Tooltip("balance:Q", title="Balance", format=".2f"),
            ],
        ).properties(width="container", height=300)
        st.altair_chart(chart, use_container_width=True)

    st.markdown("**Suggested transfers**")
    if not result.transactions:
        st.success("No transfers needed, everyone is square.")
    for t in result.transactions:
        st.write(f"  {t.source} -> {t.target}: {symbol}{t.amount}")

    st.download_button(
        label="Download as XLSX",
        data=settlement_xlsx(result),
        file_name="settlement.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

    st.markdown("---")
    confirm = st.checkbox("I confirm the transfers were made")
    if st.button("Mark all meals settled") and confirm:
        count = on_settle_all()
        st.success(f"{count} meals marked as settled.")
        trigger_rerun()


def display_members(members: List[Member], on_add: Callable[[str], None], on_delete: Callable[[int], None]):
    st.header("Members")
    with st.form(key="member_form", clear_on_submit=True):
        name = st.text_input("Name")
        if st.form_submit_button("Add member"):
            if not name.strip():
                st.error("Name is required.")
            else:
                on_add(name.strip())
                trigger_rerun()
    if not members:
        st.write("No members yet.")
        return
    for m in members:
        col1, col2 = st.columns([5, 1])
        col1.write(m.name)
        if col2.button("Delete", key=f"del_member_{m.id}"):
            on_delete(m.id)
            trigger_rerun()
