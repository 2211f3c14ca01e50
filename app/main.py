"""
Streamlit Frontend for Household Meter Billing

This is the page the household manager uses once a month to enter meter
readings and hand out bills.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Errors shown next to the field they belong to
3. Clear messages when the session has ended
4. Nothing is written to the sheet until "Save Bills" is pressed
5. A failed save says exactly which bill to retry
"""

import asyncio
from typing import Optional

import streamlit as st

from meterbill.config import get_settings, validate_all_settings
from meterbill.errors import ErrorKind, MeterBillError
from meterbill.models.billing import WATER_MOTOR, BillRecord, FamilyConfig
from meterbill.models.form import ReadingForm
from meterbill.billing import normalize_percentages, parse_number
from meterbill.orchestrator import BillingFlow, SubmissionResult, create_app_components
from meterbill.session import SessionManager
from meterbill.validation import ReadingFormValidator
from meterbill.validation.validator import COST_FIELD, READINGS_FIELD


# Page configuration
st.set_page_config(
    page_title="Meter Billing",
    page_icon="⚡",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .success-box {
        padding: 20px;
        background-color: #d4edda;
        border-radius: 10px;
        border-left: 5px solid #28a745;
        margin: 10px 0;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached)."""
    return create_app_components()


def main():
    """Main application entry point."""
    try:
        billing_flow, session, _ = get_components()
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        render_settings_page()
        return

    run_async(session.restore())

    notice = session.current_notice()
    if notice:
        st.warning(notice.message)

    if not session.is_authenticated():
        render_sign_in_page(session)
        return

    st.sidebar.title("⚡ Meter Billing")
    identity = session.identity
    if identity:
        st.sidebar.markdown(f"Signed in as **{identity.display_name}**  \n{identity.email}")
    if st.sidebar.button("Sign out"):
        run_async(session.sign_out())
        st.session_state.clear()
        st.rerun()

    st.sidebar.markdown("---")
    page = st.sidebar.radio(
        "Navigate to:",
        ["📝 Enter Readings", "📊 History", "⚙️ Settings"],
        index=0,
    )

    if page == "📝 Enter Readings":
        render_readings_page(billing_flow)
    elif page == "📊 History":
        render_history_page(billing_flow)
    elif page == "⚙️ Settings":
        render_settings_page(billing_flow)


def render_sign_in_page(session: SessionManager):
    st.title("⚡ Meter Billing")
    st.markdown("Sign in with Google to read and save meter readings.")

    if st.button("Sign in with Google", type="primary"):
        try:
            run_async(session.sign_in())
        except MeterBillError as e:
            st.error(f"Sign in failed: {e.message}")
            return
        st.rerun()


def _handle_session_error(error: MeterBillError) -> None:
    """Authorization errors end the session; the sign-in page takes over."""
    if error.kind == ErrorKind.AUTHORIZATION:
        st.session_state.pop("previous_readings", None)
        st.rerun()
    st.error(error.message)


def _load_previous(billing_flow: BillingFlow, families: list[FamilyConfig]) -> None:
    if "previous_readings" in st.session_state:
        return
    try:
        previous, cost = run_async(billing_flow.load_previous_readings(families))
    except MeterBillError as e:
        _handle_session_error(e)
        return
    st.session_state.previous_readings = previous
    st.session_state.cost_per_unit = f"{cost:g}"


def render_family_settings(billing_flow: BillingFlow) -> list[FamilyConfig]:
    """Family names and member counts, saved locally."""
    families = billing_flow.families()

    with st.expander("👪 Family settings"):
        edited = []
        for family in families:
            col1, col2 = st.columns([3, 1])
            with col1:
                name = st.text_input(
                    "Name",
                    value=family.display_name,
                    key=f"name_{family.family_id}",
                )
            with col2:
                members = st.number_input(
                    "Members",
                    min_value=1,
                    value=family.member_count,
                    step=1,
                    key=f"members_{family.family_id}",
                )
            edited.append(FamilyConfig(
                family_id=family.family_id,
                display_name=name.strip() or family.display_name,
                member_count=int(members),
            ))

        if st.button("Save family settings"):
            billing_flow.save_families(edited)
            st.session_state.pop("previous_readings", None)
            st.success("Family settings saved.")
            st.rerun()

    return families


def render_water_split(billing_flow: BillingFlow, form: ReadingForm) -> None:
    """Live water split, shown only once the water motor reading is usable."""
    percentages = normalize_percentages(form.families)
    water_motor = next(m for m in form.meters() if m.meter_id == WATER_MOTOR)
    current = parse_number(form.entered(WATER_MOTOR))

    source = water_motor
    if current > water_motor.previous_reading:
        source = water_motor.with_current(current)
    allocation = billing_flow.compute_allocation(
        [source],
        form.cost_per_unit,
        form.families,
    )

    st.markdown("### 💧 Water split")
    columns = st.columns(len(form.families))
    for column, family in zip(columns, form.families):
        share = allocation.share_for(family.family_id)
        with column:
            st.metric(
                family.display_name,
                f"{percentages[family.family_id]:.2f}%",
                help=f"{family.member_count} members",
            )
            if allocation.total_units > 0:
                st.caption(f"{share.rounded_units:.2f} units · ₹{share.rounded_cost:.2f}")


def render_readings_page(billing_flow: BillingFlow):
    """Render the readings entry page."""
    st.title("📝 Enter Readings")
    st.markdown("Leave a meter blank to skip it this month.")

    families = render_family_settings(billing_flow)
    _load_previous(billing_flow, families)
    previous = st.session_state.get("previous_readings", {})

    validation = st.session_state.get("validation")
    if validation:
        st.error(ReadingFormValidator().get_user_friendly_summary(validation))

    cost_text = st.text_input(
        "Cost per unit (₹)",
        value=st.session_state.get("cost_per_unit", ""),
    )
    if validation and validation.message_for(COST_FIELD):
        st.error(validation.message_for(COST_FIELD))

    blank_form = ReadingForm(previous_readings=previous, families=families)
    current = {}
    for meter in blank_form.meters():
        current[meter.meter_id] = st.text_input(
            f"{meter.display_name} (previous: {meter.previous_reading:g})",
            key=f"reading_{meter.meter_id}",
        )
        if validation and validation.message_for(meter.meter_id):
            st.error(validation.message_for(meter.meter_id))

    if validation and validation.message_for(READINGS_FIELD):
        st.error(validation.message_for(READINGS_FIELD))

    form = ReadingForm(
        cost_per_unit=cost_text,
        current_readings=current,
        previous_readings=previous,
        families=families,
    )

    render_water_split(billing_flow, form)

    st.markdown("---")
    if st.button("💾 Save Bills", type="primary"):
        with st.spinner("Saving bills..."):
            result = run_async(billing_flow.submit_readings(form))
        _show_result(result)

    last = st.session_state.get("last_result")
    if last is not None and last.error is not None and last.run is not None:
        render_retry_buttons(billing_flow, last)


def render_retry_buttons(billing_flow: BillingFlow, last: SubmissionResult) -> None:
    """Continue a run that stopped part way."""
    unsent = last.unsent
    retry_from = unsent[0].tenant_name if unsent else "the start"
    col1, col2 = st.columns(2)
    with col1:
        if st.button(f"🔁 Save the rest, from {retry_from}"):
            with st.spinner("Retrying..."):
                result = run_async(billing_flow.resume_submission(last))
            _show_result(result)
    if last.failed_record is not None and last.pending:
        with col2:
            if st.button(f"↩️ Retry only {last.failed_record.tenant_name}"):
                with st.spinner("Retrying..."):
                    result = run_async(billing_flow.retry_failed_record(last))
                _show_result(result)


def _show_result(result: SubmissionResult) -> None:
    if result.rejected:
        st.session_state.validation = result.validation
        st.rerun()

    st.session_state.validation = None
    st.session_state.last_result = result

    if result.submitted:
        render_bill_details(result)

    if result.error is not None:
        if result.error.kind == ErrorKind.AUTHORIZATION:
            _handle_session_error(result.error)
        if result.failed_record is not None:
            failed = result.failed_record.tenant_name
        elif result.submitted:
            failed = result.unsent[0].tenant_name
        else:
            failed = "the header row"
        st.error(
            f"Saving stopped at {failed}: {result.error.message}. "
            f"{len(result.submitted)} bills were saved, {len(result.unsent)} were not."
        )
        return

    st.session_state.previous_readings = result.next_previous_readings
    st.session_state.last_result = None
    st.success(f"✅ {len(result.submitted)} bills saved.")


def render_bill_details(result: SubmissionResult) -> None:
    st.markdown("### 🧾 Bills")
    st.dataframe(
        [
            {
                "Tenant": record.tenant_name,
                "Previous": record.previous_reading,
                "Current": record.current_reading,
                "Units": record.units_consumed,
                "Electricity (₹)": round(record.electricity_cost, 2),
                "Water units": round(record.water_units, 2),
                "Water (₹)": round(record.water_cost, 2),
                "Total (₹)": round(record.total_bill, 2),
                "Note": "water only" if record.is_water_only else "",
            }
            for record in result.submitted
        ],
        use_container_width=True,
    )

    allocation = result.run.allocation if result.run else None
    if allocation and allocation.total_cost > 0:
        st.caption(
            f"Water total ₹{allocation.total_cost:.2f}; "
            f"family shares add up to ₹{allocation.displayed_cost_total:.2f} after rounding."
        )


def render_history_page(billing_flow: BillingFlow):
    """Render the stored bills."""
    st.title("📊 History")

    try:
        records = run_async(billing_flow.list_records())
    except MeterBillError as e:
        _handle_session_error(e)
        return

    if not records:
        st.info("📋 No bills saved yet. Use 'Enter Readings' to add the first ones.")
        return

    tenants = sorted({record.tenant_name for record in records})
    tenant = st.selectbox("Tenant", options=[None] + tenants,
                          format_func=lambda x: "All tenants" if x is None else x)

    shown = [r for r in reversed(records) if tenant is None or r.tenant_name == tenant]
    for index, record in enumerate(shown):
        title = f"{record.date.isoformat()} · {record.tenant_name} · ₹{record.total_bill:.2f}"
        with st.expander(title):
            st.markdown(
                f"**Reading:** {record.previous_reading:g} → {record.current_reading:g} "
                f"({record.units_consumed:g} units at ₹{record.cost_per_unit:g})"
            )
            if record.water_cost > 0:
                st.markdown(f"**Water:** {record.water_units:.2f} units, ₹{record.water_cost:.2f}")

            render_record_editor(billing_flow, record, index)

            if st.button("🗑️ Delete", key=f"delete_{index}"):
                try:
                    run_async(billing_flow.delete_record(record))
                except MeterBillError as e:
                    _handle_session_error(e)
                    return
                st.success("Deleted.")
                st.rerun()


def render_record_editor(billing_flow: BillingFlow, record: BillRecord, index: int) -> None:
    """Correct a stored bill; it is re-billed and replaces the old row."""
    with st.form(key=f"edit_{index}"):
        col1, col2, col3, col4 = st.columns(4)
        with col1:
            previous = st.text_input(
                "Previous",
                value=f"{record.previous_reading:g}",
                key=f"edit_previous_{index}",
            )
        with col2:
            current = st.text_input(
                "Current",
                value=f"{record.current_reading:g}",
                key=f"edit_current_{index}",
            )
        with col3:
            cost = st.text_input(
                "Cost per unit",
                value=f"{record.cost_per_unit:g}",
                key=f"edit_cost_{index}",
            )
        with col4:
            water = st.text_input(
                "Water (₹)",
                value=f"{record.water_cost:.2f}",
                key=f"edit_water_{index}",
            )

        if st.form_submit_button("✏️ Save changes"):
            try:
                run_async(billing_flow.amend_record(record, {
                    "previous_reading": previous,
                    "current_reading": current,
                    "cost_per_unit": cost,
                    "water_cost": water,
                }))
            except MeterBillError as e:
                _handle_session_error(e)
                return
            st.session_state.pop("previous_readings", None)
            st.success("Saved.")
            st.rerun()


def render_spreadsheet_settings(billing_flow: BillingFlow) -> None:
    """Pick, create and rename the spreadsheet bills are saved to."""
    st.markdown("### 📄 Spreadsheet")

    search = st.text_input("Search spreadsheets", key="spreadsheet_search")
    try:
        spreadsheets = run_async(billing_flow.list_spreadsheets(search))
    except MeterBillError as e:
        _handle_session_error(e)
        return

    selected_id = billing_flow.selected_spreadsheet_id
    if not spreadsheets:
        st.info("No spreadsheets found.")

    for info in spreadsheets:
        col1, col2, col3 = st.columns([4, 1, 1])
        with col1:
            label = f"**{info.name or info.spreadsheet_id}**"
            if info.modified_time:
                label += f"  \nModified {info.modified_time:%Y-%m-%d %H:%M}"
            st.markdown(label)
        with col2:
            if info.spreadsheet_id == selected_id:
                st.markdown("✅ In use")
            elif st.button("Use", key=f"use_{info.spreadsheet_id}"):
                run_async(billing_flow.select_spreadsheet(info.spreadsheet_id, info.name))
                st.session_state.pop("previous_readings", None)
                st.rerun()
        with col3:
            if st.button("Rename", key=f"rename_{info.spreadsheet_id}"):
                st.session_state.renaming = info.spreadsheet_id

        if st.session_state.get("renaming") == info.spreadsheet_id:
            with st.form(key=f"rename_form_{info.spreadsheet_id}"):
                new_name = st.text_input("New name", value=info.name)
                save, cancel = st.columns(2)
                if save.form_submit_button("Save"):
                    try:
                        run_async(billing_flow.rename_spreadsheet(info.spreadsheet_id, new_name))
                    except MeterBillError as e:
                        _handle_session_error(e)
                        return
                    st.session_state.renaming = None
                    st.rerun()
                if cancel.form_submit_button("Cancel"):
                    st.session_state.renaming = None
                    st.rerun()

    st.markdown("#### New")
    col1, col2 = st.columns(2)
    with col1:
        title = st.text_input("Spreadsheet title", placeholder="Electricity Bills - <today>")
        if st.button("➕ Create spreadsheet"):
            try:
                created = run_async(billing_flow.create_spreadsheet(title))
            except MeterBillError as e:
                _handle_session_error(e)
                return
            st.session_state.pop("previous_readings", None)
            st.success(f"Created and selected '{created.name}'.")
            st.rerun()
    with col2:
        sheet_title = st.text_input("Worksheet name", placeholder="April 2024")
        if st.button("➕ Add worksheet"):
            try:
                run_async(billing_flow.create_sheet(sheet_title))
            except MeterBillError as e:
                _handle_session_error(e)
                return
            st.success(f"Worksheet '{sheet_title.strip()}' added to the current spreadsheet.")


def render_settings_page(billing_flow: Optional[BillingFlow] = None):
    """Render the settings page."""
    st.title("⚙️ Settings")

    if billing_flow is not None:
        render_spreadsheet_settings(billing_flow)
        st.markdown("---")

    st.caption(f"Environment: {get_settings().app.app_environment}")
    st.markdown("### Configuration Status")

    status = validate_all_settings()

    sections = [
        ("Google Sheets (Storage)", "google_sheets"),
        ("Google Sign-in", "google_auth"),
        ("App", "app"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown(
        "Configure the app with environment variables or a `.env` file: "
        "`GOOGLE_SHEETS_CREDENTIALS_PATH` and `GOOGLE_SHEETS_SPREADSHEET_ID` are required. "
        "The spreadsheet id is where bills go until another spreadsheet is chosen above."
    )


if __name__ == "__main__":
    main()
