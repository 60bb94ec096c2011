"""
Streamlit Frontend for Calc Pro

The screen the user works in: one calculation at a time, plus the
list of saved calculations and the receipt download.

DESIGN PRINCIPLES:
1. Totals update as soon as a number changes
2. Explicit confirmation before anything is deleted
3. Clear error messages in simple language
4. Nothing is saved without an explicit "Save" action
"""

import asyncio
from datetime import date

import streamlit as st

from calcpro.archive import ArchiveResult
from calcpro.calculation import format_amount
from calcpro.config import validate_all_settings
from calcpro.orchestrator import SessionEditor, SessionLibrary, create_app_components
from calcpro.periods import format_time_key, split_time_key
from calcpro.services.image import ImageDecodeError
from calcpro.services.storage import AuthRequiredError, StorageError


# Page configuration
st.set_page_config(
    page_title="Calc Pro",
    page_icon="🧮",
    layout="wide",
    initial_sidebar_state="expanded",
)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> SessionLibrary:
    """Get or create the shared store and services (cached)."""
    library, _ = create_app_components(use_storage=True)
    return library


def get_library() -> SessionLibrary:
    """This browser session's library: shared store, own list and selection."""
    if "library" not in st.session_state:
        library = get_components().fork()
        try:
            run_async(library.init())
        except AuthRequiredError as e:
            st.error(str(e))
        except StorageError as e:
            st.error(f"Could not load your calculations: {e}")
        st.session_state.library = library
    return st.session_state.library


def get_editor(library: SessionLibrary) -> SessionEditor:
    """The editor of the current page view, created on first use."""
    if "editor" not in st.session_state:
        st.session_state.editor = run_async(library.new_editor())
    return st.session_state.editor


def offer_download(result: ArchiveResult, key: str):
    if result.created:
        st.download_button(
            "⬇️ Download archive",
            data=result.content,
            file_name=result.archive_name,
            mime="application/zip",
            key=key,
        )
        if result.skipped:
            st.warning(f"{len(result.skipped)} unreadable receipt(s) were left out.")
    else:
        st.info(result.message)


def sync_editor_widgets(editor: SessionEditor):
    """Write the draft's header fields into their widget keys before the widgets render."""
    draft = editor.draft
    year, month = split_time_key(editor.time_key)
    st.session_state[f"title_{draft.id}"] = draft.title
    st.session_state[f"percent_{draft.id}"] = float(draft.percent)
    st.session_state[f"period_{draft.id}"] = date(int(year), int(month), 1)


def sync_selection_widgets(library: SessionLibrary, years: list[str], month_keys: list[str]):
    """Write the resolved archive selection into the checkbox keys before they render."""
    selected_years = library.selection.resolve_years(years)
    selected_months = library.selection.resolve_months(month_keys)
    for year in years:
        st.session_state[f"year_{year}"] = year in selected_years
    for key in month_keys:
        st.session_state[f"month_{key}"] = key in selected_months


def on_title_change(editor: SessionEditor, key: str):
    editor.set_title(st.session_state[key])


def on_percent_change(editor: SessionEditor, key: str):
    editor.set_percent(st.session_state[key])


def on_period_change(editor: SessionEditor, key: str):
    period = st.session_state[key]
    if period is not None:
        editor.set_period(period.year, period.month)


def on_save(library: SessionLibrary, editor: SessionEditor):
    try:
        run_async(library.save(editor))
        st.session_state.flash = ("success", "Saved.")
    except (StorageError, AuthRequiredError) as e:
        st.session_state.flash = ("error", f"Could not save: {e}")


def show_flash():
    flash = st.session_state.pop("flash", None)
    if flash:
        level, message = flash
        getattr(st, level)(message)


def main():
    """Main application entry point."""
    library = get_library()

    st.sidebar.title("🧮 Calc Pro")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["🧮 Calculation", "📚 Saved", "⚙️ Settings"],
        index=0,
    )

    if page == "🧮 Calculation":
        render_editor_page(library)
    elif page == "📚 Saved":
        render_library_page(library)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_editor_page(library: SessionLibrary):
    """Render the calculation editor."""
    editor = get_editor(library)
    draft = editor.draft
    sync_editor_widgets(editor)
    show_flash()

    col1, col2, col3 = st.columns([3, 1, 1])
    with col1:
        key = f"title_{draft.id}"
        st.text_input("Title", key=key, on_change=on_title_change, args=(editor, key))
    with col2:
        key = f"percent_{draft.id}"
        st.number_input(
            "Percent",
            min_value=0.0,
            step=0.5,
            key=key,
            on_change=on_percent_change,
            args=(editor, key),
        )
    with col3:
        key = f"period_{draft.id}"
        st.date_input("Period", key=key, on_change=on_period_change, args=(editor, key))

    st.subheader("Items")
    for item in list(draft.items):
        c1, c2 = st.columns([5, 1])
        with c1:
            value = st.text_input("Value", value=format_amount(item.value).replace(",", ""),
                                  key=f"item_{item.id}", label_visibility="collapsed")
            editor.update_item(item.id, value)
        with c2:
            if st.button("✖", key=f"remove_item_{item.id}"):
                if not editor.remove_item(item.id):
                    st.warning("A calculation keeps at least two items.")
                st.rerun()
    if st.button("➕ Add item"):
        editor.add_item()
        st.rerun()

    st.subheader("Deductions")
    for deduction in list(draft.deductions):
        c1, c2, c3 = st.columns([2, 3, 1])
        with c1:
            amount = st.text_input("Amount", value=format_amount(deduction.amount).replace(",", ""),
                                   key=f"amount_{deduction.id}")
        with c2:
            note = st.text_input("Note", value=deduction.note, key=f"note_{deduction.id}")
        editor.update_deduction(deduction.id, amount=amount, note=note)
        with c3:
            if st.button("🗑️", key=f"remove_deduction_{deduction.id}"):
                editor.remove_deduction(deduction.id)
                st.rerun()

        if deduction.attachment:
            st.caption(f"📎 {deduction.attachment.filename}")
            if st.button("Remove receipt", key=f"remove_receipt_{deduction.id}"):
                run_async(editor.remove_attachment(deduction.id))
                st.rerun()

        upload = st.file_uploader(
            "Receipt photo",
            type=["jpg", "jpeg", "png", "webp"],
            key=f"receipt_{deduction.id}",
        )
        if upload and st.button("📎 Attach", key=f"attach_{deduction.id}"):
            with st.spinner("Compressing receipt..."):
                try:
                    run_async(editor.attach_receipt(deduction.id, upload.read()))
                    st.rerun()
                except ImageDecodeError as e:
                    st.error(f"This file could not be read as an image: {e}")

    if st.button("➕ Add deduction"):
        editor.add_deduction()
        st.rerun()

    totals = editor.totals
    st.markdown("---")
    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Sum", format_amount(totals.sum))
    m2.metric("Percent amount", format_amount(totals.percent_amount))
    m3.metric("Deductions", format_amount(totals.deductions_sum))
    m4.metric("Total", format_amount(totals.total))
    if totals.is_over_deducted:
        st.warning(f"Over-deducted by {format_amount(totals.over_deducted)}")
    else:
        st.info(f"Remaining to deduct: {format_amount(totals.remaining_to_deduct)}")

    c1, c2, c3 = st.columns(3)
    with c1:
        st.button("💾 Save", type="primary", key="save", on_click=on_save, args=(library, editor))
    with c2:
        if st.button("🆕 New calculation"):
            st.session_state.editor = run_async(library.new_editor())
            st.rerun()
    with c3:
        if st.button("📦 All receipts"):
            offer_download(run_async(editor.export_receipts()), key="session_archive")


def render_library_page(library: SessionLibrary):
    """Render the saved calculations and the receipt download."""
    st.title("📚 Saved calculations")

    query = st.text_input("Search by title")
    for session in library.search(query):
        c1, c2, c3 = st.columns([4, 1, 1])
        c1.markdown(f"**{session.title}**")
        with c2:
            if st.button("Open", key=f"open_{session.id}"):
                editor = run_async(library.open(session.id))
                if editor is None:
                    st.error("This calculation no longer exists.")
                else:
                    st.session_state.editor = editor
                    st.success("Opened. Switch to the Calculation page.")
        with c3:
            if st.button("Delete", key=f"delete_{session.id}"):
                st.session_state.pending_delete = session.id

    pending = st.session_state.get("pending_delete")
    if pending:
        st.warning("Delete this calculation? This cannot be undone.")
        c1, c2 = st.columns(2)
        with c1:
            if st.button("Yes, delete"):
                run_async(library.delete(pending, confirm=lambda _prompt: True))
                st.session_state.pending_delete = None
                st.rerun()
        with c2:
            if st.button("Cancel"):
                run_async(library.delete(pending, confirm=lambda _prompt: False))
                st.session_state.pending_delete = None
                st.rerun()

    st.markdown("---")
    st.subheader("📦 Download receipts")
    buckets = library.buckets()
    sync_selection_widgets(library, buckets.years, buckets.month_keys)

    st.markdown("**Years**")
    st.button("All years", key="all_years", on_click=library.toggle_all_years)
    year_cols = st.columns(max(1, len(buckets.years)))
    for col, year in zip(year_cols, buckets.years):
        with col:
            st.checkbox(year, key=f"year_{year}", on_change=library.toggle_year, args=(year,))

    st.markdown("**Months**")
    st.button("All months", key="all_months", on_click=library.toggle_all_months)
    for key in buckets.month_keys:
        st.checkbox(
            format_time_key(key),
            key=f"month_{key}",
            on_change=library.toggle_month,
            args=(key,),
        )

    if st.button("Build archive", type="primary"):
        offer_download(run_async(library.export_selected()), key="selected_archive")


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()

    sections = [
        ("Receipt compression", "compression"),
        ("Google Sheets (Storage)", "google_sheets"),
        ("Application", "app"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your settings. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
