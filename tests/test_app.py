"""
Tests for the Streamlit screens, driven through streamlit's AppTest.

Storage is replaced with one in-memory store, seeded with a March 2024
and a September 2025 calculation, that every browser session shares.
"""

import asyncio
from datetime import datetime
from pathlib import Path

import pytest
import streamlit as st
from streamlit.testing.v1 import AppTest

from calcpro import orchestrator
from calcpro.config import get_settings
from calcpro.models.session import CalcSession
from calcpro.services.storage import InMemorySessionStore, StaticPrincipalProvider

APP_PATH = str(Path(__file__).resolve().parent.parent / "app" / "main.py")
YEARS = ["2025", "2024"]
MONTHS = ["2025-09", "2024-03"]


@pytest.fixture
def shared_store(monkeypatch):
    store = InMemorySessionStore(StaticPrincipalProvider("user-1"))
    for title, tag in (("Rent 9/2025", "2025-09"), ("Taxi 3/2024", "2024-03")):
        session = CalcSession.new(title=title, created_at=datetime(2025, 10, 1))
        session.time_tag = tag
        asyncio.run(store.save_session(session))

    monkeypatch.setattr(orchestrator, "GoogleSheetsSessionStore", lambda principals: store)
    get_settings.cache_clear()
    st.cache_resource.clear()
    yield store
    st.cache_resource.clear()
    get_settings.cache_clear()


def open_app(page=None) -> AppTest:
    at = AppTest.from_file(APP_PATH)
    at.run(timeout=30)
    if page:
        at.sidebar.radio[0].set_value(page).run()
    assert not at.exception
    return at


def checked(at: AppTest, prefix: str, keys: list[str]) -> dict[str, bool]:
    return {key: at.checkbox(key=f"{prefix}_{key}").value for key in keys}


class TestArchiveSelectionWidgets:
    """Tests that the year and month checkboxes follow the library's selection."""

    def test_all_years_checks_every_year(self, shared_store):
        at = open_app("📚 Saved")
        at.button(key="all_years").click().run()

        assert not at.exception
        assert checked(at, "year", YEARS) == {"2025": True, "2024": True}
        library = at.session_state["library"]
        assert library.selection.resolve_years(YEARS) == set(YEARS)

    def test_all_years_twice_clears(self, shared_store):
        at = open_app("📚 Saved")
        at.button(key="all_years").click().run()
        at.button(key="all_years").click().run()

        assert checked(at, "year", YEARS) == {"2025": False, "2024": False}
        assert at.session_state["library"].selection.is_empty

    def test_year_clears_selected_month(self, shared_store):
        """Test picking a year after a month unchecks the month and settles in one run."""
        at = open_app("📚 Saved")
        at.checkbox(key="month_2025-09").check().run()
        assert checked(at, "month", MONTHS) == {"2025-09": True, "2024-03": False}

        at.checkbox(key="year_2024").check().run(timeout=5)

        assert not at.exception
        assert checked(at, "year", YEARS) == {"2025": False, "2024": True}
        assert checked(at, "month", MONTHS) == {"2025-09": False, "2024-03": False}
        selection = at.session_state["library"].selection
        assert selection.resolve_years(YEARS) == {"2024"}
        assert selection.resolve_months(MONTHS) == set()

    def test_month_clears_all_years(self, shared_store):
        at = open_app("📚 Saved")
        at.button(key="all_years").click().run()
        at.checkbox(key="month_2024-03").check().run(timeout=5)

        assert checked(at, "year", YEARS) == {"2025": False, "2024": False}
        assert checked(at, "month", MONTHS) == {"2025-09": False, "2024-03": True}

    def test_browser_sessions_keep_their_own_selection(self, shared_store):
        first = open_app("📚 Saved")
        first.button(key="all_years").click().run()

        second = open_app("📚 Saved")

        assert checked(second, "year", YEARS) == {"2025": False, "2024": False}
        first_library = first.session_state["library"]
        second_library = second.session_state["library"]
        assert first_library is not second_library
        assert first_library.store is second_library.store is shared_store
        assert second_library.selection.is_empty
        assert first_library.selection.resolve_years(YEARS) == set(YEARS)


class TestEditorWidgets:
    """Tests that the header widgets follow the draft."""

    def test_blank_title_saved_as_untitled_stays_clean(self, shared_store):
        """Test the title box shows the stored title after saving a blank one."""
        at = open_app()
        editor = at.session_state["editor"]
        title_key = f"title_{editor.session_id}"

        at.text_input(key=title_key).input("").run()
        assert editor.draft.title == ""

        at.button(key="save").click().run()

        assert not at.exception
        assert [s.value for s in at.success] == ["Saved."]
        assert at.text_input(key=title_key).value == "Untitled calculation"
        assert not editor.is_dirty

        at.run()
        assert not editor.is_dirty
        assert editor.draft.title == "Untitled calculation"

    def test_percent_change_updates_draft(self, shared_store):
        at = open_app()
        editor = at.session_state["editor"]

        at.number_input(key=f"percent_{editor.session_id}").set_value(12.5).run()

        assert editor.draft.percent == 12.5
        assert at.number_input(key=f"percent_{editor.session_id}").value == 12.5
