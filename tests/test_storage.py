"""Tests for session storage (in-memory and Google Sheets with a fake worksheet)."""

import asyncio
import base64
from datetime import datetime

import gspread
import pytest

from calcpro.config import GoogleSheetsSettings
from calcpro.models.session import CalcSession, Deduction, ImageAttachment
from calcpro.services.storage import (
    AuthRequiredError,
    GoogleSheetsClient,
    GoogleSheetsSessionStore,
    InMemorySessionStore,
    RecordTooLargeError,
    StaticPrincipalProvider,
    StorageError,
    record_size,
)
from calcpro.services.storage.google_sheets import (
    CHUNK_SIZE,
    META_COLUMNS,
    max_chunks,
    row_to_session,
    session_to_row,
)


def make_session(title="Rent 9/2025", created_at=datetime(2025, 9, 1), payload_size=0) -> CalcSession:
    session = CalcSession.new(title=title, created_at=created_at)
    session.time_tag = "2025-09"
    if payload_size:
        encoded = base64.b64encode(b"x" * payload_size).decode("ascii")
        session.deductions.append(Deduction(
            amount=5,
            note="taxi",
            attachment=ImageAttachment(
                filename="taxi.jpg",
                mime="image/jpeg",
                encoded_image=f"data:image/jpeg;base64,{encoded}",
            ),
        ))
    return session


class FakeWorksheet:
    """In-memory stand-in for a gspread Worksheet."""

    def __init__(self, header=None):
        self.rows: list[list[str]] = [list(header or META_COLUMNS)]
        self.fail_with: Exception = None

    def _check(self):
        if self.fail_with:
            raise self.fail_with

    def get_all_values(self):
        self._check()
        return [list(r) for r in self.rows]

    def append_row(self, values, value_input_option="RAW"):
        self._check()
        self.rows.append(list(values))

    def update(self, range_name, values, value_input_option="RAW"):
        self._check()
        idx = int(range_name[1:]) - 1
        self.rows[idx] = list(values[0])

    def delete_rows(self, index):
        self._check()
        del self.rows[index - 1]


class FakeSheetsClient:
    """Stand-in for GoogleSheetsClient: one fake worksheet per principal."""

    def __init__(self, max_record_bytes=1024 * 1024):
        self.max_record_bytes = max_record_bytes
        self.sheets: dict[str, FakeWorksheet] = {}

    def get_sessions_sheet(self, principal):
        return self.sheets.setdefault(principal, FakeWorksheet())


class TestInMemoryStore:
    """Tests for InMemorySessionStore."""

    def test_save_and_get(self, store):
        session = make_session()
        asyncio.run(store.init())
        asyncio.run(store.save_session(session))
        assert asyncio.run(store.get_session(session.id)) == session

    def test_get_missing(self, store):
        assert asyncio.run(store.get_session("missing")) is None

    def test_list_newest_first(self, store):
        old = make_session("Old", datetime(2024, 1, 1))
        new = make_session("New", datetime(2025, 1, 1))
        asyncio.run(store.save_session(old))
        asyncio.run(store.save_session(new))
        assert [s.title for s in asyncio.run(store.list_sessions())] == ["New", "Old"]

    def test_stored_copy_is_isolated(self, store):
        """Test later edits to a saved object do not leak into the store."""
        session = make_session()
        asyncio.run(store.save_session(session))
        session.title = "Changed"
        assert asyncio.run(store.get_session(session.id)).title == "Rent 9/2025"

    def test_delete_is_idempotent(self, store):
        session = make_session()
        asyncio.run(store.save_session(session))
        assert asyncio.run(store.delete_session(session.id)) is True
        assert asyncio.run(store.delete_session(session.id)) is False

    def test_principals_are_separate(self):
        first = InMemorySessionStore(StaticPrincipalProvider("a"))
        session = make_session()
        asyncio.run(first.save_session(session))
        first._principals = StaticPrincipalProvider("b")
        assert asyncio.run(first.list_sessions()) == []

    def test_requires_principal(self):
        """Test every operation fails without a signed-in principal."""
        store = InMemorySessionStore(StaticPrincipalProvider(None))
        with pytest.raises(AuthRequiredError, match="Not authenticated"):
            asyncio.run(store.init())
        with pytest.raises(AuthRequiredError):
            asyncio.run(store.save_session(make_session()))
        with pytest.raises(AuthRequiredError):
            asyncio.run(store.delete_session("x"))

    def test_record_ceiling(self, principals):
        store = InMemorySessionStore(principals, max_record_bytes=2048)
        with pytest.raises(RecordTooLargeError) as exc_info:
            asyncio.run(store.save_session(make_session(payload_size=4096)))
        assert exc_info.value.limit == 2048
        assert exc_info.value.size > 2048
        assert asyncio.run(store.list_sessions()) == []


class TestRowConversion:
    """Tests for the spreadsheet row layout."""

    def test_roundtrip(self):
        session = make_session(payload_size=100)
        row = session_to_row(session, updated_at=datetime(2025, 9, 2))
        assert row[:len(META_COLUMNS) - 1] == [
            session.id,
            "2025-09-01T00:00:00",
            "2025-09-02T00:00:00",
            "Rent 9/2025",
            "2025-09",
            "10.0",
        ]
        assert row_to_session(row) == session

    def test_large_payload_is_chunked(self):
        session = make_session(payload_size=CHUNK_SIZE * 2)
        row = session_to_row(session)
        chunk_count = int(row[len(META_COLUMNS) - 1])
        assert chunk_count >= 3
        assert all(len(cell) <= CHUNK_SIZE for cell in row[len(META_COLUMNS):])
        assert row_to_session(row) == session

    def test_truncated_row(self):
        row = session_to_row(make_session(payload_size=CHUNK_SIZE * 2))
        with pytest.raises(ValueError, match="missing payload cells"):
            row_to_session(row[:-1])

    def test_max_chunks(self):
        assert max_chunks(CHUNK_SIZE) == 1
        assert max_chunks(CHUNK_SIZE + 1) == 2


class TestGoogleSheetsStore:
    """Tests for GoogleSheetsSessionStore against a fake worksheet."""

    @pytest.fixture
    def client(self):
        return FakeSheetsClient()

    @pytest.fixture
    def sheets_store(self, principals, client):
        return GoogleSheetsSessionStore(principals, client=client)

    def test_save_appends_then_updates(self, sheets_store, client):
        session = make_session()
        asyncio.run(sheets_store.save_session(session))
        session.title = "Rent 10/2025"
        asyncio.run(sheets_store.save_session(session))

        sheet = client.sheets["user-1"]
        assert len(sheet.rows) == 2  # header + one session
        assert asyncio.run(sheets_store.get_session(session.id)).title == "Rent 10/2025"

    def test_update_blanks_old_payload_cells(self, sheets_store, client):
        session = make_session(payload_size=CHUNK_SIZE * 2)
        asyncio.run(sheets_store.save_session(session))
        session.deductions.clear()
        asyncio.run(sheets_store.save_session(session))

        row = client.sheets["user-1"].rows[1]
        chunk_count = int(row[len(META_COLUMNS) - 1])
        assert chunk_count == 1
        assert all(cell == "" for cell in row[len(META_COLUMNS) + 1:])
        assert asyncio.run(sheets_store.get_session(session.id)) == session

    def test_list_sorted_and_skips_malformed_rows(self, sheets_store, client):
        old = make_session("Old", datetime(2024, 1, 1))
        new = make_session("New", datetime(2025, 1, 1))
        asyncio.run(sheets_store.save_session(old))
        asyncio.run(sheets_store.save_session(new))
        client.sheets["user-1"].rows.append(["broken", "", "", "x", "", "", "1", "{not json"])
        client.sheets["user-1"].rows.append([])

        assert [s.title for s in asyncio.run(sheets_store.list_sessions())] == ["New", "Old"]

    def test_delete(self, sheets_store, client):
        session = make_session()
        asyncio.run(sheets_store.save_session(session))
        assert asyncio.run(sheets_store.delete_session(session.id)) is True
        assert asyncio.run(sheets_store.delete_session(session.id)) is False
        assert len(client.sheets["user-1"].rows) == 1

    def test_record_too_large_before_write(self, principals, client):
        sheets_store = GoogleSheetsSessionStore(principals, client=client, max_record_bytes=4096)
        session = make_session(payload_size=8192)
        assert record_size(session) > 4096
        with pytest.raises(RecordTooLargeError):
            asyncio.run(sheets_store.save_session(session))
        assert "user-1" not in client.sheets

    def test_requires_principal_before_backend(self, client):
        sheets_store = GoogleSheetsSessionStore(StaticPrincipalProvider(None), client=client)
        with pytest.raises(AuthRequiredError):
            asyncio.run(sheets_store.list_sessions())
        assert client.sheets == {}

    def test_backend_error_wrapped(self, sheets_store, client):
        client.get_sessions_sheet("user-1").fail_with = RuntimeError("quota")
        with pytest.raises(StorageError, match="Failed to save session: quota"):
            asyncio.run(sheets_store.save_session(make_session()))
        with pytest.raises(StorageError, match="Failed to list sessions"):
            asyncio.run(sheets_store.list_sessions())


class FakeSpreadsheet:
    def __init__(self):
        self.worksheets: dict[str, FakeWorksheet] = {}
        self.added: list[tuple[str, int, int]] = []

    def worksheet(self, title):
        if title not in self.worksheets:
            raise gspread.WorksheetNotFound(title)
        return self.worksheets[title]

    def add_worksheet(self, title, rows, cols):
        self.added.append((title, rows, cols))
        sheet = FakeWorksheet(header=[])
        sheet.rows = []
        self.worksheets[title] = sheet
        return sheet


class TestGoogleSheetsClient:
    """Tests for worksheet creation."""

    @pytest.fixture
    def client(self):
        with pytest.warns(UserWarning, match="credentials file not found"):
            settings = GoogleSheetsSettings(
                credentials_path="/nonexistent/credentials.json",
                spreadsheet_id="sheet-id",
                max_record_bytes=CHUNK_SIZE * 3,
            )
        client = GoogleSheetsClient(settings)
        client._spreadsheet = FakeSpreadsheet()
        return client

    def test_creates_worksheet_with_header(self, client):
        sheet = client.get_sessions_sheet("user-1")
        assert client._spreadsheet.added == [("sessions_user-1", 1000, len(META_COLUMNS) + 3)]
        assert sheet.rows[0] == META_COLUMNS + ["payload_0", "payload_1", "payload_2"]

    def test_reuses_existing_worksheet(self, client):
        first = client.get_sessions_sheet("user-1")
        assert client.get_sessions_sheet("user-1") is first
        assert len(client._spreadsheet.added) == 1
