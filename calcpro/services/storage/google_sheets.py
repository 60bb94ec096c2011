"""
Google Sheets Storage Implementation

Google Sheets is the default backend because:
1. Users can look at their calculations directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Layout: one worksheet per principal ("{prefix}_{principal}"), one row
per session. The first columns hold readable metadata; the full session
JSON follows, split over as many cells as needed because a single cell
holds at most 50 000 characters. Receipts travel inline, which is why
records are capped at max_record_bytes.

TRADEOFFS:
- Every call reads the whole worksheet (fine for personal volumes)
- No transactions; a save is a single row write
"""

import math
from datetime import datetime
from typing import Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from calcpro.config import GoogleSheetsSettings, get_settings
from calcpro.models.session import CalcSession
from calcpro.periods import normalize_time_key
from calcpro.services.storage.interface import (
    ConnectionError,
    PrincipalProvider,
    RecordTooLargeError,
    SessionStoreInterface,
    StorageError,
    deserialize_session,
    record_size,
    serialize_session,
)

# Readable metadata columns, followed by payload chunk columns
META_COLUMNS = [
    "id",
    "created_at",
    "updated_at",
    "title",
    "time_tag",
    "percent",
    "chunk_count",
]
CHUNK_SIZE = 45_000

_retry_api = retry(
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)

logger = structlog.get_logger(__name__)


def max_chunks(max_record_bytes: int) -> int:
    """Number of payload columns needed for the largest allowed record."""
    return math.ceil(max_record_bytes / CHUNK_SIZE)


def session_to_row(session: CalcSession, updated_at: Optional[datetime] = None) -> list[str]:
    """Convert a session to a spreadsheet row."""
    payload = serialize_session(session)
    chunks = [payload[i:i + CHUNK_SIZE] for i in range(0, len(payload), CHUNK_SIZE)]
    return [
        session.id,
        session.created_at.isoformat(),
        (updated_at or datetime.utcnow()).isoformat(),
        session.title,
        normalize_time_key(session.time_tag, session.title, session.created_at),
        str(session.percent),
        str(len(chunks)),
        *chunks,
    ]


def row_to_session(row: list[str]) -> CalcSession:
    """
    Convert a spreadsheet row back to a session.

    Raises:
        ValueError: If the row is truncated or holds invalid JSON
    """
    meta_width = len(META_COLUMNS)
    if len(row) < meta_width:
        raise ValueError("Row is missing metadata columns")
    chunk_count = int(row[meta_width - 1] or 0)
    chunks = row[meta_width:meta_width + chunk_count]
    if chunk_count == 0 or len(chunks) < chunk_count:
        raise ValueError(f"Row for session {row[0]!r} is missing payload cells")
    return deserialize_session("".join(chunks))


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def max_record_bytes(self) -> int:
        return self._settings.max_record_bytes

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError as e:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}") from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound as e:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
        return self._spreadsheet

    def get_sessions_sheet(self, principal: str) -> gspread.Worksheet:
        """Get or create the principal's session worksheet."""
        spreadsheet = self.get_spreadsheet()
        title = f"{self._settings.worksheet_prefix}_{principal}"
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            chunk_columns = max_chunks(self._settings.max_record_bytes)
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(META_COLUMNS) + chunk_columns,
            )
            header = META_COLUMNS + [f"payload_{i}" for i in range(chunk_columns)]
            sheet.append_row(header)
        return sheet


class GoogleSheetsSessionStore(SessionStoreInterface):
    """
    Google Sheets implementation of session storage.

    Sessions are stored one per row; see the module docstring for the
    column layout.
    """

    def __init__(
        self,
        principals: PrincipalProvider,
        client: Optional[GoogleSheetsClient] = None,
        max_record_bytes: Optional[int] = None,
    ):
        super().__init__(principals)
        self._client = client or GoogleSheetsClient()
        self._max_record_bytes = max_record_bytes or self._client.max_record_bytes

    @_retry_api
    def _read_rows(self, principal: str) -> list[list[str]]:
        """All data rows of the principal's worksheet (header excluded)."""
        sheet = self._client.get_sessions_sheet(principal)
        return sheet.get_all_values()[1:]

    @staticmethod
    def _find_row_index(rows: list[list[str]], session_id: str) -> Optional[int]:
        """1-based sheet row number of a session (row 1 is the header)."""
        for idx, row in enumerate(rows, start=2):
            if row and row[0] == session_id:
                return idx
        return None

    @_retry_api
    def _write_row(self, principal: str, session: CalcSession) -> None:
        sheet = self._client.get_sessions_sheet(principal)
        rows = sheet.get_all_values()[1:]
        new_row = session_to_row(session)
        idx = self._find_row_index(rows, session.id)
        if idx is None:
            sheet.append_row(new_row, value_input_option="RAW")
            return
        # Blank out payload cells left over from a larger previous version
        old_width = len(rows[idx - 2])
        new_row += [""] * max(0, old_width - len(new_row))
        sheet.update(range_name=f"A{idx}", values=[new_row], value_input_option="RAW")

    @_retry_api
    def _delete_row(self, principal: str, session_id: str) -> bool:
        sheet = self._client.get_sessions_sheet(principal)
        idx = self._find_row_index(sheet.get_all_values()[1:], session_id)
        if idx is None:
            return False
        sheet.delete_rows(idx)
        return True

    async def init(self) -> None:
        principal = self._require_principal()
        try:
            self._client.get_sessions_sheet(principal)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to open session worksheet: {e}") from e

    async def list_sessions(self) -> list[CalcSession]:
        principal = self._require_principal()
        try:
            rows = self._read_rows(principal)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list sessions: {e}") from e

        sessions = []
        for row in rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                sessions.append(row_to_session(row))
            except (ValueError, ValidationError) as e:
                logger.warning("session_row_skipped", session_id=row[0], error=str(e))

        # Newest first
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    async def get_session(self, session_id: str) -> Optional[CalcSession]:
        principal = self._require_principal()
        try:
            rows = self._read_rows(principal)
            idx = self._find_row_index(rows, session_id)
            return row_to_session(rows[idx - 2]) if idx else None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get session: {e}") from e

    async def save_session(self, session: CalcSession) -> None:
        principal = self._require_principal()
        size = record_size(session)
        if size > self._max_record_bytes:
            raise RecordTooLargeError(size, self._max_record_bytes)
        try:
            self._write_row(principal, session)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save session: {e}") from e

    async def delete_session(self, session_id: str) -> bool:
        principal = self._require_principal()
        try:
            return self._delete_row(principal, session_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete session: {e}") from e
