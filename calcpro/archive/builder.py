"""
Receipt Archive Builder

Bundles receipt images into a zip archive:

1. Bucketing: the distinct years and "YYYY-MM" keys present in a
   session list, newest first
2. Selective export: every receipt of every session whose period
   matches the user's selection
3. Single-session export: every receipt of one session

Periods come from normalize_time_key(), the same function the save path
uses, so what the user sees in the picker is what gets exported.

Empty selections and selections without receipts are not errors: they
yield an ArchiveResult with a soft status and no archive.
"""

import asyncio
import zipfile
from collections.abc import Iterable
from enum import Enum
from io import BytesIO
from pathlib import PurePosixPath
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from calcpro.archive.selection import ArchiveSelection
from calcpro.config import get_settings
from calcpro.models.session import CalcSession, ImageAttachment
from calcpro.periods import format_time_key, normalize_time_key, split_time_key
from calcpro.services.image import sanitize_filename

logger = structlog.get_logger(__name__)


class ArchiveStatus(str, Enum):
    """Outcome of an export request."""
    CREATED = "created"
    NOTHING_SELECTED = "nothing_selected"
    NOTHING_TO_EXPORT = "nothing_to_export"


STATUS_MESSAGES = {
    ArchiveStatus.CREATED: "Archive ready for download.",
    ArchiveStatus.NOTHING_SELECTED: "Please select a year or months to download.",
    ArchiveStatus.NOTHING_TO_EXPORT: "No receipts found to download.",
}


class SessionBuckets(BaseModel):
    """Distinct periods present in a session list."""

    years: list[str] = Field(
        default_factory=list,
        description="Years, newest first"
    )
    month_keys: list[str] = Field(
        default_factory=list,
        description="YYYY-MM keys, newest first"
    )


class ArchiveResult(BaseModel):
    """Result of an export request."""

    status: ArchiveStatus
    archive_name: Optional[str] = None
    content: Optional[bytes] = Field(
        default=None,
        repr=False,
        description="Zip bytes when status is CREATED"
    )
    entry_names: list[str] = Field(default_factory=list)
    session_count: int = Field(
        default=0,
        ge=0,
        description="Number of sessions that matched the selection"
    )
    skipped: list[str] = Field(
        default_factory=list,
        description="Receipts left out because their stored image is unreadable"
    )

    @property
    def created(self) -> bool:
        return self.status == ArchiveStatus.CREATED

    @property
    def entry_count(self) -> int:
        return len(self.entry_names)

    @property
    def message(self) -> str:
        """User-facing notice for this result."""
        return STATUS_MESSAGES[self.status]


def session_time_key(session: CalcSession) -> str:
    """The canonical period of a session."""
    return normalize_time_key(session.time_tag, session.title, session.created_at)


def bucket_sessions(sessions: Iterable[CalcSession]) -> SessionBuckets:
    """
    Collect the distinct years and month keys of a session list.

    Years sort descending; month keys sort by year, then month, descending.
    """
    years: set[str] = set()
    month_keys: set[str] = set()
    for session in sessions:
        key = session_time_key(session)
        year, month = split_time_key(key)
        years.add(year)
        month_keys.add(key)

    return SessionBuckets(
        years=sorted(years, key=int, reverse=True),
        month_keys=sorted(
            month_keys,
            key=lambda k: tuple(int(part) for part in split_time_key(k)),
            reverse=True,
        ),
    )


def match_sessions(
    sessions: Iterable[CalcSession],
    selection: ArchiveSelection,
) -> list[CalcSession]:
    """Sessions whose year or month key is selected."""
    sessions = list(sessions)
    buckets = bucket_sessions(sessions)
    years = selection.resolve_years(buckets.years)
    month_keys = selection.resolve_months(buckets.month_keys)

    matched = []
    for session in sessions:
        key = session_time_key(session)
        year, _ = split_time_key(key)
        if year in years or key in month_keys:
            matched.append(session)
    return matched


def unique_entry_name(name: str, used: set[str]) -> str:
    """
    Make an entry name unique within one archive.

    "a.jpg", "a.jpg" -> "a.jpg", "a (2).jpg"
    """
    if name not in used:
        return name
    path = PurePosixPath(name)
    counter = 2
    while True:
        candidate = f"{path.stem} ({counter}){path.suffix}"
        if candidate not in used:
            return candidate
        counter += 1


def _pack(attachments: Iterable[ImageAttachment]) -> tuple[bytes, list[str], list[str]]:
    """Zip the decoded attachments; return (zip bytes, entry names, skipped names)."""
    buffer = BytesIO()
    names: list[str] = []
    skipped: list[str] = []
    used: set[str] = set()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for attachment in attachments:
            try:
                data = attachment.decoded_bytes()
            except ValueError as e:
                logger.warning("receipt_skipped", filename=attachment.filename, error=str(e))
                skipped.append(attachment.filename)
                continue
            name = unique_entry_name(attachment.filename, used)
            used.add(name)
            archive.writestr(name, data)
            names.append(name)
    return buffer.getvalue(), names, skipped


def _result_from(
    attachments: list[ImageAttachment],
    archive_name: str,
    session_count: int,
) -> ArchiveResult:
    if not attachments:
        return ArchiveResult(status=ArchiveStatus.NOTHING_TO_EXPORT, session_count=session_count)

    content, names, skipped = _pack(attachments)
    if not names:
        return ArchiveResult(
            status=ArchiveStatus.NOTHING_TO_EXPORT,
            session_count=session_count,
            skipped=skipped,
        )
    return ArchiveResult(
        status=ArchiveStatus.CREATED,
        archive_name=archive_name,
        content=content,
        entry_names=names,
        session_count=session_count,
        skipped=skipped,
    )


def selected_archive_name(years: Iterable[str], month_keys: Iterable[str]) -> str:
    """
    Name of a selective export.

    Years win over months: {"2024", "2025"} -> "receipts_2024_2025.zip",
    otherwise {"2025-09"} -> "receipts_months_09/2025.zip".
    """
    prefix = get_settings().app.archive_prefix
    years = sorted(years, key=int)
    if years:
        return f"{prefix}_{'_'.join(years)}.zip"
    months = "_".join(format_time_key(k) for k in sorted(month_keys))
    return f"{prefix}_months_{months}.zip"


def build_selected_archive(
    sessions: Iterable[CalcSession],
    selection: ArchiveSelection,
) -> ArchiveResult:
    """
    Zip every receipt of every session matching the selection.

    Returns:
        ArchiveResult; NOTHING_SELECTED when the selection is empty,
        NOTHING_TO_EXPORT when no matching session carries a receipt
    """
    if selection.is_empty:
        return ArchiveResult(status=ArchiveStatus.NOTHING_SELECTED)

    sessions = list(sessions)
    buckets = bucket_sessions(sessions)
    years = selection.resolve_years(buckets.years)
    month_keys = selection.resolve_months(buckets.month_keys)
    if not years and not month_keys:
        return ArchiveResult(status=ArchiveStatus.NOTHING_SELECTED)

    matched = match_sessions(sessions, selection)
    attachments = [a for session in matched for a in session.attachments]
    return _result_from(
        attachments,
        selected_archive_name(years, month_keys),
        session_count=len(matched),
    )


def build_session_archive(session: CalcSession) -> ArchiveResult:
    """Zip every receipt of one session, named after its title."""
    title = sanitize_filename(session.title) or get_settings().app.receipt_title_fallback
    return _result_from(
        session.attachments,
        f"{title} - all images.zip",
        session_count=1,
    )


class ArchiveBuilder:
    """
    Async front for the archive functions.

    Decoding and zipping run in a worker thread.
    """

    async def export_selected(
        self,
        sessions: Iterable[CalcSession],
        selection: ArchiveSelection,
    ) -> ArchiveResult:
        return await asyncio.to_thread(build_selected_archive, list(sessions), selection)

    async def export_session(self, session: CalcSession) -> ArchiveResult:
        return await asyncio.to_thread(build_session_archive, session)
