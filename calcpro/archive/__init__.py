"""Receipt archive package: period bucketing, selection and zip export."""

from calcpro.archive.builder import (
    ArchiveBuilder,
    ArchiveResult,
    ArchiveStatus,
    SessionBuckets,
    bucket_sessions,
    build_selected_archive,
    build_session_archive,
    match_sessions,
    selected_archive_name,
    session_time_key,
    unique_entry_name,
)
from calcpro.archive.selection import (
    ArchiveSelection,
    SelectAll,
    SelectNone,
    SelectSet,
    Selection,
    resolve_selection,
    select_keys,
)

__all__ = [
    # Builder
    "ArchiveBuilder",
    "ArchiveResult",
    "ArchiveStatus",
    "SessionBuckets",
    "bucket_sessions",
    "build_selected_archive",
    "build_session_archive",
    "match_sessions",
    "selected_archive_name",
    "session_time_key",
    "unique_entry_name",
    # Selection
    "ArchiveSelection",
    "SelectAll",
    "SelectNone",
    "SelectSet",
    "Selection",
    "resolve_selection",
    "select_keys",
]
