"""Tests for period bucketing, archive selection and zip export."""

import asyncio
import base64
import zipfile
from datetime import datetime
from io import BytesIO

import pytest

from calcpro.archive import (
    ArchiveBuilder,
    ArchiveSelection,
    ArchiveStatus,
    SelectAll,
    SelectNone,
    SelectSet,
    bucket_sessions,
    build_selected_archive,
    build_session_archive,
    match_sessions,
    selected_archive_name,
    unique_entry_name,
)
from calcpro.models.session import CalcSession, Deduction, ImageAttachment


def attachment(filename: str, payload: bytes = b"jpeg-bytes") -> ImageAttachment:
    encoded = base64.b64encode(payload).decode("ascii")
    return ImageAttachment(
        filename=filename,
        mime="image/jpeg",
        encoded_image=f"data:image/jpeg;base64,{encoded}",
    )


def session(title: str, time_tag=None, created_at=None, receipts=()) -> CalcSession:
    return CalcSession(
        title=title,
        time_tag=time_tag,
        created_at=created_at or datetime(2020, 1, 1),
        deductions=[Deduction(amount=1, attachment=a) for a in receipts],
    )


def zip_entries(content: bytes) -> dict[str, bytes]:
    with zipfile.ZipFile(BytesIO(content)) as archive:
        return {name: archive.read(name) for name in archive.namelist()}


@pytest.fixture
def sessions():
    return [
        session("Rent 9/2025", "2025-09", receipts=[attachment("rent.jpg", b"rent")]),
        session("Taxi", "2025-03", receipts=[attachment("taxi.jpg", b"taxi")]),
        session("Legacy 12/2024", None, receipts=[attachment("legacy.jpg", b"legacy")]),
        session("Old", None, created_at=datetime(2024, 5, 17)),
    ]


class TestBucketing:
    """Tests for bucket_sessions()."""

    def test_years_and_months_newest_first(self, sessions):
        buckets = bucket_sessions(sessions)
        assert buckets.years == ["2025", "2024"]
        assert buckets.month_keys == ["2025-09", "2025-03", "2024-12", "2024-05"]

    def test_empty(self):
        buckets = bucket_sessions([])
        assert buckets.years == []
        assert buckets.month_keys == []

    def test_legacy_tags_normalized(self):
        """Test hand-typed tags land in the same bucket as canonical ones."""
        buckets = bucket_sessions([session("a", "9/2025"), session("b", "2025-9")])
        assert buckets.month_keys == ["2025-09"]


class TestArchiveSelection:
    """Tests for selection transitions."""

    def test_default_is_empty(self):
        selection = ArchiveSelection()
        assert selection.is_empty
        assert isinstance(selection.years, SelectNone)

    def test_toggle_year_adds_and_removes(self):
        selection = ArchiveSelection().toggle_year("2025")
        assert selection.years == SelectSet(keys=frozenset({"2025"}))
        assert selection.toggle_year("2025").is_empty

    def test_selecting_year_clears_months(self):
        selection = ArchiveSelection().toggle_month("2025-09").toggle_year("2024")
        assert isinstance(selection.months, SelectNone)
        assert selection.resolve_years([]) == {"2024"}

    def test_selecting_month_clears_years(self):
        selection = ArchiveSelection().toggle_year("2024").toggle_month("2025-09")
        assert isinstance(selection.years, SelectNone)
        assert selection.resolve_months([]) == {"2025-09"}

    def test_toggle_all_years(self):
        available = ["2025", "2024"]
        selection = ArchiveSelection().toggle_month("2025-09").toggle_all_years(available)
        assert isinstance(selection.years, SelectAll)
        assert isinstance(selection.months, SelectNone)
        assert selection.resolve_years(available) == {"2025", "2024"}
        assert selection.toggle_all_years(available).is_empty

    def test_toggle_all_when_every_key_picked_by_hand(self):
        """Test "all" clears the axis when every key is already selected individually."""
        available = ["2025", "2024"]
        selection = ArchiveSelection().set_years(available)
        assert selection.toggle_all_years(available).is_empty

    def test_toggle_year_out_of_all(self):
        """Test deselecting one key from "all" keeps the rest."""
        available = ["2025", "2024", "2023"]
        selection = ArchiveSelection().toggle_all_years(available).toggle_year("2024", available)
        assert selection.resolve_years(available) == {"2025", "2023"}

    def test_set_months_empty_keeps_years(self):
        selection = ArchiveSelection().set_years(["2025"]).set_months([])
        assert selection.resolve_years([]) == {"2025"}

    def test_clear(self):
        assert ArchiveSelection().toggle_year("2025").clear().is_empty

    def test_selection_is_immutable(self):
        selection = ArchiveSelection()
        selection.toggle_year("2025")
        assert selection.is_empty


class TestArchiveNames:
    """Tests for archive naming."""

    def test_years_ascending(self):
        assert selected_archive_name({"2025", "2024"}, set()) == "receipts_2024_2025.zip"

    def test_months(self):
        assert selected_archive_name(set(), {"2025-09"}) == "receipts_months_09/2025.zip"

    def test_months_ascending(self):
        name = selected_archive_name(set(), {"2025-09", "2024-12", "2025-01"})
        assert name == "receipts_months_12/2024_01/2025_09/2025.zip"

    def test_unique_entry_name(self):
        used = {"a.jpg", "a (2).jpg"}
        assert unique_entry_name("b.jpg", used) == "b.jpg"
        assert unique_entry_name("a.jpg", used) == "a (3).jpg"


class TestSelectedArchive:
    """Tests for build_selected_archive()."""

    def test_nothing_selected(self, sessions):
        result = build_selected_archive(sessions, ArchiveSelection())
        assert result.status == ArchiveStatus.NOTHING_SELECTED
        assert not result.created
        assert result.content is None
        assert result.message == "Please select a year or months to download."

    def test_select_all_with_no_sessions(self):
        result = build_selected_archive([], ArchiveSelection().toggle_all_years([]))
        assert result.status == ArchiveStatus.NOTHING_SELECTED

    def test_nothing_to_export(self, sessions):
        selection = ArchiveSelection().toggle_month("2024-05")
        result = build_selected_archive(sessions, selection)
        assert result.status == ArchiveStatus.NOTHING_TO_EXPORT
        assert result.session_count == 1
        assert result.message == "No receipts found to download."

    def test_by_year(self, sessions):
        result = build_selected_archive(sessions, ArchiveSelection().toggle_year("2025"))
        assert result.created
        assert result.archive_name == "receipts_2025.zip"
        assert result.entry_count == 2
        assert zip_entries(result.content) == {"rent.jpg": b"rent", "taxi.jpg": b"taxi"}

    def test_by_month(self, sessions):
        result = build_selected_archive(sessions, ArchiveSelection().toggle_month("2024-12"))
        assert result.archive_name == "receipts_months_12/2024.zip"
        assert zip_entries(result.content) == {"legacy.jpg": b"legacy"}

    def test_all_years(self, sessions):
        buckets = bucket_sessions(sessions)
        selection = ArchiveSelection().toggle_all_years(buckets.years)
        result = build_selected_archive(sessions, selection)
        assert result.archive_name == "receipts_2024_2025.zip"
        assert sorted(result.entry_names) == ["legacy.jpg", "rent.jpg", "taxi.jpg"]
        assert result.session_count == 4

    def test_duplicate_filenames_kept(self):
        sessions = [
            session("A", "2025-01", receipts=[attachment("r.jpg", b"one")]),
            session("B", "2025-01", receipts=[attachment("r.jpg", b"two")]),
        ]
        result = build_selected_archive(sessions, ArchiveSelection().toggle_year("2025"))
        assert zip_entries(result.content) == {"r.jpg": b"one", "r (2).jpg": b"two"}

    def test_corrupt_attachment_skipped(self):
        broken = ImageAttachment(
            filename="broken.jpg",
            mime="image/jpeg",
            encoded_image="data:image/jpeg;base64,abc",
        )
        sessions = [session("A", "2025-01", receipts=[broken, attachment("ok.jpg")])]
        result = build_selected_archive(sessions, ArchiveSelection().toggle_year("2025"))
        assert result.created
        assert result.entry_names == ["ok.jpg"]
        assert result.skipped == ["broken.jpg"]

    def test_payload_with_foreign_characters_skipped(self):
        """Test a payload that only decodes by dropping characters is reported, not exported."""
        mangled = ImageAttachment(
            filename="mangled.jpg",
            mime="image/jpeg",
            encoded_image="data:image/jpeg;base64,aGVs!bG8=",
        )
        sessions = [session("A", "2025-01", receipts=[mangled, attachment("ok.jpg")])]
        result = build_selected_archive(sessions, ArchiveSelection().toggle_year("2025"))
        assert result.entry_names == ["ok.jpg"]
        assert result.skipped == ["mangled.jpg"]

    def test_selection_agrees_with_buckets(self, sessions):
        """Test every bucket key selects exactly the sessions normalized into it."""
        buckets = bucket_sessions(sessions)
        matched_by_month = {
            key: match_sessions(sessions, ArchiveSelection().toggle_month(key))
            for key in buckets.month_keys
        }
        assert sum(len(m) for m in matched_by_month.values()) == len(sessions)
        for year in buckets.years:
            by_year = match_sessions(sessions, ArchiveSelection().toggle_year(year))
            by_months = [
                s for key, matched in matched_by_month.items()
                if key.startswith(f"{year}-") for s in matched
            ]
            assert {s.id for s in by_year} == {s.id for s in by_months}


class TestSessionArchive:
    """Tests for build_session_archive()."""

    def test_named_after_title(self):
        result = build_session_archive(session("Rent 9/2025", receipts=[attachment("a.jpg")]))
        assert result.archive_name == "Rent 9 2025 - all images.zip"
        assert result.entry_names == ["a.jpg"]

    def test_blank_title(self):
        result = build_session_archive(session("", receipts=[attachment("a.jpg")]))
        assert result.archive_name == "Calculation - all images.zip"

    def test_no_receipts(self):
        result = build_session_archive(session("Empty"))
        assert result.status == ArchiveStatus.NOTHING_TO_EXPORT

    def test_async_builder(self, sessions):
        builder = ArchiveBuilder()
        result = asyncio.run(builder.export_session(sessions[0]))
        assert result.entry_names == ["rent.jpg"]
        selected = asyncio.run(builder.export_selected(sessions, ArchiveSelection().toggle_year("2024")))
        assert selected.archive_name == "receipts_2024.zip"
