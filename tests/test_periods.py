"""Tests for time key normalization."""

from datetime import datetime

import pytest

from calcpro.periods import (
    apply_time_key_to_title,
    current_time_key,
    format_time_key,
    normalize_time_key,
    split_time_key,
    time_key_from_parts,
)


class TestNormalizeTimeKey:
    """Tests for normalize_time_key()."""

    @pytest.mark.parametrize("raw, expected", [
        ("2025-9", "2025-09"),
        ("2025-09", "2025-09"),
        ("9-2025", "2025-09"),
        ("09-2025", "2025-09"),
        ("2025/9", "2025-09"),
        ("9/2025", "2025-09"),
        ("12/2024", "2024-12"),
        ("  2025-3  ", "2025-03"),
    ])
    def test_raw_shapes(self, raw, expected):
        """Test every accepted raw shape."""
        assert normalize_time_key(raw, "Ignored 1/1999", datetime(2001, 1, 1)) == expected

    def test_title_suffix(self):
        """Test fallback to a trailing M/YYYY in the title."""
        assert normalize_time_key("", "Report 9/2025") == "2025-09"

    def test_title_suffix_with_dash(self):
        """Test that a trailing M-YYYY in the title is also accepted."""
        assert normalize_time_key(None, "Report 9-2025") == "2025-09"

    def test_unparseable_raw_falls_through_to_title(self):
        """Test that a malformed raw tag is ignored."""
        assert normalize_time_key("September", "Rent 3/2024") == "2024-03"

    def test_created_at_string(self):
        """Test fallback to an ISO creation timestamp."""
        assert normalize_time_key("", "Report", "2025-01-15T00:00:00Z") == "2025-01"

    def test_created_at_datetime(self):
        """Test fallback to a datetime creation timestamp."""
        assert normalize_time_key(None, None, datetime(2023, 11, 30, 23, 59)) == "2023-11"

    def test_falls_back_to_current_month(self):
        """Test that nothing parseable yields the current month."""
        key = normalize_time_key("", "Report", "not a date")
        assert key == current_time_key()

    def test_output_is_canonical(self):
        """Test the result always has the YYYY-MM shape."""
        for raw in ["2025-1", "1-2025", "", "x"]:
            year, month = split_time_key(normalize_time_key(raw, "t", "2020-02-02"))
            assert len(year) == 4 and len(month) == 2
            assert 1 <= int(month) <= 12


class TestTimeKeyHelpers:
    """Tests for formatting and building keys."""

    def test_current_time_key(self):
        assert current_time_key(datetime(2025, 9, 3)) == "2025-09"

    def test_format_time_key(self):
        assert format_time_key("2025-09") == "09/2025"
        assert format_time_key("") == ""
        assert format_time_key("garbage") == ""

    def test_time_key_from_parts(self):
        assert time_key_from_parts(2025, 9) == "2025-09"
        assert time_key_from_parts("1800", 1) == "1900-01"
        assert time_key_from_parts(12000, 12) == "9999-12"

    def test_time_key_from_parts_rejects_bad_month(self):
        with pytest.raises(ValueError, match="Month must be between 1 and 12"):
            time_key_from_parts(2025, 13)


class TestApplyTimeKeyToTitle:
    """Tests for keeping the title's period in sync."""

    def test_replaces_existing_suffix(self):
        assert apply_time_key_to_title("Rent 3/2025", "2025-09") == "Rent 9/2025"

    def test_appends_when_missing(self):
        assert apply_time_key_to_title("Rent", "2025-10") == "Rent 10/2025"

    def test_blank_title(self):
        assert apply_time_key_to_title("", "2025-01") == "1/2025"

    def test_title_and_tag_agree(self):
        """Test that the rewritten title normalizes back to the same key."""
        title = apply_time_key_to_title("Groceries 12/2023", "2024-02")
        assert normalize_time_key(None, title) == "2024-02"
