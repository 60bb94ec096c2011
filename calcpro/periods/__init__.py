"""Time period (YYYY-MM) normalization package."""

from calcpro.periods.normalizer import (
    apply_time_key_to_title,
    current_time_key,
    format_time_key,
    normalize_time_key,
    split_time_key,
    time_key_from_parts,
)

__all__ = [
    "apply_time_key_to_title",
    "current_time_key",
    "format_time_key",
    "normalize_time_key",
    "split_time_key",
    "time_key_from_parts",
]
