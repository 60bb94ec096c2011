"""Calculation engine package."""

from calcpro.calculation.engine import (
    compute_session_totals,
    compute_totals,
    format_amount,
)

__all__ = [
    "compute_session_totals",
    "compute_totals",
    "format_amount",
]
