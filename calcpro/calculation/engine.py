"""
Calculation Engine

Pure derivation of a session's totals from its items, deductions and
percent rate. No I/O, no state: identical inputs always give identical
totals, so the editor can call it on every keystroke.

No currency rounding happens here. Formatting for display is a
separate helper.
"""

from collections.abc import Iterable
from typing import Any

from calcpro.models.session import (
    CalcItem,
    CalcSession,
    CalculationTotals,
    Deduction,
    to_number,
)


def compute_totals(
    items: Iterable[CalcItem],
    deductions: Iterable[Deduction],
    percent: Any,
) -> CalculationTotals:
    """
    Derive all totals for one session.

    sum                 = sum of item values
    percent_amount      = sum * percent / 100
    deductions_sum      = sum of deduction amounts
    net                 = percent_amount - deductions_sum
    remaining_to_deduct = max(net, 0)
    over_deducted       = max(-net, 0)
    total               = sum + percent_amount - deductions_sum
    """
    base_sum = sum((to_number(item.value) for item in items), 0.0)
    percent_amount = base_sum * to_number(percent) / 100
    deductions_sum = sum((to_number(d.amount) for d in deductions), 0.0)
    net = percent_amount - deductions_sum

    return CalculationTotals(
        sum=base_sum,
        percent_amount=percent_amount,
        deductions_sum=deductions_sum,
        net=net,
        remaining_to_deduct=max(net, 0.0),
        over_deducted=max(-net, 0.0),
        total=base_sum + percent_amount - deductions_sum,
    )


def compute_session_totals(session: CalcSession) -> CalculationTotals:
    """Totals of a whole session."""
    return compute_totals(session.items, session.deductions, session.percent)


def format_amount(value: Any) -> str:
    """
    Render an amount for display: thousands separators, at most two
    fraction digits, no trailing zeros.
    """
    text = f"{to_number(value):,.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text
