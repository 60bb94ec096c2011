"""
Calc Pro - Source Package

Recurring contribution calculations with photographed receipts,
exportable as archives grouped by month or year.

DESIGN PRINCIPLES:
1. Totals are a pure function of the draft
2. Nothing is persisted without an explicit save
3. Receipts are compressed before they are attached
4. One time-key normalizer for storage and export
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Calc Pro Team"
