"""
Data Models Package

This package contains all Pydantic models used in Calc Pro.
All data flowing through the system must conform to these schemas.
"""

from calcpro.models.session import (
    CalcItem,
    CalcSession,
    CalculationTotals,
    Deduction,
    ImageAttachment,
    estimate_base64_bytes,
    new_id,
    to_number,
)
from calcpro.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Session models
    "CalcItem",
    "CalcSession",
    "CalculationTotals",
    "Deduction",
    "ImageAttachment",
    "estimate_base64_bytes",
    "new_id",
    "to_number",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
