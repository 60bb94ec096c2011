"""
Core Data Models for Calc Pro

These models define the schemas for everything a calculation session
holds and everything derived from it:
1. Items and deductions as the user typed them
2. Receipt attachments as immutable values
3. The session as the unit of persistence
4. The derived totals

Numeric input is lenient on purpose: a blank or malformed number is
stored as 0 instead of being rejected. Product behavior depends on it.
"""

import base64
import binascii
import math
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


def to_number(value: Any) -> float:
    """
    Coerce raw numeric input to a float.

    Blank, missing and malformed input becomes 0. A decimal comma is
    accepted ("12,5" -> 12.5). NaN and infinities become 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", ".")
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def estimate_base64_bytes(encoded: str) -> int:
    """
    Estimate the decoded size of a base64 string.

    ceil(len * 3 / 4), minus 2 for a trailing "==" or 1 for a trailing "=".
    """
    padding = 2 if encoded.endswith("==") else 1 if encoded.endswith("=") else 0
    return math.ceil(len(encoded) * 3 / 4) - padding


def new_id() -> str:
    """Generate a globally unique identifier."""
    return str(uuid4())


# =============================================================================
# SESSION CONTENT
# =============================================================================

class CalcItem(BaseModel):
    """One addend of a session's base sum."""

    id: str = Field(
        default_factory=new_id,
        description="Item identifier"
    )
    value: float = Field(
        default=0.0,
        description="Item value (blank input stored as 0)"
    )

    @field_validator('value', mode='before')
    @classmethod
    def coerce_value(cls, v: Any) -> float:
        return to_number(v)


class ImageAttachment(BaseModel):
    """
    A receipt image attached to a deduction.

    Frozen: replacing a receipt creates a new attachment value.
    The image is stored inline as a base64 data URI.
    """
    model_config = ConfigDict(frozen=True)

    filename: str = Field(
        ...,
        min_length=1,
        description="Sanitized file name used for downloads and archives"
    )
    mime: str = Field(
        ...,
        description="MIME type of the encoded image"
    )
    encoded_image: str = Field(
        ...,
        description="Image as a data URI (data:<mime>;base64,<payload>)"
    )
    added_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the receipt was attached"
    )

    @field_validator('encoded_image')
    @classmethod
    def validate_data_uri(cls, v: str) -> str:
        if not v.startswith("data:") or "," not in v:
            raise ValueError("encoded_image must be a data URI")
        return v

    @property
    def payload(self) -> str:
        """The base64 part of the data URI."""
        return self.encoded_image.split(",", 1)[1]

    @property
    def payload_size(self) -> int:
        """Estimated size in bytes of the decoded image."""
        return estimate_base64_bytes(self.payload)

    def decoded_bytes(self) -> bytes:
        """Decode the stored image to raw bytes."""
        try:
            return base64.b64decode(self.payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Attachment {self.filename!r} holds invalid base64: {e}") from e


class Deduction(BaseModel):
    """A subtracted amount, optionally evidenced by a receipt image."""

    id: str = Field(
        default_factory=new_id,
        description="Deduction identifier"
    )
    amount: float = Field(
        default=0.0,
        description="Deducted amount (blank input stored as 0)"
    )
    note: str = Field(
        default="",
        description="Free-text explanation"
    )
    attachment: Optional[ImageAttachment] = None

    @field_validator('amount', mode='before')
    @classmethod
    def coerce_amount(cls, v: Any) -> float:
        return to_number(v)

    @field_validator('note', mode='before')
    @classmethod
    def coerce_note(cls, v: Any) -> str:
        return "" if v is None else str(v)


# =============================================================================
# SESSION
# =============================================================================

class CalcSession(BaseModel):
    """
    One saved calculation.

    `id` and `created_at` are fixed at creation. The session is
    persisted and deleted as a whole.

    `time_tag` is the canonical "YYYY-MM" label once saved. Records
    written before the tag existed carry None and are normalized from
    the title or creation time when read.
    """

    id: str = Field(
        default_factory=new_id,
        description="Globally unique session ID"
    )
    title: str = Field(
        default="",
        description="User-visible title"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Creation timestamp"
    )
    percent: float = Field(
        default=10.0,
        ge=0.0,
        description="Percent rate applied to the base sum"
    )
    time_tag: Optional[str] = Field(
        default=None,
        description="Canonical YYYY-MM period"
    )
    items: list[CalcItem] = Field(default_factory=list)
    deductions: list[Deduction] = Field(default_factory=list)

    @field_validator('percent', mode='before')
    @classmethod
    def coerce_percent(cls, v: Any) -> float:
        # Negative rates are clamped, not rejected
        return max(to_number(v), 0.0)

    @classmethod
    def new(
        cls,
        title: str = "New calculation",
        percent: float = 10.0,
        created_at: Optional[datetime] = None,
    ) -> 'CalcSession':
        """Create a fresh session with two zero-value items and no deductions."""
        return cls(
            title=title,
            percent=percent,
            created_at=created_at or datetime.utcnow(),
            items=[CalcItem(), CalcItem()],
            deductions=[],
        )

    @property
    def attachments(self) -> list[ImageAttachment]:
        """Attachments of this session's deductions, in deduction order."""
        return [d.attachment for d in self.deductions if d.attachment is not None]


# =============================================================================
# DERIVED TOTALS
# =============================================================================

class CalculationTotals(BaseModel):
    """
    Totals derived from a session's items, deductions and percent.

    `remaining_to_deduct` and `over_deducted` are never both nonzero.
    """
    model_config = ConfigDict(frozen=True)

    sum: float
    percent_amount: float
    deductions_sum: float
    net: float
    remaining_to_deduct: float
    over_deducted: float
    total: float

    @property
    def is_over_deducted(self) -> bool:
        return self.over_deducted > 0
