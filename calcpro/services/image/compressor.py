"""
Receipt Image Compression using Pillow

Receipts are stored inline in the session record as base64 data URIs,
and the whole record has to fit under the store's per-record ceiling.
This service re-encodes an arbitrary photo as JPEG under a byte budget
while keeping as much detail as the budget allows.

Pipeline:
1. Downscale so the longest side is at most max_dim
2. Encode at quality 0.82
3. Lower quality in 0.07 steps down to min_quality
4. If still too large, shrink the canvas (0.9, 0.82, 0.74, ...) until the
   budget is met, the longest side reaches 800px or the factor drops
   below 0.6
5. Return the data URI

The last step is best effort: a very noisy photo can stay above budget.

CRITICAL: an unreadable source raises ImageDecodeError and produces
nothing, so a broken receipt never reaches a deduction.
"""

import asyncio
import base64
import binascii
import math
import re
from datetime import datetime
from io import BytesIO
from typing import Optional, Union

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError
from pydantic import BaseModel, Field

from calcpro.config import CompressionSettings, get_settings
from calcpro.models.session import estimate_base64_bytes

OUTPUT_MIME = "image/jpeg"
OUTPUT_EXTENSION = "jpg"
OUTPUT_FORMAT = "JPEG"

_DATA_URI = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(;[^,]*)?),(?P<payload>.*)$", re.DOTALL)
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")

logger = structlog.get_logger(__name__)


class ImageProcessingError(Exception):
    """Base exception for receipt image processing errors."""
    pass


class ImageDecodeError(ImageProcessingError):
    """The source could not be decoded as an image."""
    pass


class CompressedImage(BaseModel):
    """Result of compressing one receipt."""

    encoded_image: str = Field(
        ...,
        description="data:image/jpeg;base64,... URI"
    )
    mime: str = OUTPUT_MIME
    extension: str = OUTPUT_EXTENSION
    width: int = Field(ge=1)
    height: int = Field(ge=1)
    quality: float = Field(
        gt=0.0,
        le=1.0,
        description="Encoder quality of the returned image (0-1)"
    )
    size_bytes: int = Field(
        ge=0,
        description="Estimated size of the encoded image"
    )


def round_half_up(value: float) -> int:
    """Round half up: 0.5 -> 1, 2.5 -> 3."""
    return int(math.floor(value + 0.5))


def sanitize_filename(name: str) -> str:
    """
    Make a string safe as a file name.

    Path-breaking and control characters become spaces, runs of
    whitespace collapse to one space, ends are trimmed.
    """
    cleaned = _UNSAFE_FILENAME_CHARS.sub(" ", name or "")
    return _WHITESPACE.sub(" ", cleaned).strip()


def build_attachment_filename(
    title: str,
    note: str,
    when: Optional[datetime] = None,
    extension: str = OUTPUT_EXTENSION,
) -> str:
    """
    Name a receipt after its session and deduction.

    Format: "{title} - {note} - {YYYY-MM-DD}.{ext}"
    """
    app_settings = get_settings().app
    when = when or datetime.utcnow()
    title_part = sanitize_filename(title) or app_settings.receipt_title_fallback
    note_part = sanitize_filename(note) or app_settings.receipt_note_fallback
    return f"{title_part} - {note_part} - {when.strftime('%Y-%m-%d')}.{extension}"


def decode_source(source: Union[bytes, bytearray, str]) -> bytes:
    """
    Get raw image bytes from bytes or a data URI.

    Raises:
        ImageDecodeError: If a data URI is malformed
    """
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)

    match = _DATA_URI.match(source.strip())
    if not match:
        raise ImageDecodeError("Source is neither image bytes nor a data URI")
    payload = match.group("payload")
    if ";base64" not in match.group("params"):
        raise ImageDecodeError("Only base64 data URIs are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Invalid base64 payload: {e}") from e


def _open_image(data: bytes) -> Image.Image:
    """Decode and normalize a source image to RGB."""
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, EOFError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e

    # Apply EXIF orientation so the receipt is stored upright
    img = ImageOps.exif_transpose(img)

    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        # JPEG has no alpha; flatten onto white
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")


def _encode(img: Image.Image, quality: float) -> str:
    buffer = BytesIO()
    img.save(buffer, format=OUTPUT_FORMAT, quality=round_half_up(quality * 100))
    payload = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:{OUTPUT_MIME};base64,{payload}"


def compress_image(
    source: Union[bytes, bytearray, str],
    settings: Optional[CompressionSettings] = None,
) -> CompressedImage:
    """
    Re-encode an image as JPEG under the configured byte budget.

    Args:
        source: Raw image bytes or a base64 data URI
        settings: Compression settings (defaults to configured values)

    Returns:
        CompressedImage with the data URI and final dimensions/quality

    Raises:
        ImageDecodeError: If the source cannot be decoded
    """
    cfg = settings or get_settings().compression
    source_img = _open_image(decode_source(source))
    orig_width, orig_height = source_img.size

    # Step 1: fit within max_dim, never upscale
    scale = min(1.0, cfg.max_dim / max(orig_width, orig_height))
    width = max(1, round_half_up(orig_width * scale))
    height = max(1, round_half_up(orig_height * scale))
    canvas = source_img.resize((width, height), Image.Resampling.LANCZOS)

    # Step 2: initial encode
    quality = cfg.initial_quality
    encoded = _encode(canvas, quality)

    # Step 3: lower quality
    while estimate_base64_bytes(encoded) > cfg.target_max_bytes and quality > cfg.min_quality:
        quality = max(cfg.min_quality, quality - cfg.quality_step)
        encoded = _encode(canvas, quality)

    # Step 4: shrink the canvas
    shrink = cfg.initial_shrink
    while (
        estimate_base64_bytes(encoded) > cfg.target_max_bytes
        and max(width, height) > cfg.min_dimension_floor
    ):
        width = max(1, round_half_up(width * shrink))
        height = max(1, round_half_up(height * shrink))
        canvas = source_img.resize((width, height), Image.Resampling.LANCZOS)
        encoded = _encode(canvas, quality)
        shrink -= cfg.shrink_step
        if shrink < cfg.min_shrink:
            break

    size_bytes = estimate_base64_bytes(encoded)
    if size_bytes > cfg.target_max_bytes:
        logger.warning(
            "receipt_over_budget",
            size_bytes=size_bytes,
            target_max_bytes=cfg.target_max_bytes,
            width=width,
            height=height,
        )

    return CompressedImage(
        encoded_image=encoded,
        width=width,
        height=height,
        quality=quality,
        size_bytes=size_bytes,
    )


class ImageCompressor:
    """
    Async front for compress_image().

    Decoding and encoding are CPU-bound, so they run in a worker thread
    and the event loop stays responsive while a receipt is processed.
    """

    def __init__(self, settings: Optional[CompressionSettings] = None):
        self._settings = settings or get_settings().compression

    @property
    def settings(self) -> CompressionSettings:
        return self._settings

    async def compress(self, source: Union[bytes, bytearray, str]) -> CompressedImage:
        """
        Compress one receipt image.

        Raises:
            ImageDecodeError: If the source cannot be decoded
        """
        return await asyncio.to_thread(compress_image, source, self._settings)
