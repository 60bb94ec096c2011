"""Receipt image processing services package."""

from calcpro.services.image.compressor import (
    CompressedImage,
    ImageCompressor,
    ImageDecodeError,
    ImageProcessingError,
    build_attachment_filename,
    compress_image,
    decode_source,
    sanitize_filename,
)

__all__ = [
    "CompressedImage",
    "ImageCompressor",
    "ImageDecodeError",
    "ImageProcessingError",
    "build_attachment_filename",
    "compress_image",
    "decode_source",
    "sanitize_filename",
]
