"""Services package."""

from calcpro.services.image import (
    CompressedImage,
    ImageCompressor,
    ImageDecodeError,
    ImageProcessingError,
)
from calcpro.services.storage import (
    AuthRequiredError,
    ConnectionError,
    GoogleSheetsClient,
    GoogleSheetsSessionStore,
    InMemorySessionStore,
    PrincipalProvider,
    RecordTooLargeError,
    SessionStoreInterface,
    StaticPrincipalProvider,
    StorageError,
)

__all__ = [
    # Image services
    "CompressedImage",
    "ImageCompressor",
    "ImageDecodeError",
    "ImageProcessingError",
    # Storage services
    "AuthRequiredError",
    "ConnectionError",
    "GoogleSheetsClient",
    "GoogleSheetsSessionStore",
    "InMemorySessionStore",
    "PrincipalProvider",
    "RecordTooLargeError",
    "SessionStoreInterface",
    "StaticPrincipalProvider",
    "StorageError",
]
