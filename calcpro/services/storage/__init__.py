"""
Storage Services Package

Provides the abstract session store interface and its implementations:
Google Sheets for deployments, in-memory for tests and offline use.
"""

from calcpro.services.storage.interface import (
    AuthRequiredError,
    ConnectionError,
    PrincipalProvider,
    RecordTooLargeError,
    SessionStoreInterface,
    StaticPrincipalProvider,
    StorageError,
    deserialize_session,
    record_size,
    serialize_session,
)
from calcpro.services.storage.memory import InMemorySessionStore
from calcpro.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsSessionStore,
)

__all__ = [
    # Interfaces
    "PrincipalProvider",
    "SessionStoreInterface",
    "StaticPrincipalProvider",
    # Exceptions
    "AuthRequiredError",
    "ConnectionError",
    "RecordTooLargeError",
    "StorageError",
    # Serialization
    "deserialize_session",
    "record_size",
    "serialize_session",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsSessionStore",
    "InMemorySessionStore",
]
