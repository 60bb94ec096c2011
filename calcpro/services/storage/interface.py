"""
Abstract Storage Interface

We define an abstract interface for session storage so that:
1. Google Sheets can be swapped for another backend later
2. Tests use in-memory storage
3. The store is passed explicitly, never reached through a global

Sessions are persisted and deleted as whole records. Every operation
needs a signed-in principal; without one it fails immediately, before
any backend access.
"""

import json
from abc import ABC, abstractmethod
from typing import Optional

from calcpro.models.session import CalcSession


class PrincipalProvider(ABC):
    """Source of the signed-in user's identity."""

    @abstractmethod
    def current_principal(self) -> Optional[str]:
        """Return the principal id, or None when nobody is signed in."""
        pass


class StaticPrincipalProvider(PrincipalProvider):
    """A provider that always returns the same principal (or nobody)."""

    def __init__(self, principal_id: Optional[str]):
        self._principal_id = principal_id or None

    def current_principal(self) -> Optional[str]:
        return self._principal_id


class SessionStoreInterface(ABC):
    """
    Abstract interface for session storage operations.

    Any storage implementation must implement these methods.
    """

    def __init__(self, principals: PrincipalProvider):
        self._principals = principals

    def _require_principal(self) -> str:
        """
        Return the current principal.

        Raises:
            AuthRequiredError: If nobody is signed in
        """
        principal = self._principals.current_principal()
        if not principal:
            raise AuthRequiredError("Not authenticated. Please sign in first.")
        return principal

    @abstractmethod
    async def init(self) -> None:
        """
        Prepare the store for the current principal.

        Raises:
            AuthRequiredError: If nobody is signed in
            StorageError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def list_sessions(self) -> list[CalcSession]:
        """
        List all sessions of the current principal.

        Returns:
            Sessions ordered by created_at, newest first
        """
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[CalcSession]:
        """
        Retrieve a session by its ID.

        Returns:
            The session if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_session(self, session: CalcSession) -> None:
        """
        Insert or replace a session by ID.

        Raises:
            StorageError: If the save fails
            RecordTooLargeError: If the record exceeds the store's ceiling
        """
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """
        Delete a session by ID. Deleting a missing session is not an error.

        Returns:
            True if a session was removed
        """
        pass


def serialize_session(session: CalcSession) -> str:
    """Serialize a session to its stored JSON form."""
    return json.dumps(session.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":"))


def deserialize_session(payload: str) -> CalcSession:
    """Rebuild a session from its stored JSON form."""
    return CalcSession.model_validate_json(payload)


def record_size(session: CalcSession) -> int:
    """Size in bytes of a session's stored record."""
    return len(serialize_session(session).encode("utf-8"))


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class RecordTooLargeError(StorageError):
    """The session record exceeds the store's per-record ceiling."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Session record is {size} bytes, above the {limit} byte limit. "
            "Remove or replace some receipts and save again."
        )


class AuthRequiredError(Exception):
    """A store operation was attempted without a signed-in principal."""
    pass
