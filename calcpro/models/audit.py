"""
Audit Models for Calc Pro

Every significant action on a session is logged for audit purposes:
1. Traceability of saves, deletes and exports
2. Debugging information when a store or image operation fails
3. Ability to reconstruct what happened to a session
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each step of the session lifecycle has its own event type.
    """
    # Session lifecycle
    SESSION_CREATED = "session_created"
    SESSION_OPENED = "session_opened"
    SESSION_SAVED = "session_saved"
    SESSION_SAVE_FAILED = "session_save_failed"
    SESSION_DELETED = "session_deleted"
    SESSION_DELETE_CANCELLED = "session_delete_cancelled"

    # Receipts
    RECEIPT_ATTACHED = "receipt_attached"
    RECEIPT_ATTACH_FAILED = "receipt_attach_failed"
    RECEIPT_REMOVED = "receipt_removed"

    # Archives
    ARCHIVE_EXPORTED = "archive_exported"
    ARCHIVE_SKIPPED = "archive_skipped"

    # System events
    STORE_ERROR = "store_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'session', 'deduction', 'archive')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one editing session)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.session_saved(session_id, title, ...)
        event = AuditEventBuilder.receipt_attached(session_id, deduction_id, ...)
    """

    @staticmethod
    def session_created(
        session_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_CREATED,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="New calculation draft created",
            is_user_action=True,
        )

    @staticmethod
    def session_opened(
        session_id: str,
        found: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_OPENED,
            severity=AuditSeverity.INFO if found else AuditSeverity.WARNING,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="Session opened" if found else "Session not found",
            details={"found": found},
            is_user_action=True,
        )

    @staticmethod
    def session_saved(
        session_id: str,
        title: str,
        time_tag: str,
        deduction_count: int,
        attachment_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_SAVED,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description=f"Session saved: {title} ({time_tag})",
            details={
                "time_tag": time_tag,
                "deductions": deduction_count,
                "attachments": attachment_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def session_save_failed(
        session_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="Session save failed, draft kept",
            error_message=error_message,
        )

    @staticmethod
    def session_deleted(
        session_id: str,
        existed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_DELETED,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="Session deleted",
            details={"existed": existed},
            is_user_action=True,
        )

    @staticmethod
    def session_delete_cancelled(
        session_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_DELETE_CANCELLED,
            entity_type="session",
            entity_id=session_id,
            correlation_id=correlation_id,
            description="User declined to delete session",
            is_user_action=True,
        )

    @staticmethod
    def receipt_attached(
        session_id: str,
        deduction_id: str,
        filename: str,
        size_bytes: int,
        quality: float,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_ATTACHED,
            entity_type="deduction",
            entity_id=deduction_id,
            correlation_id=correlation_id,
            description=f"Receipt attached: {filename}",
            details={
                "session_id": session_id,
                "filename": filename,
                "size_bytes": size_bytes,
                "quality": quality,
            },
            is_user_action=True,
        )

    @staticmethod
    def receipt_attach_failed(
        session_id: str,
        deduction_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_ATTACH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="deduction",
            entity_id=deduction_id,
            correlation_id=correlation_id,
            description="Receipt could not be attached",
            details={"session_id": session_id},
            error_message=error_message,
        )

    @staticmethod
    def receipt_removed(
        session_id: str,
        deduction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_REMOVED,
            entity_type="deduction",
            entity_id=deduction_id,
            correlation_id=correlation_id,
            description="Receipt removed from deduction",
            details={"session_id": session_id},
            is_user_action=True,
        )

    @staticmethod
    def archive_exported(
        archive_name: str,
        entry_count: int,
        session_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ARCHIVE_EXPORTED,
            entity_type="archive",
            correlation_id=correlation_id,
            description=f"Archive exported: {archive_name}",
            details={
                "archive_name": archive_name,
                "entries": entry_count,
                "sessions": session_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def archive_skipped(
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ARCHIVE_SKIPPED,
            entity_type="archive",
            correlation_id=correlation_id,
            description=f"No archive produced: {status}",
            details={"status": status},
            is_user_action=True,
        )

    @staticmethod
    def store_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Session store error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
