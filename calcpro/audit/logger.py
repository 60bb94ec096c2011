"""
Audit Logger

DESIGN DECISION: Every significant action on a session is logged.
This provides:
1. Traceability of saves, deletes and exports
2. Debugging capability when a store or receipt operation fails
3. A record of what the user did with their calculations

The audit logger:
- Is async so callers await it like any other step of a flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from calcpro.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Writes one structured "audit_event" line per event. Events are also
    kept in memory when `keep_events` is set, which the tests use to
    assert on what was logged.
    """

    def __init__(self, keep_events: bool = False):
        self._logger = structlog.get_logger("calcpro.audit")
        self._keep_events = keep_events
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        """Events logged so far (only when keep_events is set)."""
        return list(self._events)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was written.
        """
        try:
            log_dict = event.to_log_dict()
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

        if self._keep_events:
            self._events.append(event)
        return True

    async def log_session_created(
        self,
        session_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation of a new draft."""
        await self.log(AuditEventBuilder.session_created(
            session_id=session_id,
            correlation_id=correlation_id,
        ))

    async def log_session_opened(
        self,
        session_id: str,
        found: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_opened(
            session_id=session_id,
            found=found,
            correlation_id=correlation_id,
        ))

    async def log_session_saved(
        self,
        session_id: str,
        title: str,
        time_tag: str,
        deduction_count: int,
        attachment_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a confirmed save."""
        await self.log(AuditEventBuilder.session_saved(
            session_id=session_id,
            title=title,
            time_tag=time_tag,
            deduction_count=deduction_count,
            attachment_count=attachment_count,
            correlation_id=correlation_id,
        ))

    async def log_session_save_failed(
        self,
        session_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_save_failed(
            session_id=session_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_session_deleted(
        self,
        session_id: str,
        existed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_deleted(
            session_id=session_id,
            existed=existed,
            correlation_id=correlation_id,
        ))

    async def log_session_delete_cancelled(
        self,
        session_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_delete_cancelled(
            session_id=session_id,
            correlation_id=correlation_id,
        ))

    async def log_receipt_attached(
        self,
        session_id: str,
        deduction_id: str,
        filename: str,
        size_bytes: int,
        quality: float,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a receipt stored on a deduction."""
        await self.log(AuditEventBuilder.receipt_attached(
            session_id=session_id,
            deduction_id=deduction_id,
            filename=filename,
            size_bytes=size_bytes,
            quality=quality,
            correlation_id=correlation_id,
        ))

    async def log_receipt_attach_failed(
        self,
        session_id: str,
        deduction_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_attach_failed(
            session_id=session_id,
            deduction_id=deduction_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_receipt_removed(
        self,
        session_id: str,
        deduction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_removed(
            session_id=session_id,
            deduction_id=deduction_id,
            correlation_id=correlation_id,
        ))

    async def log_archive_exported(
        self,
        archive_name: str,
        entry_count: int,
        session_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a produced zip archive."""
        await self.log(AuditEventBuilder.archive_exported(
            archive_name=archive_name,
            entry_count=entry_count,
            session_count=session_count,
            correlation_id=correlation_id,
        ))

    async def log_archive_skipped(
        self,
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.archive_skipped(
            status=status,
            correlation_id=correlation_id,
        ))

    async def log_store_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed session store call."""
        await self.log(AuditEventBuilder.store_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this when an editor is opened; every event of that editor
    carries it.
    """
    return uuid4()
