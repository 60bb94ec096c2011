"""
Main Orchestrator for Calc Pro

This module ties together all the components and defines the flows
behind the UI:
1. Editing (draft → edit items/deductions/receipts → save)
2. Library (list → search → open/delete → export receipts)

DESIGN DECISION: The orchestrator enforces the boundaries:
- The saved snapshot only changes after the store confirms a save
- Nothing is deleted without explicit user confirmation
- A failed receipt leaves the previous attachment in place
- Every step is audited

The editor holds a mutable draft; the store only ever receives
immutable snapshots built from it.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog

from calcpro.archive import (
    ArchiveBuilder,
    ArchiveResult,
    ArchiveSelection,
    SessionBuckets,
    bucket_sessions,
)
from calcpro.audit import AuditLogger, create_correlation_id
from calcpro.calculation import compute_session_totals
from calcpro.config import get_settings
from calcpro.models.session import (
    CalcItem,
    CalcSession,
    CalculationTotals,
    Deduction,
    ImageAttachment,
    to_number,
)
from calcpro.periods import (
    apply_time_key_to_title,
    current_time_key,
    normalize_time_key,
    time_key_from_parts,
)
from calcpro.services.image import (
    ImageCompressor,
    ImageDecodeError,
    build_attachment_filename,
)
from calcpro.services.storage import (
    AuthRequiredError,
    GoogleSheetsSessionStore,
    InMemorySessionStore,
    PrincipalProvider,
    SessionStoreInterface,
    StaticPrincipalProvider,
    StorageError,
)

logger = structlog.get_logger(__name__)

ConfirmCallback = Callable[[str], bool]

# A session always keeps at least this many items
MIN_ITEMS = 2


class SessionEditor:
    """
    Orchestrates editing of one calculation.

    Flow:
    1. Create a new draft, or open a saved session
    2. Edit title, percent, period, items and deductions
    3. Attach receipts (compressed off the event loop)
    4. Save → store confirms → `saved` is replaced

    Totals are recomputed after every edit. A failed save keeps the
    draft as it was.
    """

    def __init__(
        self,
        store: SessionStoreInterface,
        draft: CalcSession,
        saved: Optional[CalcSession] = None,
        compressor: Optional[ImageCompressor] = None,
        archive_builder: Optional[ArchiveBuilder] = None,
        audit_logger: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
    ):
        self._store = store
        self._draft = draft
        self._saved = saved
        self._compressor = compressor or ImageCompressor()
        self._archive_builder = archive_builder or ArchiveBuilder()
        self._audit_logger = audit_logger
        self._correlation_id = correlation_id or create_correlation_id()
        self._totals = compute_session_totals(draft)

    @classmethod
    async def create(
        cls,
        store: SessionStoreInterface,
        title: Optional[str] = None,
        percent: Optional[float] = None,
        now: Optional[datetime] = None,
        **services: Any,
    ) -> 'SessionEditor':
        """
        Start a new, unsaved draft.

        The period defaults to the current month and is appended to
        the title.
        """
        app_settings = get_settings().app
        now = now or datetime.utcnow()
        key = current_time_key(now)
        draft = CalcSession.new(
            title=apply_time_key_to_title(
                app_settings.default_title if title is None else title,
                key,
            ),
            percent=app_settings.default_percent if percent is None else percent,
            created_at=now,
        )
        draft.time_tag = key

        editor = cls(store, draft, **services)
        if editor._audit_logger:
            await editor._audit_logger.log_session_created(
                session_id=draft.id,
                correlation_id=editor._correlation_id,
            )
        return editor

    @classmethod
    async def open(
        cls,
        store: SessionStoreInterface,
        session_id: str,
        **services: Any,
    ) -> Optional['SessionEditor']:
        """
        Open a saved session for editing.

        Returns:
            The editor, or None if the session does not exist

        Raises:
            AuthRequiredError: If nobody is signed in
            StorageError: If the store fails
        """
        audit_logger: Optional[AuditLogger] = services.get("audit_logger")
        correlation_id = services.pop("correlation_id", None) or create_correlation_id()

        try:
            saved = await store.get_session(session_id)
        except StorageError as e:
            if audit_logger:
                await audit_logger.log_store_error(
                    operation="open",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if audit_logger:
            await audit_logger.log_session_opened(
                session_id=session_id,
                found=saved is not None,
                correlation_id=correlation_id,
            )
        if saved is None:
            return None

        return cls(
            store,
            saved.model_copy(deep=True),
            saved=saved,
            correlation_id=correlation_id,
            **services,
        )

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def draft(self) -> CalcSession:
        """The session being edited. Use the editor's methods to change it."""
        return self._draft

    @property
    def saved(self) -> Optional[CalcSession]:
        """The last snapshot the store confirmed, or None for a new draft."""
        return self._saved

    @property
    def session_id(self) -> str:
        return self._draft.id

    @property
    def totals(self) -> CalculationTotals:
        return self._totals

    @property
    def time_key(self) -> str:
        """The draft's canonical period."""
        return normalize_time_key(self._draft.time_tag, self._draft.title, self._draft.created_at)

    @property
    def is_dirty(self) -> bool:
        """True when the draft differs from the last saved snapshot."""
        if self._saved is None:
            return True
        return self._draft.model_dump() != self._saved.model_dump()

    def _recompute(self) -> CalculationTotals:
        self._totals = compute_session_totals(self._draft)
        return self._totals

    def _find_item(self, item_id: str) -> Optional[CalcItem]:
        return next((i for i in self._draft.items if i.id == item_id), None)

    def _find_deduction(self, deduction_id: str) -> Optional[Deduction]:
        return next((d for d in self._draft.deductions if d.id == deduction_id), None)

    # =========================================================================
    # HEADER
    # =========================================================================

    def set_title(self, title: str) -> None:
        self._draft.title = title or ""

    def set_percent(self, percent: Any) -> CalculationTotals:
        """Set the percent rate; malformed input is 0, negatives clamp to 0."""
        self._draft.percent = max(to_number(percent), 0.0)
        return self._recompute()

    def set_time_tag(self, raw: Optional[str]) -> str:
        """
        Set the period from any accepted shape ("2025-09", "9/2025", ...).

        The title's trailing period is rewritten to match.

        Returns:
            The canonical key
        """
        key = normalize_time_key(raw, self._draft.title, self._draft.created_at)
        self._draft.time_tag = key
        self._draft.title = apply_time_key_to_title(self._draft.title, key)
        return key

    def set_period(self, year: int, month: int) -> str:
        """Set the period from a year and a month number."""
        return self.set_time_tag(time_key_from_parts(year, month))

    # =========================================================================
    # ITEMS
    # =========================================================================

    def add_item(self, value: Any = 0) -> CalcItem:
        item = CalcItem(value=value)
        self._draft.items.append(item)
        self._recompute()
        return item

    def update_item(self, item_id: str, value: Any) -> bool:
        item = self._find_item(item_id)
        if item is None:
            return False
        item.value = to_number(value)
        self._recompute()
        return True

    def remove_item(self, item_id: str) -> bool:
        """
        Remove an item.

        Returns:
            False if the item is unknown or only MIN_ITEMS items remain
        """
        if len(self._draft.items) <= MIN_ITEMS:
            return False
        item = self._find_item(item_id)
        if item is None:
            return False
        self._draft.items.remove(item)
        self._recompute()
        return True

    # =========================================================================
    # DEDUCTIONS
    # =========================================================================

    def add_deduction(self, amount: Any = 0, note: str = "") -> Deduction:
        deduction = Deduction(amount=amount, note=note)
        self._draft.deductions.append(deduction)
        self._recompute()
        return deduction

    def update_deduction(
        self,
        deduction_id: str,
        amount: Any = None,
        note: Optional[str] = None,
    ) -> bool:
        """Update the given fields of a deduction; None leaves a field as is."""
        deduction = self._find_deduction(deduction_id)
        if deduction is None:
            return False
        if amount is not None:
            deduction.amount = to_number(amount)
        if note is not None:
            deduction.note = note
        self._recompute()
        return True

    def remove_deduction(self, deduction_id: str) -> bool:
        deduction = self._find_deduction(deduction_id)
        if deduction is None:
            return False
        self._draft.deductions.remove(deduction)
        self._recompute()
        return True

    # =========================================================================
    # RECEIPTS
    # =========================================================================

    async def attach_receipt(
        self,
        deduction_id: str,
        source: Any,
    ) -> Optional[ImageAttachment]:
        """
        Compress an image and attach it to a deduction.

        The attachment is stored only when compression succeeds and the
        deduction still exists afterwards. When two requests race on the
        same deduction, the one that finishes last wins.

        Returns:
            The new attachment, or None if the deduction is gone

        Raises:
            ImageDecodeError: If the image cannot be decoded; any
                previous attachment is kept
        """
        if self._find_deduction(deduction_id) is None:
            return None

        try:
            compressed = await self._compressor.compress(source)
        except ImageDecodeError as e:
            if self._audit_logger:
                await self._audit_logger.log_receipt_attach_failed(
                    session_id=self._draft.id,
                    deduction_id=deduction_id,
                    error_message=str(e),
                    correlation_id=self._correlation_id,
                )
            raise

        # The deduction may have been removed while compressing
        deduction = self._find_deduction(deduction_id)
        if deduction is None:
            logger.info("receipt_discarded", session_id=self._draft.id, deduction_id=deduction_id)
            return None

        attachment = ImageAttachment(
            filename=build_attachment_filename(
                self._draft.title,
                deduction.note,
                extension=compressed.extension,
            ),
            mime=compressed.mime,
            encoded_image=compressed.encoded_image,
        )
        deduction.attachment = attachment

        if self._audit_logger:
            await self._audit_logger.log_receipt_attached(
                session_id=self._draft.id,
                deduction_id=deduction_id,
                filename=attachment.filename,
                size_bytes=compressed.size_bytes,
                quality=compressed.quality,
                correlation_id=self._correlation_id,
            )
        return attachment

    async def remove_attachment(self, deduction_id: str) -> bool:
        deduction = self._find_deduction(deduction_id)
        if deduction is None or deduction.attachment is None:
            return False
        deduction.attachment = None
        if self._audit_logger:
            await self._audit_logger.log_receipt_removed(
                session_id=self._draft.id,
                deduction_id=deduction_id,
                correlation_id=self._correlation_id,
            )
        return True

    async def export_receipts(self) -> ArchiveResult:
        """Zip every receipt of the draft."""
        result = await self._archive_builder.export_session(self._draft)
        if self._audit_logger:
            await _log_archive_result(self._audit_logger, result, self._correlation_id)
        return result

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def snapshot(self) -> CalcSession:
        """
        Immutable copy of the draft as it would be saved.

        The title is trimmed (blank becomes the untitled title) and the
        period is normalized.
        """
        title = self._draft.title.strip() or get_settings().app.untitled_title
        time_tag = normalize_time_key(self._draft.time_tag, title, self._draft.created_at)
        return self._draft.model_copy(deep=True, update={"title": title, "time_tag": time_tag})

    async def save(self) -> CalcSession:
        """
        Save the draft.

        Returns:
            The saved snapshot

        Raises:
            AuthRequiredError: If nobody is signed in
            StorageError: If the store rejects the save; the draft is kept
        """
        snapshot = self.snapshot()
        try:
            await self._store.save_session(snapshot)
        except (StorageError, AuthRequiredError) as e:
            if self._audit_logger:
                await self._audit_logger.log_session_save_failed(
                    session_id=snapshot.id,
                    error_message=str(e),
                    correlation_id=self._correlation_id,
                )
            raise

        self._saved = snapshot
        self._draft.title = snapshot.title
        self._draft.time_tag = snapshot.time_tag

        if self._audit_logger:
            await self._audit_logger.log_session_saved(
                session_id=snapshot.id,
                title=snapshot.title,
                time_tag=snapshot.time_tag,
                deduction_count=len(snapshot.deductions),
                attachment_count=len(snapshot.attachments),
                correlation_id=self._correlation_id,
            )
        return snapshot


class SessionLibrary:
    """
    Orchestrates the list of saved calculations.

    Holds the current session list, the search over it and the archive
    selection. Deleting always asks the confirmation callback first.
    """

    def __init__(
        self,
        store: SessionStoreInterface,
        confirm: Optional[ConfirmCallback] = None,
        compressor: Optional[ImageCompressor] = None,
        archive_builder: Optional[ArchiveBuilder] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._confirm = confirm
        self._compressor = compressor or ImageCompressor()
        self._archive_builder = archive_builder or ArchiveBuilder()
        self._audit_logger = audit_logger
        self._sessions: list[CalcSession] = []
        self._selection = ArchiveSelection()

    @property
    def store(self) -> SessionStoreInterface:
        return self._store

    def fork(self) -> 'SessionLibrary':
        """
        A library sharing this one's store and services, with its own
        session list and archive selection.

        Each UI session works on a fork, so one user's selection never
        shows up in another user's view.
        """
        return SessionLibrary(
            self._store,
            confirm=self._confirm,
            **self._services(),
        )

    @property
    def sessions(self) -> list[CalcSession]:
        """Saved sessions, newest first, as of the last refresh."""
        return list(self._sessions)

    def _services(self) -> dict[str, Any]:
        return {
            "compressor": self._compressor,
            "archive_builder": self._archive_builder,
            "audit_logger": self._audit_logger,
        }

    async def _store_call(self, operation: str, call):
        try:
            return await call
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_store_error(
                    operation=operation,
                    error_message=str(e),
                )
            raise

    async def init(self) -> list[CalcSession]:
        """Prepare the store and load the session list."""
        await self._store_call("init", self._store.init())
        return await self.refresh()

    async def refresh(self) -> list[CalcSession]:
        self._sessions = await self._store_call("list", self._store.list_sessions())
        return self.sessions

    def search(self, query: Optional[str]) -> list[CalcSession]:
        """Sessions whose title contains the query, ignoring case."""
        needle = (query or "").strip().casefold()
        if not needle:
            return self.sessions
        return [s for s in self._sessions if needle in s.title.casefold()]

    async def new_editor(self, **kwargs: Any) -> SessionEditor:
        """Start a new draft (see SessionEditor.create)."""
        return await SessionEditor.create(self._store, **kwargs, **self._services())

    async def open(self, session_id: str) -> Optional[SessionEditor]:
        return await SessionEditor.open(self._store, session_id, **self._services())

    async def save(self, editor: SessionEditor) -> CalcSession:
        """Save an editor's draft and reload the list."""
        snapshot = await editor.save()
        await self.refresh()
        return snapshot

    async def delete(
        self,
        session_id: str,
        confirm: Optional[ConfirmCallback] = None,
    ) -> bool:
        """
        Delete a session after the user confirms.

        Returns:
            False when the user declines (the store is not touched),
            True once the session is gone
        """
        confirm = confirm or self._confirm
        title = next((s.title for s in self._sessions if s.id == session_id), "this calculation")
        prompt = f'Delete "{title}"? This cannot be undone.'

        if confirm is None or not confirm(prompt):
            if self._audit_logger:
                await self._audit_logger.log_session_delete_cancelled(session_id=session_id)
            return False

        existed = await self._store_call("delete", self._store.delete_session(session_id))
        if self._audit_logger:
            await self._audit_logger.log_session_deleted(session_id=session_id, existed=existed)
        await self.refresh()
        return True

    # =========================================================================
    # ARCHIVE SELECTION
    # =========================================================================

    def buckets(self) -> SessionBuckets:
        return bucket_sessions(self._sessions)

    @property
    def selection(self) -> ArchiveSelection:
        return self._selection

    @selection.setter
    def selection(self, selection: ArchiveSelection) -> None:
        self._selection = selection

    def toggle_year(self, year: str) -> ArchiveSelection:
        self._selection = self._selection.toggle_year(year, self.buckets().years)
        return self._selection

    def toggle_month(self, month_key: str) -> ArchiveSelection:
        self._selection = self._selection.toggle_month(month_key, self.buckets().month_keys)
        return self._selection

    def toggle_all_years(self) -> ArchiveSelection:
        self._selection = self._selection.toggle_all_years(self.buckets().years)
        return self._selection

    def toggle_all_months(self) -> ArchiveSelection:
        self._selection = self._selection.toggle_all_months(self.buckets().month_keys)
        return self._selection

    def clear_selection(self) -> ArchiveSelection:
        self._selection = self._selection.clear()
        return self._selection

    async def export_selected(self) -> ArchiveResult:
        """Zip the receipts of every listed session matching the selection."""
        result = await self._archive_builder.export_selected(self._sessions, self._selection)
        if self._audit_logger:
            await _log_archive_result(self._audit_logger, result)
        return result


async def _log_archive_result(
    audit_logger: AuditLogger,
    result: ArchiveResult,
    correlation_id: Optional[UUID] = None,
) -> None:
    if result.created:
        await audit_logger.log_archive_exported(
            archive_name=result.archive_name,
            entry_count=result.entry_count,
            session_count=result.session_count,
            correlation_id=correlation_id,
        )
    else:
        await audit_logger.log_archive_skipped(
            status=result.status.value,
            correlation_id=correlation_id,
        )


def create_app_components(
    principals: Optional[PrincipalProvider] = None,
    use_storage: bool = True,
    confirm: Optional[ConfirmCallback] = None,
) -> tuple[SessionLibrary, SessionStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        principals: Identity source. Defaults to the configured
                    principal_id (single-user deployments).
        use_storage: Whether to use Google Sheets storage.
                    Set to False to keep sessions in memory.
        confirm: Delete confirmation callback

    Returns:
        (library, store)
    """
    settings = get_settings()
    principals = principals or StaticPrincipalProvider(settings.app.principal_id)
    audit_logger = AuditLogger()

    store: SessionStoreInterface
    if use_storage:
        try:
            store = GoogleSheetsSessionStore(principals)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            store = InMemorySessionStore(principals)
    else:
        store = InMemorySessionStore(principals)

    library = SessionLibrary(
        store,
        confirm=confirm,
        compressor=ImageCompressor(settings.compression),
        archive_builder=ArchiveBuilder(),
        audit_logger=audit_logger,
    )
    return library, store
