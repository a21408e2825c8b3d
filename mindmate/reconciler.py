"""Offline reconciliation for mindmate.

Applies a batch of change intents queued on a disconnected device against
server state. Key responsibilities:

1. Ordering: intents are sorted by their client timestamp before any side
   effect, so a later mutation is never applied before an earlier one.
2. Isolation: each intent is applied on its own; a failure is recorded in
   the outcome and the batch continues.
3. Idempotency: creates and mood logs are skipped when a record with the
   same owner and timestamp already exists.
4. Conflict resolution: journal updates are last-write-wins on
   ``updated_at``, written with a conditional update.

Intents are processed strictly sequentially; the next intent is not started
until the current one's storage calls complete.
"""

import logging
import uuid
from typing import Any, Iterable, List, Optional

from .crypto import Cipher
from .errors import IntentValidationError
from .intents import (
    ChangeIntent,
    CreateJournalIntent,
    DeleteJournalIntent,
    LogMoodIntent,
    UpdateJournalIntent,
    parse_intent,
)
from .storage.base import RecordStore
from .types import FailureKind, JournalRecord, MoodRecord, SyncOutcome

logger = logging.getLogger(__name__)

# Conditional-write attempts for a single LWW update before giving up
MAX_CONDITIONAL_ATTEMPTS = 3

UNEXPECTED_FAILURE_REASON = "Storage error: operation failed"


class ConcurrentUpdateError(Exception):
    """A journal kept changing underneath a conditional update."""


def log_sync_operation(
    owner_id: str,
    operation: str,
    target: str,
    success: bool,
    reason: Optional[str] = None,
) -> None:
    """Log one applied intent. Never includes content."""
    status = "ok" if success else "failed"
    message = f"SYNC | {owner_id} | {operation} | {target} | {status}"
    if reason:
        message += f" | {reason}"
    if success:
        logger.info(message)
    else:
        logger.warning(message)


class Reconciler:
    """Applies ordered change-intent batches against a RecordStore.

    Args:
        store: Persistence for journals and moods.
        cipher: Wraps every content-bearing field before it is persisted.
    """

    def __init__(self, store: RecordStore, cipher: Cipher):
        self._store = store
        self._cipher = cipher

    async def reconcile(self, owner_id: str, changes: Iterable[Any]) -> SyncOutcome:
        """Apply a batch of changes for one owner.

        ``changes`` may hold raw wire dicts or already-parsed intents. Malformed
        entries become per-item validation failures. Valid intents are stably
        sorted by ``occurred_at`` and applied one at a time.

        Returns:
            The per-batch outcome. Per-intent failures never raise.
        """
        outcome = SyncOutcome()
        changes = list(changes)
        if not changes:
            return outcome

        intents: List[ChangeIntent] = []
        for raw in changes:
            try:
                intents.append(parse_intent(raw))
            except IntentValidationError as e:
                log_sync_operation(owner_id, "parse", e.change_id or "?", False, str(e))
                outcome.record_failure(e.change_id, str(e), FailureKind.VALIDATION_FAILURE)

        # sorted() is stable: equal timestamps keep submission order
        ordered = sorted(intents, key=lambda intent: intent.occurred_at)
        logger.info(f"RECONCILE | {owner_id} | {len(changes)} changes | {len(ordered)} valid")

        for intent in ordered:
            try:
                await self._apply(owner_id, intent)
                outcome.record_success()
            except IntentValidationError as e:
                log_sync_operation(owner_id, intent.type, intent.id, False, str(e))
                outcome.record_failure(intent.id, str(e), FailureKind.VALIDATION_FAILURE)
            except Exception as e:
                # Full detail stays server-side; the client gets a generic reason
                logger.error(
                    f"Unexpected error applying {intent.type} {intent.id} for {owner_id}: {e}",
                    exc_info=True,
                )
                log_sync_operation(owner_id, intent.type, intent.id, False, type(e).__name__)
                outcome.record_failure(
                    intent.id, UNEXPECTED_FAILURE_REASON, FailureKind.UNEXPECTED_FAILURE
                )

        logger.info(
            f"RECONCILE COMPLETE | {owner_id} | processed={outcome.processed} failed={outcome.failed}"
        )
        return outcome

    async def _apply(self, owner_id: str, intent: ChangeIntent) -> None:
        """Dispatch a single intent to its handler."""
        if isinstance(intent, LogMoodIntent):
            await self._log_mood(owner_id, intent)
        elif isinstance(intent, CreateJournalIntent):
            await self._create_journal(owner_id, intent)
        elif isinstance(intent, UpdateJournalIntent):
            await self._update_journal(owner_id, intent)
        elif isinstance(intent, DeleteJournalIntent):
            await self._delete_journal(owner_id, intent)
        else:
            raise IntentValidationError(
                getattr(intent, "id", ""), f"Unsupported sync operation: {type(intent).__name__}"
            )

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _log_mood(self, owner_id: str, intent: LogMoodIntent) -> None:
        """Append a mood unless one already exists at the same timestamp."""
        if await self._store.has_mood_at(owner_id, intent.occurred_at):
            log_sync_operation(owner_id, intent.type, intent.id, True, "already applied")
            return

        payload = intent.payload
        await self._store.append_mood(
            MoodRecord(
                owner_id=owner_id,
                mood=payload.mood,
                intensity=payload.intensity,
                timestamp=intent.occurred_at,
                note=payload.note,
            )
        )
        log_sync_operation(owner_id, intent.type, intent.id, True)

    async def _create_journal(self, owner_id: str, intent: CreateJournalIntent) -> None:
        """Insert a journal unless one was already created at the same instant."""
        existing = await self._store.find_journal_created_at(owner_id, intent.occurred_at)
        if existing is not None:
            log_sync_operation(owner_id, intent.type, existing.id, True, "already applied")
            return

        payload = intent.payload
        record = JournalRecord(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            created_at=intent.occurred_at,
            updated_at=intent.occurred_at,
            cipher_content=self._cipher.wrap_text(payload.encrypted_content),
            mood=payload.mood,
            intensity=payload.intensity,
            tags=list(payload.tags),
        )
        await self._store.insert_journal(record)
        log_sync_operation(owner_id, intent.type, record.id, True)

    async def _update_journal(self, owner_id: str, intent: UpdateJournalIntent) -> None:
        """Last-write-wins update.

        A stored record strictly newer than the intent wins and the update is
        dropped (reported as success). A missing target is a soft success.
        """
        journal_id = intent.payload.journal_id
        changes = intent.payload.changes()
        if "encrypted_content" in changes:
            changes["cipher_content"] = self._cipher.wrap_text(changes.pop("encrypted_content"))

        for _ in range(MAX_CONDITIONAL_ATTEMPTS):
            stored = await self._store.get_journal(owner_id, journal_id)
            if stored is None:
                log_sync_operation(owner_id, intent.type, journal_id, True, "target missing, ignored")
                return

            if stored.updated_at > intent.occurred_at:
                log_sync_operation(owner_id, intent.type, journal_id, True, "stale update ignored")
                return

            applied = await self._store.update_journal(
                owner_id,
                journal_id,
                changes,
                updated_at=intent.occurred_at,
                expected_updated_at=stored.updated_at,
            )
            if applied:
                log_sync_operation(owner_id, intent.type, journal_id, True)
                return

            logger.debug(f"Conditional update lost a race on {journal_id}, re-reading")

        raise ConcurrentUpdateError(f"Journal {journal_id} changed during update")

    async def _delete_journal(self, owner_id: str, intent: DeleteJournalIntent) -> None:
        """Delete if present; absence is not an error."""
        journal_id = intent.payload.journal_id
        removed = await self._store.delete_journal(owner_id, journal_id)
        log_sync_operation(
            owner_id, intent.type, journal_id, True, None if removed else "already absent"
        )
