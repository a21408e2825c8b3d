"""Owning features of the offline client: journal editing and mood logging.

Each mutation writes an optimistic local copy marked unsynced, then hands an
intent to the ClientQueue. A refresh replaces confirmed local state with the
canonical server state, keeping optimistic copies whose intent is still
queued.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Set

from ..intents import new_intent
from ..types import IntentKind, MoodState
from .local_store import DEFAULT_DRAFT_KEY, LocalStore
from .queue import ClientQueue, SubmitStatus
from .transport import SyncTransport

logger = logging.getLogger(__name__)

JOURNALS_TABLE = "local_journals"
MOODS_TABLE = "local_moods"

TEMP_ID_PREFIX = "temp_"

_JOURNAL_KINDS = {
    IntentKind.CREATE_JOURNAL.value,
    IntentKind.UPDATE_JOURNAL.value,
    IntentKind.DELETE_JOURNAL.value,
}


def _pending_targets(queue: ClientQueue, kinds: Set[str]) -> Dict[str, str]:
    """Map journal ids referenced by pending intents to the intent type."""
    targets: Dict[str, str] = {}
    for queued in queue.pending():
        if queued.type not in kinds:
            continue
        payload = queued.intent.get("payload") or {}
        target = payload.get("_id") or payload.get("id")
        if target:
            targets[str(target)] = queued.type
    return targets


class JournalFeature:
    """Journal editing with drafts and optimistic local copies.

    ``encrypted_content`` is the client-side ciphertext; it is opaque here and
    on the server.
    """

    def __init__(self, store: LocalStore, queue: ClientQueue, transport: SyncTransport):
        self._store = store
        self._queue = queue
        self._transport = transport

    def create(
        self,
        encrypted_content: str,
        mood: Optional[str] = None,
        intensity: Optional[int] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Create a journal entry locally and submit it."""
        temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        payload: Dict[str, Any] = {"_id": temp_id, "encryptedContent": encrypted_content}
        if mood is not None:
            payload["mood"] = MoodState(mood).value
        if intensity is not None:
            payload["intensity"] = intensity
        if tags:
            payload["tags"] = list(tags)

        intent = new_intent(IntentKind.CREATE_JOURNAL, payload)
        timestamp = intent.to_wire()["timestamp"]
        record = dict(payload, tags=list(tags or []), createdAt=timestamp, updatedAt=timestamp)

        self._store.put_local(JOURNALS_TABLE, temp_id, record, is_synced=False)
        self._store.clear_draft(DEFAULT_DRAFT_KEY)

        status = self._queue.submit(intent)
        if status == SubmitStatus.CONFIRMED:
            self._store.set_local_synced(JOURNALS_TABLE, temp_id)
        elif status == SubmitStatus.REJECTED:
            self._store.delete_local(JOURNALS_TABLE, temp_id)
        return self._store.get_local(JOURNALS_TABLE, temp_id) or record

    def update(self, journal_id: str, **updates: Any) -> Optional[Dict[str, Any]]:
        """Update a journal entry. ``updates`` use wire names (``encryptedContent``, ``mood``...)."""
        intent = new_intent(IntentKind.UPDATE_JOURNAL, {"_id": journal_id, **updates})
        timestamp = intent.to_wire()["timestamp"]

        previous = self._store.get_local(JOURNALS_TABLE, journal_id)
        if previous is not None:
            edited = {k: v for k, v in previous.items() if k != "isSynced"}
            edited.update(updates)
            edited["updatedAt"] = timestamp
            self._store.put_local(JOURNALS_TABLE, journal_id, edited, is_synced=False)

        status = self._queue.submit(intent)
        if previous is not None:
            if status == SubmitStatus.CONFIRMED:
                self._store.set_local_synced(JOURNALS_TABLE, journal_id)
            elif status == SubmitStatus.REJECTED:
                was_synced = bool(previous.pop("isSynced", False))
                self._store.put_local(JOURNALS_TABLE, journal_id, previous, is_synced=was_synced)
        return self._store.get_local(JOURNALS_TABLE, journal_id)

    def delete(self, journal_id: str) -> SubmitStatus:
        self._store.delete_local(JOURNALS_TABLE, journal_id)
        return self._queue.submit(new_intent(IntentKind.DELETE_JOURNAL, {"_id": journal_id}))

    def entries(self) -> List[Dict[str, Any]]:
        return self._store.list_local(JOURNALS_TABLE)

    def refresh(self) -> int:
        """Replace local journals with the server's canonical list.

        Raises:
            TransportError: If the canonical list cannot be fetched.
        """
        canonical = self._transport.fetch_journals()
        pending = _pending_targets(self._queue, _JOURNAL_KINDS)
        unsynced = {
            str(r.get("_id")) for r in self._store.list_local(JOURNALS_TABLE) if not r.get("isSynced")
        }
        keep = [
            jid for jid, kind in pending.items()
            if kind != IntentKind.DELETE_JOURNAL.value and jid in unsynced
        ]
        # Queued deletes and kept local edits shadow the server copy
        shadowed = set(keep) | {
            jid for jid, kind in pending.items() if kind == IntentKind.DELETE_JOURNAL.value
        }
        canonical = [j for j in canonical if str(j.get("_id")) not in shadowed]
        return self._store.replace_local(JOURNALS_TABLE, canonical, keep_ids=keep)

    # === Drafts ===

    def save_draft(self, text: str) -> None:
        self._store.save_draft(text, DEFAULT_DRAFT_KEY)

    def load_draft(self) -> str:
        return self._store.load_draft(DEFAULT_DRAFT_KEY)


class MoodFeature:
    """Mood logging with optimistic local history.

    Moods have no server id; a local copy is keyed by its intent id until the
    canonical history (keyed by timestamp) replaces it.
    """

    def __init__(self, store: LocalStore, queue: ClientQueue, transport: SyncTransport):
        self._store = store
        self._queue = queue
        self._transport = transport

    def log(self, mood: str, intensity: int, note: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"mood": MoodState(mood).value, "intensity": intensity}
        if note:
            payload["note"] = note

        intent = new_intent(IntentKind.LOG_MOOD, payload)
        record = dict(payload, _id=intent.id, timestamp=intent.to_wire()["timestamp"])
        self._store.put_local(MOODS_TABLE, intent.id, record, is_synced=False)

        status = self._queue.submit(intent)
        if status == SubmitStatus.CONFIRMED:
            self._store.set_local_synced(MOODS_TABLE, intent.id)
        elif status == SubmitStatus.REJECTED:
            self._store.delete_local(MOODS_TABLE, intent.id)
        return self._store.get_local(MOODS_TABLE, intent.id) or record

    def history(self) -> List[Dict[str, Any]]:
        return self._store.list_local(MOODS_TABLE)

    def refresh(self) -> int:
        """Replace local moods with the server's canonical history.

        Raises:
            TransportError: If the canonical history cannot be fetched.
        """
        canonical = self._transport.fetch_moods()
        keep = [q.change_id for q in self._queue.pending() if q.type == IntentKind.LOG_MOOD.value]
        return self._store.replace_local(MOODS_TABLE, canonical, keep_ids=keep, id_key="timestamp")
