"""Offline change queue for the mindmate client.

Every local mutation is first sent as a single-item call. If that fails for
any reason the intent is appended to the durable log, which is flushed as
one batch when connectivity returns.

A flush works on a snapshot of the log. Intents enqueued while a flush is in
flight are left for the next flush. After a successful batch call:

- confirmed intents are removed from the log
- intents rejected as malformed are dead-lettered (they can never succeed)
- intents that hit an unexpected server failure stay pending with their
  retry count bumped, and are dead-lettered after ``max_retries``

If the batch call itself fails the log is left unchanged and automatic
flushes back off exponentially.
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import TransportError
from ..intents import ChangeIntent, parse_intent
from ..types import FailureKind, SyncOutcome, format_timestamp, utc_now
from .connectivity import ConnectivityMonitor
from .local_store import MAX_RETRIES, LocalStore, QueuedIntent
from .transport import SyncTransport

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 2.0
BACKOFF_MAX_SECONDS = 300.0

FlushListener = Callable[[SyncOutcome], None]


class SubmitStatus(str, Enum):
    """What happened to a locally produced intent."""

    CONFIRMED = "confirmed"  # applied by the server right away
    QUEUED = "queued"  # kept in the durable log for a later flush
    REJECTED = "rejected"  # the server refused it as malformed


class ClientQueue:
    """Durable queue of unconfirmed intents with network-triggered flush.

    Args:
        store: Local durable storage; the queue is the only writer of its log.
        transport: Route to the batch sync endpoint.
        connectivity: Optional event source; a restored connection triggers
            a flush.
        max_retries: Unexpected-failure attempts before an intent is
            dead-lettered.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        store: LocalStore,
        transport: SyncTransport,
        connectivity: Optional[ConnectivityMonitor] = None,
        max_retries: int = MAX_RETRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._transport = transport
        self._connectivity = connectivity
        self._max_retries = max_retries
        self._clock = clock

        self._lock = threading.Lock()
        self._flushing = False
        self._consecutive_failures = 0
        self._next_attempt_at = 0.0
        self._flush_listeners: List[FlushListener] = []

        self._unsubscribe: Optional[Callable[[], None]] = None
        if connectivity is not None:
            self._unsubscribe = connectivity.subscribe(self._on_connectivity_change)

    # === Queue operations ===

    def enqueue(self, intent: Union[ChangeIntent, Dict[str, Any]]) -> None:
        """Append an intent to the durable log.

        Raises:
            IntentValidationError: If a raw intent is malformed.
            StorageError: If the log cannot be persisted.
        """
        wire = parse_intent(intent).to_wire()
        self._store.append_intent(wire)
        logger.debug(f"Queued {wire['type']} {wire['id']} for offline sync")

    def is_empty(self) -> bool:
        return self._store.pending_count() == 0

    def pending(self) -> List[QueuedIntent]:
        return self._store.pending_intents()

    def dead_letters(self) -> List[QueuedIntent]:
        return self._store.dead_letters()

    def requeue_dead_letters(self, change_ids: Optional[List[str]] = None) -> int:
        return self._store.requeue_dead_letters(change_ids)

    def add_flush_listener(self, listener: FlushListener) -> None:
        """Call ``listener(outcome)`` after every successful batch flush."""
        self._flush_listeners.append(listener)

    # === Immediate send ===

    def submit(self, intent: Union[ChangeIntent, Dict[str, Any]]) -> SubmitStatus:
        """Try to apply an intent now; queue it if that fails."""
        wire = parse_intent(intent).to_wire()

        if self._connectivity is not None and not self._connectivity.is_connected:
            self._store.append_intent(wire)
            return SubmitStatus.QUEUED

        try:
            outcome = self._transport.send(wire)
        except TransportError as e:
            logger.info(f"Network failed ({e}), queuing {wire['type']} {wire['id']} for offline sync")
            self._store.append_intent(wire)
            return SubmitStatus.QUEUED

        error = next((err for err in outcome.errors if err.change_id == wire["id"]), None)
        if error is None:
            return SubmitStatus.CONFIRMED
        if error.kind == FailureKind.VALIDATION_FAILURE:
            logger.warning(f"Server rejected {wire['type']} {wire['id']}: {error.reason}")
            return SubmitStatus.REJECTED

        self._store.append_intent(wire)
        return SubmitStatus.QUEUED

    # === Flush ===

    def backoff_remaining(self) -> float:
        """Seconds until an automatic flush is allowed again."""
        return max(0.0, self._next_attempt_at - self._clock())

    def flush(self, force: bool = False) -> Optional[SyncOutcome]:
        """Send a snapshot of the pending log as one batch.

        Args:
            force: Ignore backoff and the offline flag.

        Returns:
            The server's outcome, or None if the flush was skipped (another
            flush in flight, offline, or backing off).

        Raises:
            TransportError: If the batch call itself failed; the log is unchanged.
        """
        with self._lock:
            if self._flushing:
                logger.debug("Flush already in flight, skipping")
                return None
            if not force:
                if self._connectivity is not None and not self._connectivity.is_connected:
                    logger.info("Offline - flush skipped, changes stay queued")
                    return None
                if self.backoff_remaining() > 0:
                    logger.debug(f"Backing off for {self.backoff_remaining():.1f}s")
                    return None
            snapshot = self._store.pending_intents()
            if not snapshot:
                return SyncOutcome()
            self._flushing = True

        try:
            logger.info(f"Flushing {len(snapshot)} queued intents")
            try:
                outcome = self._transport.push([q.intent for q in snapshot])
            except TransportError:
                self._schedule_backoff()
                logger.warning(
                    f"Sync failed, keeping queue (retry in {self.backoff_remaining():.0f}s)"
                )
                raise
            self._apply_outcome(snapshot, outcome)
        finally:
            with self._lock:
                self._flushing = False

        self._consecutive_failures = 0
        self._next_attempt_at = 0.0
        self._store.set_meta("last_sync_time", format_timestamp(utc_now()))
        logger.info(f"Flush complete: processed={outcome.processed} failed={outcome.failed}")

        for listener in list(self._flush_listeners):
            try:
                listener(outcome)
            except Exception as e:
                logger.error(f"Flush listener failed: {e}", exc_info=True)
        return outcome

    def _apply_outcome(self, snapshot: List[QueuedIntent], outcome: SyncOutcome) -> None:
        """Dequeue confirmed intents and route failures by kind."""
        failures = {err.change_id: err for err in outcome.errors}
        confirmed = [q.change_id for q in snapshot if q.change_id not in failures]
        self._store.remove_intents(confirmed)

        for queued in snapshot:
            error = failures.get(queued.change_id)
            if error is None:
                continue
            if error.kind == FailureKind.VALIDATION_FAILURE:
                self._store.dead_letter(queued.change_id, error.reason)
                logger.warning(f"Intent {queued.change_id} rejected: {error.reason}")
            else:
                retries = self._store.record_failure(
                    queued.change_id, error.reason, max_retries=self._max_retries
                )
                logger.info(f"Intent {queued.change_id} failed (retry {retries}/{self._max_retries})")

    def _schedule_backoff(self) -> None:
        self._consecutive_failures += 1
        delay = min(
            BACKOFF_BASE_SECONDS * (2 ** (self._consecutive_failures - 1)),
            BACKOFF_MAX_SECONDS,
        )
        self._next_attempt_at = self._clock() + delay

    def _on_connectivity_change(self, connected: bool) -> None:
        if not connected or self.is_empty():
            return
        try:
            self.flush()
        except TransportError as e:
            logger.info(f"Sync after reconnect failed, changes stay queued: {e}")

    def close(self) -> None:
        """Stop listening for connectivity changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
