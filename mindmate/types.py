"""
Shared record types for mindmate.

These dataclasses are the vocabulary between the reconciler, the record
stores and the client queue. Wire-level intent parsing lives in
``mindmate.intents``; everything here is already validated.
"""

import bisect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# === Shared Utility Functions ===


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string (trailing ``Z`` allowed) into aware UTC."""
    if not s:
        return None
    return ensure_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))


def parse_timestamp(value: Union[str, int, float, datetime]) -> datetime:
    """Parse a client timestamp.

    Accepts ISO-8601 strings, epoch milliseconds (what ``Date.now()``
    produces on the device) and datetime objects.

    Raises:
        ValueError: If the value cannot be interpreted as a point in time.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        value = int(value.strip())
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Timestamp out of range: {value!r}") from e
    if isinstance(value, str) and value.strip():
        parsed = parse_datetime(value.strip())
        if parsed is not None:
            return parsed
    raise ValueError(f"Invalid timestamp: {value!r}")


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as the ISO-8601 string used on the wire and on disk."""
    return ensure_utc(dt).isoformat(timespec="microseconds")


# === Enums ===


class MoodState(str, Enum):
    """Supported mood tags."""

    PEACEFUL = "Peaceful"
    CONTENT = "Content"
    ANXIOUS = "Anxious"
    STRESSED = "Stressed"
    SAD = "Sad"
    ANGRY = "Angry"
    OVERWHELMED = "Overwhelmed"


class IntentKind(str, Enum):
    """Kinds of change intent a client can queue."""

    CREATE_JOURNAL = "CREATE_JOURNAL"
    UPDATE_JOURNAL = "UPDATE_JOURNAL"
    DELETE_JOURNAL = "DELETE_JOURNAL"
    LOG_MOOD = "LOG_MOOD"


class FailureKind(str, Enum):
    """Per-intent failure categories reported in SyncOutcome.errors."""

    VALIDATION_FAILURE = "validation_failure"
    UNEXPECTED_FAILURE = "unexpected_failure"


# Sync queue entry states (client durable log)
SYNC_PENDING = 0
SYNC_DEAD_LETTER = 2

# Default capacity of a user's embedded mood history
MOOD_HISTORY_CAP = 500


# === Records ===


@dataclass
class JournalRecord:
    """A stored journal entry.

    ``cipher_content`` is always the output of ``Cipher.wrap`` over the
    client-supplied ciphertext; the server never holds plaintext.
    """

    id: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    cipher_content: str
    mood: Optional[MoodState] = None
    intensity: Optional[int] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class MoodRecord:
    """A single mood log entry, embedded under its owner's MoodHistory."""

    owner_id: str
    mood: MoodState
    intensity: int  # 1-10
    timestamp: datetime
    note: Optional[str] = None  # plaintext, not encrypted


class MoodHistory:
    """Fixed-capacity mood history owned by a user aggregate.

    Entries are kept ordered by timestamp. Appending past capacity trims
    the oldest entries, which are returned so the caller can persist the
    removal.
    """

    def __init__(self, capacity: int = MOOD_HISTORY_CAP, entries: Optional[List[MoodRecord]] = None):
        if capacity < 1:
            raise ValueError("Mood history capacity must be at least 1")
        self.capacity = capacity
        self._entries: List[MoodRecord] = sorted(entries or [], key=lambda m: m.timestamp)
        self._overflow: List[MoodRecord] = []
        if len(self._entries) > capacity:
            self._overflow = self._entries[: len(self._entries) - capacity]
            self._entries = self._entries[len(self._entries) - capacity :]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    @property
    def entries(self) -> List[MoodRecord]:
        return list(self._entries)

    def contains_timestamp(self, timestamp: datetime) -> bool:
        return any(m.timestamp == timestamp for m in self._entries)

    def append(self, mood: MoodRecord) -> List[MoodRecord]:
        """Insert a mood in timestamp order and trim the oldest on overflow.

        Returns:
            The entries trimmed from the history (possibly empty). Trimming
            includes any overflow carried in at construction time.
        """
        keys = [m.timestamp for m in self._entries]
        self._entries.insert(bisect.bisect_right(keys, mood.timestamp), mood)

        trimmed, self._overflow = self._overflow, []
        excess = len(self._entries) - self.capacity
        if excess > 0:
            trimmed.extend(self._entries[:excess])
            del self._entries[:excess]
        return trimmed


# === Sync Outcome ===


@dataclass
class SyncError:
    """One failed intent inside a batch."""

    change_id: str
    reason: str
    kind: FailureKind = FailureKind.UNEXPECTED_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {"changeId": self.change_id, "reason": self.reason, "kind": self.kind.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncError":
        kind = data.get("kind") or FailureKind.UNEXPECTED_FAILURE.value
        try:
            failure_kind = FailureKind(kind)
        except ValueError:
            failure_kind = FailureKind.UNEXPECTED_FAILURE
        return cls(
            change_id=str(data.get("changeId", "")),
            reason=str(data.get("reason") or data.get("error") or "Unknown sync error"),
            kind=failure_kind,
        )


@dataclass
class SyncOutcome:
    """Result of reconciling a batch. Pure output value, never persisted."""

    processed: int = 0
    failed: int = 0
    errors: List[SyncError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def failed_ids(self) -> List[str]:
        return [e.change_id for e in self.errors]

    def record_success(self) -> None:
        self.processed += 1

    def record_failure(self, change_id: str, reason: str, kind: FailureKind) -> None:
        self.failed += 1
        self.errors.append(SyncError(change_id=change_id, reason=reason, kind=kind))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncOutcome":
        return cls(
            processed=int(data.get("processed", 0)),
            failed=int(data.get("failed", 0)),
            errors=[SyncError.from_dict(e) for e in data.get("errors") or []],
        )
