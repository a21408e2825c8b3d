"""Abstract record storage for mindmate.

Two entity kinds are persisted, both exclusively owned by ``owner_id``:
journal records (one row each) and mood records (embedded in the owner's
capped MoodHistory). Every method is scoped by owner; a store never
operates across owners.

Methods are coroutines so the reconciler can yield while a storage call
is in flight without starting the next intent of the same batch.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..types import JournalRecord, MoodRecord


class RecordStore(ABC):
    """Persistence contract consumed by the Reconciler."""

    # === Journals ===

    @abstractmethod
    async def get_journal(self, owner_id: str, journal_id: str) -> Optional[JournalRecord]:
        """Point lookup by owner-scoped id."""

    @abstractmethod
    async def find_journal_created_at(
        self, owner_id: str, created_at: datetime
    ) -> Optional[JournalRecord]:
        """Find the owner's journal created at exactly ``created_at``."""

    @abstractmethod
    async def insert_journal(self, record: JournalRecord) -> None:
        """Insert a new journal record."""

    @abstractmethod
    async def update_journal(
        self,
        owner_id: str,
        journal_id: str,
        changes: Dict[str, Any],
        updated_at: datetime,
        expected_updated_at: Optional[datetime] = None,
    ) -> bool:
        """Apply ``changes`` and set ``updated_at``.

        When ``expected_updated_at`` is given the write is conditional: it only
        happens if the stored ``updated_at`` still equals that value.

        Returns:
            True if a row was updated.
        """

    @abstractmethod
    async def delete_journal(self, owner_id: str, journal_id: str) -> bool:
        """Delete if present. Returns True if a row was removed."""

    @abstractmethod
    async def list_journals(self, owner_id: str, limit: int = 100) -> List[JournalRecord]:
        """Journals for an owner, newest first."""

    # === Moods ===

    @abstractmethod
    async def has_mood_at(self, owner_id: str, timestamp: datetime) -> bool:
        """Whether the owner's history already holds a mood at ``timestamp``."""

    @abstractmethod
    async def append_mood(self, mood: MoodRecord) -> List[MoodRecord]:
        """Append to the owner's MoodHistory.

        Returns:
            Entries trimmed from the history because it overflowed.
        """

    @abstractmethod
    async def list_moods(
        self,
        owner_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MoodRecord]:
        """Moods in ``[start, end]``, oldest first."""

    async def ping(self) -> bool:
        """Whether the backing storage answers."""
        return True

    def close(self) -> None:
        """Release any resources."""
