"""Canonical read routes: the state a client refetches after a flush."""

from datetime import datetime, timedelta

from fastapi import APIRouter, Query

from mindmate.errors import RequestShapeError
from mindmate.types import ensure_utc, utc_now

from ..auth import CurrentUser
from ..database import CipherDep, Database
from ..logging_config import get_logger
from ..models import (
    JournalListResponse,
    JournalOut,
    MoodHistoryData,
    MoodHistoryResponse,
    MoodOut,
)

logger = get_logger("mindmate.records")
router = APIRouter(tags=["records"])

DEFAULT_MOOD_WINDOW = timedelta(days=30)


@router.get("/journals", response_model=JournalListResponse)
async def list_journals(
    auth: CurrentUser,
    db: Database,
    cipher: CipherDep,
    limit: int = Query(default=100, ge=1, le=500),
):
    """Journals for the owner, newest first, content unwrapped to client ciphertext.

    A stored value that fails authentication raises IntegrityError, which is
    reported as a generic server error.
    """
    records = await db.list_journals(auth.owner_id, limit=limit)
    journals = [JournalOut.from_record(r, cipher.unwrap_text(r.cipher_content)) for r in records]
    logger.info(f"JOURNALS | {auth.owner_id} | {len(journals)} returned")
    return JournalListResponse(data=journals)


@router.get("/moods", response_model=MoodHistoryResponse)
async def list_moods(
    auth: CurrentUser,
    db: Database,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """Mood history in ``[start, end]``. Defaults to the last 30 days."""
    end = ensure_utc(end) if end else None
    start = ensure_utc(start) if start else None
    if start is None:
        start = (end or utc_now()) - DEFAULT_MOOD_WINDOW
    if end is not None and start > end:
        raise RequestShapeError("start must not be after end")

    moods = await db.list_moods(auth.owner_id, start=start, end=end)
    return MoodHistoryResponse(
        data=MoodHistoryData(
            moods=[MoodOut.from_record(m) for m in moods],
            start=start,
            end=end,
        )
    )
