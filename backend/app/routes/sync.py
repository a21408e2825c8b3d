"""Batch sync route: replays a device's offline change queue."""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Request

from mindmate.errors import RequestShapeError

from ..auth import CurrentUser
from ..config import get_settings
from ..database import ReconcilerDep
from ..logging_config import get_logger, log_sync_operation
from ..models import SyncResponse, SyncResult
from ..rate_limit import limiter

logger = get_logger("mindmate.sync")
router = APIRouter(prefix="/sync", tags=["sync"])


def _sync_rate_limit() -> str:
    return get_settings().sync_rate_limit


@router.post("", response_model=SyncResponse)
@limiter.limit(_sync_rate_limit)
async def sync_changes(
    request: Request,
    auth: CurrentUser,
    reconciler: ReconcilerDep,
    body: Annotated[dict[str, Any] | None, Body()] = None,
):
    """
    Apply a batch of queued change intents for the authenticated owner.

    Body: ``{"queue": [intent, ...]}``. Intents are applied in timestamp
    order; each one succeeds or fails on its own and failures are listed
    in ``data.errors``. Only a malformed envelope fails the whole request.
    """
    owner_id = auth.owner_id
    queue = body.get("queue") if isinstance(body, dict) else None
    if not isinstance(queue, list):
        log_sync_operation(owner_id, "sync", "batch", False, "queue is not an array")
        raise RequestShapeError("Request body must include a 'queue' array")

    logger.info(f"SYNC | {owner_id} | {len(queue)} changes")
    outcome = await reconciler.reconcile(owner_id, queue)
    logger.info(
        f"SYNC COMPLETE | {owner_id} | processed={outcome.processed} failed={outcome.failed}"
    )

    return SyncResponse(data=SyncResult.model_validate(outcome.to_dict()))
