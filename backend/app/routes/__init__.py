"""API routes."""

from .records import router as records_router
from .sync import router as sync_router

__all__ = [
    "records_router",
    "sync_router",
]
