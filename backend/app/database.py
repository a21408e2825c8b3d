"""Storage, cipher and reconciler wiring for the Mindmate backend."""

import logging
from typing import Annotated

from fastapi import Depends

from mindmate.crypto import Cipher
from mindmate.reconciler import Reconciler
from mindmate.storage import RecordStore, SQLiteRecordStore

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

_record_store: RecordStore | None = None
_cipher: Cipher | None = None


def load_cipher(settings: Settings | None = None) -> Cipher:
    """Get the process-wide Cipher.

    Raises:
        StartupConfigError: If the configured key is not 32 bytes of hex.
    """
    global _cipher
    if _cipher is None:
        if settings is None:
            settings = get_settings()
        _cipher = Cipher.from_hex(settings.server_encryption_key)
    return _cipher


def get_record_store(settings: Settings | None = None) -> RecordStore:
    """Get cached record store."""
    global _record_store
    if _record_store is None:
        if settings is None:
            settings = get_settings()
        _record_store = SQLiteRecordStore(
            settings.database_path, mood_history_cap=settings.mood_history_cap
        )
        logger.info(f"Record store opened at {settings.database_path}")
    return _record_store


def reset_state() -> None:
    """Drop the cached store and cipher."""
    global _record_store, _cipher
    if _record_store is not None:
        _record_store.close()
    _record_store = None
    _cipher = None


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> RecordStore:
    """FastAPI dependency for the record store."""
    return get_record_store(settings)


def get_cipher(settings: Annotated[Settings, Depends(get_settings)]) -> Cipher:
    """FastAPI dependency for the cipher."""
    return load_cipher(settings)


def get_reconciler(
    db: Annotated[RecordStore, Depends(get_db)],
    cipher: Annotated[Cipher, Depends(get_cipher)],
) -> Reconciler:
    """FastAPI dependency for a reconciler over the shared store and cipher."""
    return Reconciler(db, cipher)


# Type aliases for dependency injection
Database = Annotated[RecordStore, Depends(get_db)]
CipherDep = Annotated[Cipher, Depends(get_cipher)]
ReconcilerDep = Annotated[Reconciler, Depends(get_reconciler)]
