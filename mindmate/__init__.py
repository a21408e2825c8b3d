"""
Mindmate - offline reconciliation and encryption-at-rest core.

Journals and mood logs written on a disconnected device are replayed
against server state in timestamp order.
"""

from .crypto import Cipher
from .reconciler import Reconciler
from .types import JournalRecord, MoodRecord, SyncOutcome

try:
    from importlib.metadata import version

    __version__ = version("mindmate")
except Exception:
    __version__ = "0.0.0"

__all__ = ["Cipher", "Reconciler", "JournalRecord", "MoodRecord", "SyncOutcome"]
