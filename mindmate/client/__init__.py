"""Offline-first client: durable queue, local state and the owning features."""

from pathlib import Path
from typing import Optional, Union

from .connectivity import ConnectivityMonitor
from .features import JournalFeature, MoodFeature
from .local_store import LocalStore, QueuedIntent
from .queue import ClientQueue, SubmitStatus
from .transport import HttpTransport, SyncTransport

CLIENT_DB_NAME = "client.db"


class MindmateClient:
    """Wires the local store, queue and features for one device.

    After every successful flush the journal and mood features refetch
    canonical state from the server.
    """

    def __init__(
        self,
        store: LocalStore,
        transport: SyncTransport,
        connectivity: Optional[ConnectivityMonitor] = None,
    ):
        self.store = store
        self.transport = transport
        self.connectivity = connectivity
        self.queue = ClientQueue(store, transport, connectivity=connectivity)
        self.journals = JournalFeature(store, self.queue, transport)
        self.moods = MoodFeature(store, self.queue, transport)
        self.queue.add_flush_listener(self._refetch)

    def _refetch(self, outcome) -> None:
        self.journals.refresh()
        self.moods.refresh()

    def close(self) -> None:
        self.queue.close()
        self.transport.close()


def open_client(
    home: Union[str, Path],
    backend_url: str,
    auth_token: str,
    connectivity: Optional[ConnectivityMonitor] = None,
) -> MindmateClient:
    """Open the client state under ``home`` talking to ``backend_url``."""
    store = LocalStore(Path(home) / CLIENT_DB_NAME)
    transport = HttpTransport(backend_url, auth_token)
    return MindmateClient(store, transport, connectivity=connectivity)


__all__ = [
    "ClientQueue",
    "ConnectivityMonitor",
    "HttpTransport",
    "JournalFeature",
    "LocalStore",
    "MindmateClient",
    "MoodFeature",
    "QueuedIntent",
    "SubmitStatus",
    "SyncTransport",
    "open_client",
]
