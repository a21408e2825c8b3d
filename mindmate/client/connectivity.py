"""Connectivity state for the offline client.

A single subscribable event source. Listeners run synchronously, in
registration order, and only when the state actually changes.
"""

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

ConnectionChangeListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks whether the device can reach the backend.

    Args:
        connected: Initial state.
        probe: Optional callable returning True when the backend is reachable,
            used by ``check()``.
    """

    def __init__(self, connected: bool = True, probe: Optional[Callable[[], bool]] = None):
        self._connected = connected
        self._probe = probe
        self._listeners: List[ConnectionChangeListener] = []
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def subscribe(self, listener: ConnectionChangeListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_connected(self, connected: bool) -> None:
        """Update the state and notify listeners if it changed."""
        with self._lock:
            changed = connected != self._connected
            self._connected = connected
            listeners = list(self._listeners)

        if not changed:
            return

        logger.info(f"Connectivity changed: {'online' if connected else 'offline'}")
        for listener in listeners:
            try:
                listener(connected)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)

    def check(self) -> bool:
        """Run the probe (if any), update state, and return it."""
        if self._probe is None:
            return self._connected
        try:
            reachable = bool(self._probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}", exc_info=True)
            reachable = False
        self.set_connected(reachable)
        return reachable
