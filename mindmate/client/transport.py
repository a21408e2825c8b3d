"""Client transport to the batch sync endpoint."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..errors import TransportError
from ..types import SyncOutcome

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class SyncTransport(ABC):
    """How the client reaches the reconciler."""

    @abstractmethod
    def push(self, intents: List[Dict[str, Any]]) -> SyncOutcome:
        """Send wire intents as one batch.

        Raises:
            TransportError: If the batch call itself failed (offline, timeout,
                5xx, unreadable response). Per-item failures are reported in
                the returned outcome instead.
        """

    def send(self, intent: Dict[str, Any]) -> SyncOutcome:
        """Send a single intent immediately."""
        return self.push([intent])

    @abstractmethod
    def fetch_journals(self) -> List[Dict[str, Any]]:
        """Canonical journal list for the authenticated owner."""

    @abstractmethod
    def fetch_moods(self) -> List[Dict[str, Any]]:
        """Canonical mood history for the authenticated owner."""

    def close(self) -> None:
        pass


class HttpTransport(SyncTransport):
    """SyncTransport over HTTP using httpx.

    Args:
        base_url: Backend root, e.g. ``https://api.example.com``.
        auth_token: Bearer token resolved to the owner by the backend.
        timeout: Per-request timeout in seconds; the only timeout on a flush.
        client: Optional preconfigured ``httpx.Client`` (used in tests).
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {auth_token}",
                "Content-Type": "application/json",
            },
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.debug(f"{method} {path} failed: {e}")
            raise TransportError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            raise TransportError(
                f"Backend returned status {response.status_code}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError("Backend returned a non-JSON response") from e
        if not isinstance(body, dict):
            raise TransportError("Backend returned an unexpected response")
        return body

    def push(self, intents: List[Dict[str, Any]]) -> SyncOutcome:
        body = self._request("POST", "/sync", json={"queue": intents})
        data = body.get("data")
        if not isinstance(data, dict):
            raise TransportError("Sync response missing data")
        return SyncOutcome.from_dict(data)

    def fetch_journals(self) -> List[Dict[str, Any]]:
        body = self._request("GET", "/journals")
        return list(body.get("data") or [])

    def fetch_moods(self) -> List[Dict[str, Any]]:
        body = self._request("GET", "/moods")
        return list((body.get("data") or {}).get("moods") or [])

    def check_health(self) -> bool:
        """Whether the backend answers its health check."""
        try:
            response = self._client.get("/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    def close(self) -> None:
        self._client.close()
