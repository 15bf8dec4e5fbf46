"""Client for the preservation service's view of object versions."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

import httpx

from .config import ServiceEndpoint
from .errors import AccessionFlowError, PreservationNotFoundError

logger = logging.getLogger(__name__)


class PreservationClient(Protocol):
    async def current_version(self, object_id: str) -> int:
        """Latest version preservation holds for ``object_id``.

        Raises:
            PreservationNotFoundError: If preservation has no record of the object.
        """


class HttpPreservationClient:
    """Reads ``GET {base_url}/objects/{object_id}.json``."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    @classmethod
    def from_endpoint(cls, endpoint: ServiceEndpoint) -> "HttpPreservationClient":
        if not endpoint.base_url:
            raise ValueError("preservation.base_url is not configured")
        return cls(endpoint.base_url, token=endpoint.token, timeout=endpoint.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def current_version(self, object_id: str) -> int:
        try:
            response = await self._client.get(f"/objects/{object_id}.json")
        except httpx.HTTPError as e:
            raise AccessionFlowError(f"Preservation request for {object_id} failed: {e}") from e
        if response.status_code == 404:
            raise PreservationNotFoundError(f"Preservation has no record of {object_id}")
        try:
            response.raise_for_status()
            return int(response.json()["current_version"])
        except (httpx.HTTPStatusError, KeyError, TypeError, ValueError) as e:
            raise AccessionFlowError(
                f"Unexpected preservation response for {object_id}: {e}"
            ) from e


class InMemoryPreservationClient:
    """Preservation stand-in for tests and local runs."""

    def __init__(self, versions: Optional[Dict[str, int]] = None) -> None:
        self.versions: Dict[str, int] = dict(versions or {})

    async def current_version(self, object_id: str) -> int:
        if object_id not in self.versions:
            raise PreservationNotFoundError(f"Preservation has no record of {object_id}")
        return self.versions[object_id]
