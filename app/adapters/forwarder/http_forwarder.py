"""HTTP forwarder built on httpx."""

from __future__ import annotations

from typing import Any

import httpx

from app.adapters.forwarder.base import AbstractForwarder
from app.core.errors import DownstreamAppError


class HttpForwarder(AbstractForwarder):
    """POSTs admitted payloads as JSON to a fixed endpoint.

    Uses one pooled ``httpx.AsyncClient`` for the lifetime of the app.
    """

    def __init__(
        self,
        endpoint_url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        timeout_seconds: float = 30.0,
        user_id_field: str = "user_id",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the forwarder.

        Args:
            endpoint_url: Downstream URL.
            username: Optional basic auth username.
            password: Optional basic auth password.
            timeout_seconds: Timeout for requests in seconds.
            user_id_field: Identity field removed before sending.
            http_client: Optional client for dependency injection (testing).
        """
        super().__init__(user_id_field=user_id_field)
        self.endpoint_url = endpoint_url
        auth = httpx.BasicAuth(username, password or "") if username else None
        self.client = http_client or httpx.AsyncClient(auth=auth, timeout=timeout_seconds)

    async def send(self, payload: dict[str, Any]) -> int:
        try:
            response = await self.client.post(self.endpoint_url, json=payload)
        except httpx.HTTPError as exc:
            raise DownstreamAppError(
                code="downstream_unreachable",
                message=f"Downstream request failed: {exc}",
                details={"context": {"error_type": type(exc).__name__}},
            ) from exc
        return response.status_code

    async def aclose(self) -> None:
        await self.client.aclose()
