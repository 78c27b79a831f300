"""Forwarder interface.

``forward`` is the operation the engine calls; concrete forwarders only
implement the transport (``send``) and return the downstream status code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from app.core.errors import DownstreamAppError


class AbstractForwarder(ABC):
    """Sends admitted request payloads to the downstream endpoint."""

    def __init__(self, *, user_id_field: str = "user_id") -> None:
        self.user_id_field = user_id_field

    @abstractmethod
    async def send(self, payload: dict[str, Any]) -> int:
        """Deliver payload downstream.

        Returns:
            int: HTTP status code returned by the downstream endpoint.

        Raises:
            DownstreamAppError: If the transport itself fails.
        """
        ...

    async def forward(self, payload: dict[str, Any]) -> None:
        """Strip the identity field and deliver the rest of the payload.

        Raises:
            DownstreamAppError: If the downstream answers anything but 200.
        """
        body = {k: v for k, v in payload.items() if k != self.user_id_field}
        status_code = await self.send(body)
        if status_code != 200:
            raise DownstreamAppError(
                code="downstream_error",
                message=f"Downstream endpoint returned status {status_code}",
                details={"http_status": status_code},
            )
