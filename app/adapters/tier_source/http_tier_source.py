"""Tier source adapters: authenticated HTTP endpoint and static table."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from app.adapters.tier_source.base import AbstractTierSource
from app.core.errors import ConfigRefreshError
from app.schemas.tiers import TierTable

logger = logging.getLogger(__name__)


def _validate_table(raw: object) -> dict[str, int]:
    try:
        return dict(TierTable.model_validate(raw).root)
    except ValidationError as exc:
        raise ConfigRefreshError(
            code="tiers_invalid",
            message=f"Tier source returned an invalid tier table: {exc.error_count()} error(s)",
        ) from exc


class HttpTierSource(AbstractTierSource):
    """GETs a JSON object of tier name to limit.

    The whole table is validated before it is returned, so a malformed answer
    never reaches the config store.
    """

    def __init__(
        self,
        endpoint_url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url
        auth = httpx.BasicAuth(username, password or "") if username else None
        self.client = http_client or httpx.AsyncClient(auth=auth, timeout=timeout_seconds)

    async def fetch_tiers(self) -> dict[str, int]:
        try:
            response = await self.client.get(self.endpoint_url)
        except httpx.HTTPError as exc:
            raise ConfigRefreshError(
                code="tiers_unreachable",
                message=f"Tier source request failed: {exc}",
            ) from exc

        if response.status_code != 200:
            raise ConfigRefreshError(
                code="tiers_bad_status",
                message=f"Tier source returned status {response.status_code}",
                details={"http_status": response.status_code},
            )

        try:
            raw = response.json()
        except ValueError as exc:
            raise ConfigRefreshError(
                code="tiers_invalid",
                message="Tier source returned a non-JSON body",
            ) from exc

        tiers = _validate_table(raw)
        logger.info("tier_source.fetched", extra={"tier_count": len(tiers)})
        return tiers

    async def aclose(self) -> None:
        await self.client.aclose()


class StaticTierSource(AbstractTierSource):
    """Serves a fixed table, for deployments without a tiers endpoint."""

    def __init__(self, tiers: dict[str, int]) -> None:
        self._tiers = _validate_table(tiers)

    async def fetch_tiers(self) -> dict[str, int]:
        return dict(self._tiers)
