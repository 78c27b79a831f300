from abc import ABC, abstractmethod


class AbstractTierSource(ABC):
	"""External source of truth for tier limits."""

	@abstractmethod
	async def fetch_tiers(self) -> dict[str, int]:
		"""Fetch the full tier table.

		Returns:
			dict[str, int]: Tier name to non-negative request limit.

		Raises:
			ConfigRefreshError: If the source is unreachable or returns an invalid table.
		"""
		...
