"""Tier source adapters - where tier limits come from."""

from app.adapters.tier_source.base import AbstractTierSource
from app.adapters.tier_source.http_tier_source import HttpTierSource, StaticTierSource

__all__ = [
    "AbstractTierSource",
    "HttpTierSource",
    "StaticTierSource",
]
