"""Forwarder adapters - deliver admitted requests downstream."""

from app.adapters.forwarder.base import AbstractForwarder
from app.adapters.forwarder.http_forwarder import HttpForwarder

__all__ = [
    "AbstractForwarder",
    "HttpForwarder",
]
