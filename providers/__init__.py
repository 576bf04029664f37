"""Upstream providers and the resilience components shared between them."""

from .base import BaseProvider, ProviderConfig
from .exceptions import (
    ClientDisconnectedError,
    ConfigurationError,
    DuplicateRequestError,
    InvalidRequestError,
    ProxyError,
    UpstreamError,
)

__all__ = [
    "BaseProvider",
    "ClientDisconnectedError",
    "ConfigurationError",
    "DuplicateRequestError",
    "InvalidRequestError",
    "ProviderConfig",
    "ProxyError",
    "UpstreamError",
]
