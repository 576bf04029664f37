"""Base provider interface - extend this to implement your own upstream."""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, AsyncIterator, Mapping, Optional, Sequence

from pydantic import BaseModel


class ProviderConfig(BaseModel):
    """Configuration for an upstream chat-completions provider.

    Sampling parameters are fixed per deployment, not per request.
    """

    api_key: str
    base_url: Optional[str] = None
    http_referer: Optional[str] = None
    app_title: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2000

    # HTTP connection pooling
    connect_timeout_sec: float = 10.0
    read_timeout_sec: float = 120.0
    max_connections: int = 100
    max_keepalive_connections: int = 20


class BaseProvider(ABC):
    """Base class for all providers. Extend this to add your own."""

    def __init__(self, config: ProviderConfig):
        self.config = config

    @abstractmethod
    def open_stream(
        self, model: str, messages: Sequence[Mapping[str, str]]
    ) -> AsyncContextManager[AsyncIterator[str]]:
        """Open one upstream attempt.

        Entering the context sends the request and waits for the response
        headers; the yielded iterator produces raw SSE ``data`` payloads.
        """

    async def aclose(self) -> None:
        """Release transport resources."""
        return None
