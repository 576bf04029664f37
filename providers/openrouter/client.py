"""OpenRouter provider: one streaming chat-completions call per attempt."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping, Optional, Sequence

import httpx

from providers.base import BaseProvider, ProviderConfig
from providers.exceptions import UpstreamError
from .request import build_headers, build_request_body
from .sse import SSEParser

logger = logging.getLogger(__name__)

# Upstream error bodies are logged and classified, never relayed whole.
MAX_ERROR_BODY_CHARS = 2000


class OpenRouterProvider(BaseProvider):
    """Streams raw SSE events from the upstream chat-completions endpoint."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._base_url = (config.base_url or "https://openrouter.ai/api/v1").rstrip("/")
        self._headers = build_headers(config)

        # Shared HTTP client with connection pooling for better performance
        self._http_client = httpx.AsyncClient(
            transport=transport,
            limits=httpx.Limits(
                max_connections=config.max_connections,
                max_keepalive_connections=config.max_keepalive_connections,
                keepalive_expiry=30.0,
            ),
            timeout=httpx.Timeout(
                connect=config.connect_timeout_sec,
                read=config.read_timeout_sec,
                write=30.0,
                pool=5.0,
            ),
        )

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    @asynccontextmanager
    async def open_stream(
        self, model: str, messages: Sequence[Mapping[str, str]]
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Send one streaming request and yield its SSE ``data`` payloads.

        Raises UpstreamError for a non-2xx response. Transport errors raised
        by httpx while reading the body propagate unchanged.
        """
        body = build_request_body(model, messages, self.config)
        request = self._http_client.build_request(
            "POST", self.completions_url, json=body, headers=self._headers
        )
        response = await self._http_client.send(request, stream=True)
        try:
            if not response.is_success:
                raw = await response.aread()
                text = raw.decode("utf-8", errors="replace")[:MAX_ERROR_BODY_CHARS]
                logger.error(f"Model {model} failed: {response.status_code} {text}")
                raise UpstreamError(
                    f"API Error: {response.status_code} - {text}",
                    model=model,
                    upstream_status=response.status_code,
                    body_text=text,
                )
            yield self._iter_events(response)
        finally:
            await response.aclose()

    @staticmethod
    async def _iter_events(response: httpx.Response) -> AsyncIterator[str]:
        parser = SSEParser()
        async for line in response.aiter_lines():
            data = parser.feed_line(line)
            if data is not None:
                yield data
        trailing = parser.flush()
        if trailing is not None:
            yield trailing

    async def aclose(self) -> None:
        await self._http_client.aclose()
