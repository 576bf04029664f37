import json
from contextlib import asynccontextmanager
from typing import Any, Callable

import httpx
import pytest

from api.dependencies import build_runtime, set_runtime
from config.settings import Settings
from providers.base import BaseProvider, ProviderConfig


def sse_body(*payloads: Any, done: bool = True) -> bytes:
    """Encode payloads as an upstream SSE body."""
    frames = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        frames.append(f"data: {data}\n\n")
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames).encode("utf-8")


def chunk(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


def frame_contents(text: str) -> list[str]:
    """Delta contents of every JSON frame in an SSE body."""
    contents = []
    for line in text.splitlines():
        if not line.startswith("data: ") or line == "data: [DONE]":
            continue
        payload = json.loads(line[6:])
        contents.append(payload["choices"][0]["delta"]["content"])
    return contents


class BrokenStream(httpx.AsyncByteStream):
    """Response body that dies after the first chunk."""

    def __init__(self, first: bytes):
        self._first = first

    async def __aiter__(self):
        yield self._first
        raise httpx.ReadError("connection reset by peer")


class FakeUpstream:
    """Scripted upstream: model -> queue of responses.

    A response is a ``(status, body)`` pair or a callable taking the request.
    The last response for a model keeps being served once the queue drains;
    unscripted models answer 503.
    """

    def __init__(self):
        self.script: dict[str, list[Any]] = {}
        self.calls: list[dict] = []

    def respond(self, model: str, *responses: Any) -> "FakeUpstream":
        self.script.setdefault(model, []).extend(responses)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append({"body": body, "headers": dict(request.headers)})
        queue = self.script.get(body["model"]) or []
        if not queue:
            return httpx.Response(503, text="model unavailable")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response):
            return response(request)
        status, content = response
        return httpx.Response(status, content=content)

    @property
    def models_called(self) -> list[str]:
        return [call["body"]["model"] for call in self.calls]


class ScriptedProvider(BaseProvider):
    """In-process provider; each script item is a list of events or an exception.

    Exceptions inside an event list are raised mid-stream.
    """

    def __init__(self, script: dict[str, Any]):
        super().__init__(ProviderConfig(api_key="test_key"))
        self.script = script
        self.calls: list[str] = []

    @asynccontextmanager
    async def open_stream(self, model, messages):
        self.calls.append(model)
        action = self.script.get(model, httpx.ConnectError("no route"))
        if isinstance(action, Exception):
            raise action

        async def events():
            for item in action:
                if isinstance(item, Exception):
                    raise item
                yield item

        yield events()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values = {
            "openrouter_api_key": "test_key",
            "openrouter_base_url": "https://upstream.test/api/v1",
            "fallback_models": "model-a,model-b",
            "throttle_delay_ms": 0,
            "rate_limit_burst_size": 100,
            "degraded_word_delay_ms": 0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def install_runtime(upstream):
    """Build a runtime over the fake upstream and make it the process runtime."""

    def _install(settings: Settings):
        runtime = build_runtime(settings, transport=httpx.MockTransport(upstream))
        set_runtime(runtime)
        return runtime

    yield _install
    set_runtime(None)
