"""Fallback stream orchestration across the configured model chain."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import AsyncExitStack, aclosing
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    Mapping,
    Optional,
    Sequence,
)

import httpx

from caching import ResponseCache
from providers.base import BaseProvider
from providers.exceptions import (
    ClientDisconnectedError,
    ConfigurationError,
    UpstreamError,
)
from providers.model_health import ModelHealthRegistry
from providers.rate_limit import UpstreamRateLimiter
from .degraded import DEGRADED_MESSAGE, iter_degraded_words
from .resilience import (
    AttemptRecord,
    FailureKind,
    OrchestratorState,
    StreamOutcome,
    classify_failure,
)
from .sse import (
    DONE,
    DONE_FRAME,
    content_frame,
    extract_delta_content,
    extract_stream_error,
    format_sse,
)

logger = logging.getLogger(__name__)

# Failures that move the request on to the next model.
ATTEMPT_FAILURES = (UpstreamError, httpx.HTTPError, httpx.StreamError)

DisconnectCheck = Callable[[], Awaitable[bool]]


def next_model(chain: Sequence[str], current: str) -> Optional[str]:
    """Model after ``current`` in escalation order, or None."""
    try:
        index = list(chain).index(current)
    except ValueError:
        return None
    if index >= len(chain) - 1:
        return None
    return chain[index + 1]


class FallbackStreamExecutor:
    """Serves one conversation as an SSE stream, escalating through models.

    Per request the flow is: select a model, replay a cached answer if one
    exists, otherwise dispatch upstream through the limiter and relay the
    event stream. A failed attempt marks the model failed and moves on to
    the next model in the chain; once the chain is exhausted a fixed
    degraded message is streamed instead, so the caller always receives a
    terminated stream.

    Output already relayed from a failed attempt is not retracted, so the
    caller may see a partial answer followed by a fresh one from the next
    model.
    """

    def __init__(
        self,
        provider: BaseProvider,
        health: ModelHealthRegistry,
        limiter: UpstreamRateLimiter,
        fallback_chain: Iterable[str],
        cache: Optional[ResponseCache] = None,
        degraded_word_delay: float = 0.05,
        degraded_message: str = DEGRADED_MESSAGE,
        on_attempt: Optional[Callable[[AttemptRecord], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        chain = tuple(model.strip() for model in fallback_chain if model and model.strip())
        if not chain:
            raise ConfigurationError()
        self._provider = provider
        self._health = health
        self._limiter = limiter
        self._chain = chain
        self._cache = cache
        self._degraded_word_delay = max(0.0, degraded_word_delay)
        self._degraded_message = degraded_message
        self._on_attempt = on_attempt
        self._sleep = sleep

    @property
    def fallback_chain(self) -> tuple[str, ...]:
        return self._chain

    @staticmethod
    async def _client_gone(is_disconnected: Optional[DisconnectCheck]) -> bool:
        if is_disconnected is None:
            return False
        return await is_disconnected()

    def _record(self, outcome: StreamOutcome, record: AttemptRecord) -> None:
        outcome.attempts.append(record)
        if self._on_attempt is not None:
            self._on_attempt(record)

    @staticmethod
    def _log_failure(model: str, kind: FailureKind, exc: BaseException) -> None:
        if kind.is_transport:
            logger.warning(f"Stream transport error with model {model}: {exc!r}")
        elif kind in (FailureKind.RATE_LIMITED, FailureKind.UNAVAILABLE):
            logger.warning(f"Model {model} rate limited or unavailable: {exc}")
        else:
            logger.error(f"Error with model {model}: {exc}")

    async def stream(
        self,
        messages: Sequence[Mapping[str, str]],
        outcome: Optional[StreamOutcome] = None,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncIterator[str]:
        """Yield SSE frames for ``messages``; always ends with ``[DONE]``.

        Stops early, without further upstream or limiter work, once
        ``is_disconnected`` reports the caller has gone.
        """
        outcome = outcome if outcome is not None else StreamOutcome()
        conversation = tuple(dict(message) for message in messages)
        max_attempts = len(self._chain)

        outcome.enter(OrchestratorState.SELECT_MODEL)
        model = self._health.select_best_model(self._chain)
        logger.info(f"Selected model: {model}")
        attempt = 1

        while True:
            logger.info(f"Attempt {attempt}/{max_attempts}: Trying model {model}")

            if self._cache is not None:
                outcome.enter(OrchestratorState.CHECK_CACHE)
                cached = self._cache.get(model, conversation)
                if cached:
                    outcome.enter(OrchestratorState.EMIT_CACHED)
                    logger.info(f"Returning cached response for model {model}")
                    outcome.source = "cache"
                    outcome.model = model
                    yield content_frame(cached)
                    yield DONE_FRAME
                    outcome.enter(OrchestratorState.DONE)
                    return

            if await self._client_gone(is_disconnected):
                logger.info("Client disconnected before dispatch, abandoning request")
                return

            outcome.enter(OrchestratorState.DISPATCH_UPSTREAM)
            started = time.monotonic()
            pending = (
                self._cache.writer(model, conversation) if self._cache is not None else None
            )
            try:
                async with AsyncExitStack() as stack:
                    async with self._limiter.slot(is_disconnected):
                        events = await stack.enter_async_context(
                            self._provider.open_stream(model, conversation)
                        )
                    outcome.enter(OrchestratorState.STREAM_RELAY)
                    events = await stack.enter_async_context(aclosing(events))
                    async for data in events:
                        if data == DONE:
                            break
                        error_text = extract_stream_error(data)
                        if error_text is not None:
                            raise UpstreamError(
                                f"Stream error: {error_text}",
                                model=model,
                                body_text=error_text,
                                stream_error=True,
                            )
                        if pending is not None:
                            pending.append(extract_delta_content(data) or "")
                        yield format_sse(data)
                        if await self._client_gone(is_disconnected):
                            logger.info(f"Client disconnected mid-stream from model {model}")
                            return
            except ClientDisconnectedError:
                logger.info(f"Client disconnected while queued for model {model}")
                return
            except ATTEMPT_FAILURES as exc:
                kind = classify_failure(exc)
                self._log_failure(model, kind, exc)
                self._health.mark_failed(model)
                self._record(
                    outcome,
                    AttemptRecord(
                        model=model,
                        succeeded=False,
                        kind=kind,
                        status_code=getattr(exc, "upstream_status", None),
                        message=str(exc)[:200],
                        latency_ms=(time.monotonic() - started) * 1000,
                    ),
                )

                outcome.enter(OrchestratorState.SELECT_NEXT_MODEL)
                fallback = next_model(self._chain, model)
                if fallback is not None and attempt < max_attempts:
                    logger.info(f"Falling back to model: {fallback}")
                    model = fallback
                    attempt += 1
                    continue
                break
            else:
                if pending is not None:
                    pending.complete()
                self._health.mark_working(model)
                self._record(
                    outcome,
                    AttemptRecord(
                        model=model,
                        succeeded=True,
                        latency_ms=(time.monotonic() - started) * 1000,
                    ),
                )
                outcome.source = "upstream"
                outcome.model = model
                yield DONE_FRAME
                outcome.enter(OrchestratorState.DONE)
                return
            finally:
                # Partial text from an attempt that did not finish is never kept.
                if pending is not None:
                    pending.discard()

        async for frame in self._emit_degraded(outcome, is_disconnected):
            yield frame

    async def _emit_degraded(
        self, outcome: StreamOutcome, is_disconnected: Optional[DisconnectCheck]
    ) -> AsyncIterator[str]:
        outcome.enter(OrchestratorState.EMIT_DEGRADED)
        outcome.source = "degraded"
        outcome.model = None
        logger.warning("All models failed, providing local fallback")
        for word in iter_degraded_words(self._degraded_message):
            if await self._client_gone(is_disconnected):
                logger.info("Client disconnected during degraded response")
                return
            yield content_frame(word)
            await self._sleep(self._degraded_word_delay)
        yield DONE_FRAME
        outcome.enter(OrchestratorState.DONE)
