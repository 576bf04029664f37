"""Chat and status routes."""

import logging
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from providers.exceptions import (
    ConfigurationError,
    DuplicateRequestError,
    InvalidRequestError,
)
from providers.openrouter import StreamOutcome
from .dependencies import ProxyRuntime, get_runtime
from .models import ChatRequest
from .telemetry import telemetry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

CHAT_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-User-ID",
}

STATUS_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

SSE_HEADERS = {
    **CHAT_CORS_HEADERS,
    "Cache-Control": "no-store",
    "Connection": "keep-alive",
}


def _error(status_code: int, content: dict, headers: dict[str, str]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _require_configuration(runtime: ProxyRuntime) -> None:
    if not runtime.settings.openrouter_api_key:
        logger.error("OPENROUTER_API_KEY environment variable is not set")
        raise ConfigurationError()
    if not runtime.fallback_chain:
        logger.error("No fallback models configured")
        raise ConfigurationError()


async def _relay(
    first: str, frames: AsyncIterator[str], outcome: StreamOutcome
) -> AsyncIterator[str]:
    """Body of the SSE response once the first frame exists."""
    try:
        yield first
        async for frame in frames:
            yield frame
    except Exception as e:
        # Bytes are already on the wire; all we can do is end the stream.
        logger.exception(f"Chat proxy error after stream start: {e}")
    finally:
        await frames.aclose()
        telemetry.record_stream_source(outcome.source)


@router.options("/")
async def chat_preflight():
    return Response(status_code=204, headers=CHAT_CORS_HEADERS)


@router.post("/")
async def chat(request: Request):
    """Relay a conversation to the best available model as an SSE stream."""
    runtime = get_runtime()
    _require_configuration(runtime)
    executor = runtime.build_executor()

    try:
        body = await request.json()
    except ValueError:
        raise InvalidRequestError("Invalid JSON in request body")
    chat_request = ChatRequest.from_body(body)
    user_id = request.headers.get("x-user-id") or "anonymous"

    if runtime.settings.enable_prompt_deduplication:
        if not runtime.dedup.check_and_mark(user_id, chat_request.prompt):
            raise DuplicateRequestError()

    outcome = StreamOutcome()
    frames = executor.stream(
        chat_request.conversation(),
        outcome=outcome,
        is_disconnected=request.is_disconnected,
    )

    # Pull the first frame before committing to a 200 so failures that
    # happen before any bytes exist still get a JSON error.
    try:
        first = await anext(frames)
    except StopAsyncIteration:
        logger.info("Client disconnected before any output was produced")
        telemetry.record_stream_source(outcome.source)
        return Response(status_code=204, headers=CHAT_CORS_HEADERS)
    except Exception as e:
        logger.exception(f"Chat proxy error: {e}")
        await frames.aclose()
        telemetry.record_stream_source(outcome.source)
        return _error(
            500,
            {"error": "Internal server error", "message": str(e)},
            CHAT_CORS_HEADERS,
        )

    return StreamingResponse(
        _relay(first, frames, outcome),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.api_route("/", methods=["GET", "PUT", "PATCH", "DELETE"])
async def chat_method_not_allowed():
    return _error(
        405,
        {"error": "Method not allowed. Use POST for chat, GET for /status."},
        CHAT_CORS_HEADERS,
    )


@router.options("/status")
async def status_preflight():
    return Response(status_code=204, headers=STATUS_CORS_HEADERS)


@router.get("/status")
async def proxy_status():
    """Read-only view of model health, cache and limiter state."""
    try:
        runtime = get_runtime()
        chain = runtime.fallback_chain
        settings = runtime.settings
        report = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "configuration": {
                "fallbackModels": list(chain),
                "rateLimitEnabled": runtime.limiter.enabled,
                "cachingEnabled": settings.enable_response_caching,
                "deduplicationEnabled": settings.enable_prompt_deduplication,
                "queueingEnabled": settings.enable_request_queueing,
            },
            "modelStatuses": runtime.health.snapshot(chain),
            "cacheStats": {
                "responseCache": runtime.cache.stats(),
                "deduplicationCache": runtime.dedup.stats(),
            },
            "rateLimiter": {
                "running": runtime.limiter.running,
                "queued": runtime.limiter.queued,
                "tokens": runtime.limiter.tokens,
            },
        }
    except Exception as e:
        logger.error(f"Status endpoint error: {e}")
        return _error(
            500,
            {"error": "Status check failed", "message": str(e)},
            STATUS_CORS_HEADERS,
        )
    return JSONResponse(content=report, headers=STATUS_CORS_HEADERS)


@router.api_route("/status", methods=["POST", "PUT", "PATCH", "DELETE"])
async def status_method_not_allowed():
    return _error(405, {"error": "Method not allowed. Use GET."}, STATUS_CORS_HEADERS)
