"""FastAPI application for the chat fallback proxy."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from config.settings import get_settings
from providers.exceptions import ProxyError
from .dependencies import cleanup_runtime, get_runtime
from .routes import CHAT_CORS_HEADERS, router
from .telemetry import telemetry

NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "httpx", "httpcore")


def configure_logging(log_file: str) -> None:
    """Log to ``log_file``, truncated once per process.

    A reload that finds handlers already installed keeps appending.
    """
    if not logging.root.handlers:
        open(log_file, "w", encoding="utf-8").close()
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(levelname)s - %(message)s",
            handlers=[logging.FileHandler(log_file, encoding="utf-8", mode="a")],
        )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


configure_logging(get_settings().log_file)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = get_runtime()
    logger.info("Starting chat fallback proxy...")
    if not runtime.settings.openrouter_api_key:
        logger.warning("OPENROUTER_API_KEY is not set; chat requests will fail")
    if runtime.fallback_chain:
        logger.info(f"Fallback chain: {', '.join(runtime.fallback_chain)}")
    else:
        logger.warning("No fallback models configured; chat requests will fail")

    yield

    await cleanup_runtime()
    logger.info("Server shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(title="Chat Fallback Proxy", version="1.0.0", lifespan=lifespan)
    app.include_router(router)

    @app.middleware("http")
    async def record_request(request: Request, call_next):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.debug(
                f"{request.method} {request.url.path} -> {status_code} ({elapsed_ms:.1f}ms)"
            )
            telemetry.record_http(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                latency_ms=elapsed_ms,
            )

    @app.get("/metrics")
    async def metrics():
        """Prometheus text exposition of the in-process counters."""
        return Response(content=telemetry.as_prometheus(), media_type="text/plain")

    @app.get("/health")
    async def health():
        """Liveness probe; says nothing about upstream models (see /status)."""
        return {"status": "healthy", "service": "chat-fallback-proxy"}

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        log = logger.error if exc.status_code >= 500 else logger.info
        log(f"Rejected {request.method} {request.url.path}: {exc.error_type} - {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response_body(),
            headers=CHAT_CORS_HEADERS,
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
            headers=CHAT_CORS_HEADERS,
        )

    return app


app = create_app()
