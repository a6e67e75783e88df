"""FastAPI application for the codex bridge."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.routes import complete_endpoint, health_endpoint, messages_endpoint
from .auth.manager import AuthManager
from .config_loader import ProxyConfig, load_config
from .core.exceptions import ProxyError, build_error_payload
from .core.pipeline import DispatchPipeline
from .messages.bridge_prompt import ensure_bridge_prompt_cached, read_cached_bridge_prompt

logger = logging.getLogger("codex-bridge")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: ProxyConfig = app.state.config
    pipeline: DispatchPipeline = app.state.pipeline
    try:
        cache_path = ensure_bridge_prompt_cached(config.bridge_prompt_cache_path)
    except OSError as exc:
        logger.warning("Could not cache bridge prompt at %s: %s", config.bridge_prompt_cache_path, exc)
    else:
        if pipeline.bridge_prompt is None:
            pipeline.bridge_prompt = read_cached_bridge_prompt(cache_path)

    logger.info("Codex bridge listening on %s:%s", config.host, config.port)
    logger.info("Backend base URL: %s", config.base_url)
    logger.info("Prompt injection strategy: %s", config.prompt_injection_strategy)
    if not config.auth_token:
        logger.warning("No inbound auth token configured; every request will be rejected")
    yield
    logger.info("Codex bridge shutting down")


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        build_error_payload("internal_server_error", str(exc) or exc.__class__.__name__, 500),
        status_code=500,
    )


def create_app(
    config: Optional[ProxyConfig] = None,
    pipeline: Optional[DispatchPipeline] = None,
    auth: Optional[AuthManager] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Factory function to create the FastAPI application.

    Args:
        config: Resolved configuration; loaded from file/env when omitted.
        pipeline: Dispatch pipeline; built from ``config`` when omitted.
        auth: Credential manager used when building the pipeline.
        transport: Optional httpx transport for backend calls.
    """
    config = config or load_config()
    if pipeline is None:
        pipeline = DispatchPipeline(config, auth or AuthManager(config), transport=transport)

    app = FastAPI(title="Codex Bridge", lifespan=lifespan)
    app.state.config = config
    app.state.pipeline = pipeline

    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.post("/v1/messages")(messages_endpoint)
    app.post("/v1/complete")(complete_endpoint)
    app.get("/health")(health_endpoint)
    return app


__all__ = ["create_app", "lifespan"]
