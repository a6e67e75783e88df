"""Liveness endpoint."""

from fastapi import Request
from fastapi.responses import JSONResponse


async def health_endpoint(request: Request) -> JSONResponse:
    """GET /health - unauthenticated liveness check."""
    config = request.app.state.config
    return JSONResponse(
        {
            "status": "ok",
            "prompt_injection_strategy": config.prompt_injection_strategy,
            "allowed_models": list(config.allowed_models),
        }
    )
