"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request

from msgbridge.adapters.messages_compat.router import error_response, router as messages_router
from msgbridge.adapters.messages_compat.upstream import UpstreamClient
from msgbridge.config.settings import Settings, get_settings
from msgbridge.util.logger import logger


def create_app(settings: Settings | None = None, upstream: UpstreamClient | None = None) -> FastAPI:
    """Build the app around one immutable settings value and one upstream client."""
    resolved = settings or get_settings()
    app = FastAPI(title=resolved.app_name)
    app.state.settings = resolved
    app.state.upstream = upstream or UpstreamClient(resolved)
    app.include_router(messages_router, prefix="/v1")

    @app.middleware("http")
    async def unhandled_error_middleware(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:  # pragma: no cover - fail-safe
            logger.exception("gateway unhandled exception path=%s", request.url.path)
            return error_response(500, "api_error", str(exc))

    @app.get("/health")
    def health() -> dict:
        logger.debug("health check")
        return {"status": "ok", "target_model": resolved.target_model}

    @app.on_event("shutdown")
    async def shutdown_cleanup() -> None:
        await app.state.upstream.aclose()

    return app


app = create_app()
