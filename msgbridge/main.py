"""Command-line entry: print the client setup banner and serve the gateway with uvicorn."""

from __future__ import annotations

import uvicorn

from msgbridge.config.settings import Settings, get_settings
from msgbridge.util.logger import logger

_RULE = "=" * 50


def startup_banner(settings: Settings) -> list[str]:
    base_url = f"http://{settings.host}:{settings.port}"
    client_key = settings.inbound_api_key if settings.auth_enabled else "any-value-works"
    return [
        _RULE,
        f"{settings.app_name} listening on {base_url}",
        f"Target model: {settings.target_model}",
        f"Upstream: {settings.upstream_url}",
        f"API key validation: {'enabled' if settings.auth_enabled else 'disabled'}",
        "Point Messages API clients at this gateway with:",
        f"  ANTHROPIC_BASE_URL={base_url}",
        f"  ANTHROPIC_API_KEY={client_key}",
        _RULE,
    ]


def main() -> None:
    settings = get_settings()
    if not settings.upstream_api_key:
        logger.warning("upstream api key is empty; backend calls will be rejected")
    for line in startup_banner(settings):
        logger.info(line)
    uvicorn.run(
        "msgbridge.core.gateway:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
