"""
后端 chat-completions 的 HTTP 转发。从 router 拆出，便于维护与单测。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncGenerator

import httpx

from msgbridge.config.settings import Settings
from msgbridge.core.errors import UpstreamHTTPError, UpstreamUnavailableError
from msgbridge.util.logger import get_logger

logger = get_logger("upstream")


def _decode_json_or_text(body: bytes) -> dict[str, Any] | str:
    text = body.decode("utf-8", errors="replace")
    if not text:
        return ""
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
        return text
    except json.JSONDecodeError:
        return text


def _safe_error_detail(payload: dict[str, Any] | str) -> str:
    if isinstance(payload, str):
        return payload[:600]
    error = payload.get("error")
    if isinstance(error, str):
        return error[:600]
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"][:600]
    return json.dumps(payload, ensure_ascii=False)[:600]


def _transport_detail(exc: httpx.HTTPError) -> str:
    return (str(exc) or "").strip() or type(exc).__name__ or "connection_failed_or_timeout"


class UpstreamClient:
    """One configured chat-completions backend reached over httpx. No retries."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self.url = settings.upstream_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    def _timeout(self) -> httpx.Timeout:
        timeout = float(self.settings.upstream_timeout_seconds)
        return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)

    def build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.upstream_api_key}",
            "HTTP-Referer": self.settings.upstream_referer,
            "X-Title": self.settings.app_name,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self._timeout(), transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def post_json(self, payload: dict[str, Any]) -> tuple[int, dict[str, Any] | str]:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        logger.debug("post_json start url=%s payload_bytes=%d", self.url, len(body))
        client = await self._get_client()
        try:
            response = await client.post(self.url, content=body, headers=self.build_headers())
        except httpx.HTTPError as exc:
            detail = _transport_detail(exc)
            logger.warning("post_json http_error url=%s error=%s", self.url, detail)
            raise UpstreamUnavailableError(detail) from exc
        logger.debug("post_json done url=%s status=%s", self.url, response.status_code)
        return response.status_code, _decode_json_or_text(response.content)

    async def stream_bytes(self, payload: dict[str, Any]) -> AsyncGenerator[bytes, None]:
        """Yield raw upstream chunks as they arrive; line framing is left to the caller."""
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        logger.debug("stream start url=%s payload_bytes=%d", self.url, len(body))
        client = await self._get_client()
        try:
            async with client.stream("POST", self.url, content=body, headers=self.build_headers()) as resp:
                logger.debug("stream connected url=%s status=%s", self.url, resp.status_code)
                if resp.status_code >= 400:
                    detail = _safe_error_detail(_decode_json_or_text(await resp.aread()))
                    raise UpstreamHTTPError(resp.status_code, detail)
                async for chunk in resp.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as exc:
            detail = _transport_detail(exc)
            logger.warning("stream http_error url=%s error=%s", self.url, detail)
            raise UpstreamUnavailableError(detail) from exc
