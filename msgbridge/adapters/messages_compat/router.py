"""Messages API compatible routes."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from msgbridge.adapters.messages_compat.mapper import (
    estimate_input_tokens,
    to_source_response,
    to_target_request,
)
from msgbridge.adapters.messages_compat.stream_utils import StreamTranscoder, _build_streaming_response
from msgbridge.adapters.messages_compat.upstream import UpstreamClient, _safe_error_detail
from msgbridge.config.settings import Settings
from msgbridge.core.errors import UpstreamError
from msgbridge.core.models import TargetRequest
from msgbridge.util.debug_excerpt import excerpt_payload
from msgbridge.util.logger import logger


router = APIRouter()

STATIC_MODELS = (
    "claude-opus-4-5-20250514",
    "claude-sonnet-4-20250514",
    "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku-20241022",
)
_UNPARSABLE_RESPONSE = "Failed to parse response"
_STREAM_TRUNCATED = "upstream stream ended before completion"


def error_response(status_code: int, error_type: str, message: str) -> JSONResponse:
    detail = (message or "").strip() or error_type
    return JSONResponse(
        status_code=status_code,
        content={"type": "error", "error": {"type": error_type, "message": detail}},
    )


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _upstream(request: Request) -> UpstreamClient:
    return request.app.state.upstream


def _presented_key(request: Request) -> str:
    raw = request.headers.get("x-api-key") or request.headers.get("authorization") or ""
    return raw.replace("Bearer ", "", 1).strip()


def _check_inbound_key(request: Request) -> JSONResponse | None:
    settings = _settings(request)
    if not settings.auth_enabled:
        return None
    if _presented_key(request) != settings.inbound_api_key:
        logger.warning("inbound api key rejected path=%s", request.url.path)
        return error_response(401, "authentication_error", "Invalid API key")
    return None


async def _read_json_object(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return error_response(400, "invalid_request_error", "Request body must be valid JSON")
    if not isinstance(payload, dict):
        return error_response(400, "invalid_request_error", "Request body must be a JSON object")
    return payload


def _requested_model(payload: dict[str, Any], settings: Settings) -> str:
    model = payload.get("model")
    return model if isinstance(model, str) and model else settings.target_model


def _log_request(request: Request, payload: dict[str, Any], target: TargetRequest, requested_model: str) -> None:
    settings = _settings(request)
    logger.info(
        "incoming request method=%s path=%s model=%s -> %s stream=%s messages=%d max_tokens=%d",
        request.method,
        request.url.path,
        requested_model,
        target.model,
        target.stream,
        len(target.messages),
        target.max_tokens,
    )
    if not logger.isEnabledFor(logging.DEBUG):
        return
    body = payload if settings.log_full_request_body else excerpt_payload(payload, settings.log_excerpt_max_chars)
    try:
        body_str = json.dumps(body, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        body_str = str(body)
    logger.debug("incoming request body:\n%s", body_str)


async def _execute_messages_stream(
    *,
    upstream: UpstreamClient,
    target: TargetRequest,
    requested_model: str,
) -> StreamingResponse:
    transcoder = StreamTranscoder(requested_model)
    upstream_payload = target.to_payload()

    async def transcoding_generator() -> AsyncGenerator[bytes, None]:
        for frame in transcoder.opening_events():
            yield frame
        try:
            async with aclosing(upstream.stream_bytes(upstream_payload)) as chunks:
                async for chunk in chunks:
                    for frame in transcoder.feed(chunk):
                        yield frame
                    if transcoder.finished:
                        break
            for frame in transcoder.flush():
                yield frame
            if not transcoder.finished:
                logger.warning("stream closed without [DONE] message_id=%s", transcoder.message_id)
                yield transcoder.error_event(_STREAM_TRUNCATED)
        except UpstreamError as exc:
            logger.error("stream upstream failure message_id=%s error=%s", transcoder.message_id, exc)
            yield transcoder.error_event(str(exc))
        finally:
            logger.info(
                "stream end message_id=%s output_tokens=%d model=%s",
                transcoder.message_id,
                transcoder.output_tokens,
                target.model,
            )

    return _build_streaming_response(transcoding_generator())


async def _execute_messages_once(
    *,
    upstream: UpstreamClient,
    target: TargetRequest,
    requested_model: str,
) -> JSONResponse:
    try:
        status_code, upstream_body = await upstream.post_json(target.to_payload())
    except UpstreamError as exc:
        logger.error("upstream unreachable error=%s", exc)
        return error_response(500, "api_error", str(exc))

    if not isinstance(upstream_body, dict):
        logger.error("upstream response is not a JSON object status=%s body=%s", status_code, upstream_body[:600])
        if status_code >= 400:
            return error_response(status_code, "api_error", _safe_error_detail(upstream_body))
        return error_response(500, "api_error", _UNPARSABLE_RESPONSE)

    if upstream_body.get("error") or status_code >= 400:
        detail = _safe_error_detail(upstream_body) if upstream_body.get("error") else ""
        logger.warning("upstream reported error status=%s detail=%s", status_code, detail)
        return error_response(status_code if status_code >= 400 else 500, "api_error", detail or "Upstream API error")

    source = to_source_response(upstream_body, requested_model)
    logger.info(
        "response id=%s stop_reason=%s blocks=%d usage=%s/%s",
        source.id,
        source.stop_reason,
        len(source.content),
        source.usage.input_tokens,
        source.usage.output_tokens,
    )
    return JSONResponse(content=source.model_dump())


@router.post("/messages")
async def messages(request: Request):
    rejected = _check_inbound_key(request)
    if rejected is not None:
        return rejected
    payload = await _read_json_object(request)
    if isinstance(payload, JSONResponse):
        return payload

    settings = _settings(request)
    requested_model = _requested_model(payload, settings)
    target = to_target_request(payload, settings.target_model)
    _log_request(request, payload, target, requested_model)

    if target.stream:
        return await _execute_messages_stream(
            upstream=_upstream(request),
            target=target,
            requested_model=requested_model,
        )
    return await _execute_messages_once(
        upstream=_upstream(request),
        target=target,
        requested_model=requested_model,
    )


@router.post("/messages/count_tokens")
async def count_tokens(request: Request):
    rejected = _check_inbound_key(request)
    if rejected is not None:
        return rejected
    payload = await _read_json_object(request)
    if isinstance(payload, JSONResponse):
        return payload
    return {"input_tokens": estimate_input_tokens(payload)}


@router.get("/models")
async def list_models(request: Request):
    rejected = _check_inbound_key(request)
    if rejected is not None:
        return rejected
    return {"data": [{"id": model_id, "object": "model"} for model_id in STATIC_MODELS]}
