"""
chat-completions SSE -> Messages API SSE 的增量转换与帧构建。
上游按任意字节边界分块到达，StreamTranscoder 负责跨块缓冲与事件序列。
"""

from __future__ import annotations

import codecs
import json
from typing import Any, AsyncIterable, Iterable

from fastapi.responses import StreamingResponse

from msgbridge.adapters.messages_compat.mapper import make_message_id
from msgbridge.core.models import SourceResponse
from msgbridge.util.logger import get_logger

logger = get_logger("stream")

DONE_SENTINEL = "[DONE]"
# 只输出一个文本块，index 固定为 0
TEXT_BLOCK_INDEX = 0


def _sse_event(event_type: str, payload: dict[str, Any]) -> bytes:
    return f"event: {event_type}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _stream_error_event(message: str) -> bytes:
    detail = (message or "upstream_error").strip() or "upstream_error"
    return _sse_event("error", {"type": "error", "error": {"type": "api_error", "message": detail}})


def _extract_sse_data_payload(line: str) -> str | None:
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return None
    return stripped[5:].strip()


def _extract_delta_text(event: Any) -> str:
    if not isinstance(event, dict):
        return ""
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return ""
    text = delta.get("content")
    return text if isinstance(text, str) else ""


class StreamTranscoder:
    """Re-frames one upstream chat-completions stream as Messages API events.

    Feed raw upstream bytes with :meth:`feed`; each call returns the frames that
    became complete. ``output_tokens`` counts delta events, not real tokens.
    """

    def __init__(self, requested_model: str, message_id: str | None = None) -> None:
        self.requested_model = requested_model
        self.message_id = message_id or make_message_id()
        self.output_tokens = 0
        self.finished = False
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def opening_events(self) -> list[bytes]:
        message = SourceResponse(id=self.message_id, model=self.requested_model)
        return [
            _sse_event("message_start", {"type": "message_start", "message": message.model_dump()}),
            _sse_event(
                "content_block_start",
                {
                    "type": "content_block_start",
                    "index": TEXT_BLOCK_INDEX,
                    "content_block": {"type": "text", "text": ""},
                },
            ),
        ]

    def feed(self, chunk: bytes) -> list[bytes]:
        if self.finished:
            return []
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._process_lines(lines)

    def flush(self) -> list[bytes]:
        """Process whatever is left once upstream closes (a last line without newline)."""
        if self.finished:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._process_lines([remainder]) if remainder.strip() else []

    def _process_lines(self, lines: Iterable[str]) -> list[bytes]:
        events: list[bytes] = []
        for line in lines:
            if self.finished:
                break
            data = _extract_sse_data_payload(line)
            if data is None:
                continue
            if data == DONE_SENTINEL:
                events.extend(self.closing_events())
                break
            try:
                parsed = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("drop unparsable stream line message_id=%s line=%s", self.message_id, data[:200])
                continue
            text = _extract_delta_text(parsed)
            if not text:
                continue
            self.output_tokens += 1
            events.append(
                _sse_event(
                    "content_block_delta",
                    {
                        "type": "content_block_delta",
                        "index": TEXT_BLOCK_INDEX,
                        "delta": {"type": "text_delta", "text": text},
                    },
                )
            )
        return events

    def closing_events(self) -> list[bytes]:
        if self.finished:
            return []
        self.finished = True
        return [
            _sse_event("content_block_stop", {"type": "content_block_stop", "index": TEXT_BLOCK_INDEX}),
            _sse_event(
                "message_delta",
                {
                    "type": "message_delta",
                    "delta": {"stop_reason": "end_turn", "stop_sequence": None},
                    "usage": {"output_tokens": self.output_tokens},
                },
            ),
            _sse_event("message_stop", {"type": "message_stop"}),
        ]

    def error_event(self, message: str) -> bytes:
        self.finished = True
        return _stream_error_event(message)


def _build_streaming_response(generator: Iterable[bytes] | AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
