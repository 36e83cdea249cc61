"""Messages API <-> chat-completions mapping."""

from __future__ import annotations

import json
import math
import uuid
from typing import Any

from msgbridge.core.models import (
    SourceResponse,
    SourceTextBlock,
    SourceToolUseBlock,
    SourceUsage,
    TargetFunction,
    TargetImagePart,
    TargetImageURL,
    TargetMessage,
    TargetPart,
    TargetRequest,
    TargetTextPart,
    TargetTool,
)
from msgbridge.util.logger import get_logger

logger = get_logger("mapper")

DEFAULT_MAX_TOKENS = 8192
DEFAULT_TEMPERATURE = 1
CHARS_PER_TOKEN = 4

_FINISH_REASON_MAP = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "length": "max_tokens",
}


def make_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _resolve_max_tokens(value: Any) -> int:
    # 小数会被截断，截断后不为正数时同样取默认值
    if _is_number(value) and int(value) > 0:
        return int(value)
    return DEFAULT_MAX_TOKENS


def _resolve_temperature(value: Any) -> float | int:
    # 0 是合法温度，只有缺省或非数字时才取默认值
    if _is_number(value):
        return value
    return DEFAULT_TEMPERATURE


def _resolve_top_p(value: Any) -> float | int | None:
    return value if _is_number(value) else None


def _system_text(system: Any) -> str | None:
    if isinstance(system, str):
        return system or None
    if isinstance(system, list):
        segments = [
            item["text"]
            for item in system
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
        ]
        return "\n".join(segments)
    return None


def _image_url(block: dict[str, Any]) -> str | None:
    source = block.get("source")
    if not isinstance(source, dict):
        return None
    if source.get("data"):
        return f"data:{source.get('media_type')};base64,{source['data']}"
    url = source.get("url")
    return url if isinstance(url, str) else None


def _tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    return json.dumps(content, ensure_ascii=False, separators=(",", ":"))


def _map_block(block: Any) -> TargetPart | None:
    if not isinstance(block, dict):
        return None
    block_type = block.get("type")
    if block_type == "text":
        text = block.get("text")
        return TargetTextPart(text=text if isinstance(text, str) else "")
    if block_type == "image":
        return TargetImagePart(image_url=TargetImageURL(url=_image_url(block)))
    if block_type == "tool_use":
        tool_input = block.get("input")
        rendered = json.dumps(tool_input if tool_input is not None else {}, ensure_ascii=False, indent=2)
        return TargetTextPart(text=f"[Tool Call: {block.get('name', '')}]\n{rendered}")
    if block_type == "tool_result":
        result_text = _tool_result_text(block.get("content"))
        return TargetTextPart(text=f"[Tool Result for {block.get('tool_use_id', '')}]\n{result_text}")
    logger.debug("skip unsupported content block type=%s", block_type)
    return None


def _collapse_parts(parts: list[TargetPart]) -> str | list[TargetPart]:
    if len(parts) == 1 and isinstance(parts[0], TargetTextPart):
        return parts[0].text
    if all(isinstance(part, TargetTextPart) for part in parts):
        return "\n".join(part.text for part in parts)
    return parts


def _map_message(item: Any) -> TargetMessage | None:
    if not isinstance(item, dict):
        return None
    role = "assistant" if item.get("role") == "assistant" else "user"
    content = item.get("content")
    if isinstance(content, str):
        return TargetMessage(role=role, content=content)
    if isinstance(content, list):
        parts = [part for part in (_map_block(block) for block in content) if part is not None]
        return TargetMessage(role=role, content=_collapse_parts(parts))
    logger.debug("skip message without usable content role=%s", role)
    return None


def _map_tools(tools: Any) -> list[TargetTool] | None:
    if not isinstance(tools, list):
        return None
    mapped = []
    for tool in tools:
        if not isinstance(tool, dict) or not isinstance(tool.get("name"), str):
            continue
        description = tool.get("description")
        schema = tool.get("input_schema")
        mapped.append(
            TargetTool(
                function=TargetFunction(
                    name=tool["name"],
                    description=description if isinstance(description, str) else None,
                    parameters=schema if isinstance(schema, dict) else None,
                )
            )
        )
    return mapped or None


def to_target_request(payload: dict[str, Any], target_model: str) -> TargetRequest:
    """Rewrite a Messages API request into a chat-completions request for ``target_model``.

    Never raises on malformed optional fields; they are treated as absent.
    An empty system string is dropped, but a system segment list always yields
    a system message, even when it has no text segments.
    """
    messages: list[TargetMessage] = []
    system_text = _system_text(payload.get("system"))
    if system_text is not None:
        messages.append(TargetMessage(role="system", content=system_text))

    raw_messages = payload.get("messages")
    for item in raw_messages if isinstance(raw_messages, list) else []:
        mapped = _map_message(item)
        if mapped is not None:
            messages.append(mapped)

    return TargetRequest(
        model=target_model,
        messages=messages,
        max_tokens=_resolve_max_tokens(payload.get("max_tokens")),
        temperature=_resolve_temperature(payload.get("temperature")),
        top_p=_resolve_top_p(payload.get("top_p")),
        stream=payload.get("stream") is True,
        tools=_map_tools(payload.get("tools")),
    )


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part["text"] for part in content if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return ""


def _parse_tool_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("tool_call arguments are not valid JSON, using empty input: %s", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _map_tool_call(call: Any) -> SourceToolUseBlock | None:
    if not isinstance(call, dict):
        return None
    function = call.get("function")
    if not isinstance(function, dict):
        function = {}
    call_id = call.get("id")
    name = function.get("name")
    return SourceToolUseBlock(
        id=call_id if isinstance(call_id, str) and call_id else f"toolu_{uuid.uuid4().hex[:24]}",
        name=name if isinstance(name, str) else "",
        input=_parse_tool_arguments(function.get("arguments")),
    )


def map_finish_reason(finish_reason: Any) -> str:
    if not isinstance(finish_reason, str):
        return "end_turn"
    return _FINISH_REASON_MAP.get(finish_reason, "end_turn")


def _token_count(usage: dict[str, Any], key: str) -> int:
    value = usage.get(key)
    return int(value) if _is_number(value) else 0


def to_source_response(body: dict[str, Any], requested_model: str) -> SourceResponse:
    """Rewrite a complete chat-completions response into a Messages API response.

    ``requested_model`` is echoed back so the backend substitution stays invisible.
    """
    choices = body.get("choices")
    first = choices[0] if isinstance(choices, list) and choices and isinstance(choices[0], dict) else {}
    message = first.get("message") if isinstance(first.get("message"), dict) else {}

    content: list[SourceTextBlock | SourceToolUseBlock] = []
    text = _message_text(message.get("content"))
    if text:
        content.append(SourceTextBlock(text=text))

    tool_calls = message.get("tool_calls")
    for call in tool_calls if isinstance(tool_calls, list) else []:
        block = _map_tool_call(call)
        if block is not None:
            content.append(block)

    if not content:
        content.append(SourceTextBlock(text=""))

    usage = body.get("usage") if isinstance(body.get("usage"), dict) else {}
    response_id = body.get("id")
    return SourceResponse(
        id=response_id if isinstance(response_id, str) and response_id else make_message_id(),
        model=requested_model,
        content=content,
        stop_reason=map_finish_reason(first.get("finish_reason")),
        stop_sequence=None,
        usage=SourceUsage(
            input_tokens=_token_count(usage, "prompt_tokens"),
            output_tokens=_token_count(usage, "completion_tokens"),
        ),
    )


def _compact_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def estimate_input_tokens(payload: dict[str, Any]) -> int:
    """Rough input size: one token per four characters of system and message content."""
    total_chars = 0
    system = payload.get("system")
    if isinstance(system, str):
        total_chars += len(system)
    elif system:
        total_chars += len(_compact_json(system))

    messages = payload.get("messages")
    for message in messages if isinstance(messages, list) else []:
        if not isinstance(message, dict):
            continue
        content = message.get("content")
        if isinstance(content, str):
            total_chars += len(content)
        elif content is not None:
            total_chars += len(_compact_json(content))
    return math.ceil(total_chars / CHARS_PER_TOKEN)
