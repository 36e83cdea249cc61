"""
日志用正文摘要：system 与 message 的长字符串统一截断，只展示开头部分。
本模块只做截断与格式化，是否打印由调用方按日志级别决定。
"""

from __future__ import annotations

import copy
from typing import Any

DEFAULT_EXCERPT_MAX_LEN = 500
_TRUNCATED_SUFFIX = "... [TRUNCATED]"


def excerpt_for_debug(text: str, max_len: int = DEFAULT_EXCERPT_MAX_LEN) -> str:
    """Cut ``text`` to ``max_len`` characters, marking the cut. Never mutates input."""
    if not text:
        return ""
    s = str(text)
    if max_len <= 0 or len(s) <= max_len:
        return s
    return f"{s[:max_len]}{_TRUNCATED_SUFFIX}"


def excerpt_payload(payload: dict[str, Any], max_len: int = DEFAULT_EXCERPT_MAX_LEN) -> dict[str, Any]:
    """Copy of an inbound request with long system/message strings truncated."""
    clipped = copy.deepcopy(payload)
    system = clipped.get("system")
    if isinstance(system, str):
        clipped["system"] = excerpt_for_debug(system, max_len=max_len)
    messages = clipped.get("messages")
    if isinstance(messages, list):
        for message in messages:
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                message["content"] = excerpt_for_debug(message["content"], max_len=max_len)
    return clipped
