import json

from msgbridge.adapters.messages_compat.stream_utils import (
    StreamTranscoder,
    _extract_sse_data_payload,
    _stream_error_event,
)


def _parse_frames(frames: list[bytes]) -> list[tuple[str, dict]]:
    parsed = []
    for frame in frames:
        text = frame.decode("utf-8")
        assert text.endswith("\n\n")
        event_line, data_line = text[:-2].split("\n")
        assert event_line.startswith("event: ")
        assert data_line.startswith("data: ")
        parsed.append((event_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return parsed


def _delta_line(text: str) -> bytes:
    payload = {"id": "gen-1", "choices": [{"index": 0, "delta": {"content": text}}]}
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


def test_extract_sse_data_payload():
    assert _extract_sse_data_payload("data: [DONE]") == "[DONE]"
    assert _extract_sse_data_payload("data:{}\r") == "{}"
    assert _extract_sse_data_payload(": OPENROUTER PROCESSING") is None
    assert _extract_sse_data_payload("") is None


def test_opening_events_are_synthesized_before_any_upstream_data():
    transcoder = StreamTranscoder("claude-x", message_id="msg_fixed")

    events = _parse_frames(transcoder.opening_events())

    assert [name for name, _ in events] == ["message_start", "content_block_start"]
    message = events[0][1]["message"]
    assert message["id"] == "msg_fixed"
    assert message["model"] == "claude-x"
    assert message["role"] == "assistant"
    assert message["content"] == []
    assert message["stop_reason"] is None
    assert message["usage"] == {"input_tokens": 0, "output_tokens": 0}
    assert events[1][1] == {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}


def test_n_deltas_then_done_produce_exact_event_sequence():
    texts = ["Hello", ", ", "wörld", " 🌍", "\n"]
    transcoder = StreamTranscoder("claude-x")
    upstream = b"".join(_delta_line(text) for text in texts) + b"data: [DONE]\n\n"

    frames = transcoder.opening_events() + transcoder.feed(upstream)
    events = _parse_frames(frames)

    names = [name for name, _ in events]
    assert names == (
        ["message_start", "content_block_start"]
        + ["content_block_delta"] * len(texts)
        + ["content_block_stop", "message_delta", "message_stop"]
    )
    deltas = [payload for name, payload in events if name == "content_block_delta"]
    assert [d["delta"] for d in deltas] == [{"type": "text_delta", "text": text} for text in texts]
    assert all(d["index"] == 0 for d in deltas)
    assert events[-3][1] == {"type": "content_block_stop", "index": 0}
    assert events[-2][1] == {
        "type": "message_delta",
        "delta": {"stop_reason": "end_turn", "stop_sequence": None},
        "usage": {"output_tokens": len(texts)},
    }
    assert events[-1][1] == {"type": "message_stop"}
    assert transcoder.output_tokens == len(texts)
    assert transcoder.finished is True


def test_line_split_mid_object_is_recovered_on_next_chunk():
    transcoder = StreamTranscoder("claude-x")
    line = _delta_line("Hello there")
    cut = line.index(b"Hello") + 3

    first = transcoder.feed(line[:cut])
    second = transcoder.feed(line[cut:])

    assert first == []
    events = _parse_frames(second)
    assert len(events) == 1
    assert events[0][1]["delta"]["text"] == "Hello there"
    assert transcoder.output_tokens == 1


def test_multibyte_character_split_across_chunks():
    transcoder = StreamTranscoder("claude-x")
    line = 'data: {"choices":[{"delta":{"content":"café"}}]}\n'.encode("utf-8")
    cut = line.index("é".encode("utf-8")) + 1

    assert transcoder.feed(line[:cut]) == []
    events = _parse_frames(transcoder.feed(line[cut:]))

    assert events[0][1]["delta"]["text"] == "café"


def test_comments_blank_lines_and_non_text_deltas_are_ignored():
    transcoder = StreamTranscoder("claude-x")
    upstream = (
        b": OPENROUTER PROCESSING\n\n"
        b"event: ping\n"
        b'data: {"choices":[{"delta":{"role":"assistant","content":""}}]}\n\n'
        b'data: {"choices":[{"delta":{}, "finish_reason":"stop"}]}\n\n'
        b'data: {"choices":[]}\n\n'
    )

    assert transcoder.feed(upstream) == []
    assert transcoder.output_tokens == 0
    assert transcoder.finished is False


def test_malformed_complete_line_is_dropped():
    transcoder = StreamTranscoder("claude-x")
    frames = transcoder.feed(b"data: {not json}\n" + _delta_line("ok"))
    events = _parse_frames(frames)
    assert [payload["delta"]["text"] for _, payload in events] == ["ok"]


def test_crlf_line_endings_are_accepted():
    transcoder = StreamTranscoder("claude-x")
    frames = transcoder.feed(b'data: {"choices":[{"delta":{"content":"x"}}]}\r\n\r\ndata: [DONE]\r\n')
    names = [name for name, _ in _parse_frames(frames)]
    assert names == ["content_block_delta", "content_block_stop", "message_delta", "message_stop"]


def test_closing_sequence_is_emitted_once():
    transcoder = StreamTranscoder("claude-x")
    first = transcoder.feed(b"data: [DONE]\n\ndata: [DONE]\n\n")
    later = transcoder.feed(_delta_line("late") + b"data: [DONE]\n\n")

    assert [name for name, _ in _parse_frames(first)] == ["content_block_stop", "message_delta", "message_stop"]
    assert later == []
    assert transcoder.closing_events() == []
    assert transcoder.flush() == []


def test_flush_processes_final_line_without_newline():
    transcoder = StreamTranscoder("claude-x")
    assert transcoder.feed(_delta_line("tail") + b"data: [DONE]")[0].startswith(b"event: content_block_delta")
    assert transcoder.finished is False

    names = [name for name, _ in _parse_frames(transcoder.flush())]
    assert names == ["content_block_stop", "message_delta", "message_stop"]


def test_flush_with_empty_buffer_emits_nothing():
    transcoder = StreamTranscoder("claude-x")
    transcoder.feed(_delta_line("a"))
    assert transcoder.flush() == []
    assert transcoder.finished is False


def test_error_event_marks_stream_finished():
    transcoder = StreamTranscoder("claude-x")
    events = _parse_frames([transcoder.error_event("connect ECONNREFUSED")])

    assert events == [("error", {"type": "error", "error": {"type": "api_error", "message": "connect ECONNREFUSED"}})]
    assert transcoder.finished is True
    assert transcoder.feed(_delta_line("after")) == []


def test_stream_error_event_defaults_empty_message():
    events = _parse_frames([_stream_error_event("   ")])
    assert events[0][1]["error"]["message"] == "upstream_error"
