import json

import pytest

from gemini_core.providers.stream import StreamDecoder, extract_text


def sse_event(text):
    doc = {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}
    return ("data: " + json.dumps(doc, ensure_ascii=False) + "\r\n\r\n").encode("utf-8")


STREAM = b"".join(sse_event(t) for t in ["Hello", ", ", "wörld", " 你好", "!"])


def decode(chunks):
    emitted = []
    decoder = StreamDecoder(emitted.append)
    for chunk in chunks:
        decoder.feed(chunk)
    return emitted, decoder.take_response()


def test_single_byte_chunks_match_single_chunk():
    one_emitted, one_text = decode([STREAM])
    byte_emitted, byte_text = decode([STREAM[i:i + 1] for i in range(len(STREAM))])
    assert one_emitted == ["Hello", ", ", "wörld", " 你好", "!"]
    assert byte_emitted == one_emitted
    assert byte_text == one_text == "Hello, wörld 你好!"


def test_chunk_boundary_inside_line():
    decoder = StreamDecoder()
    assert decoder.feed(b'data: {"candidates"') == 0
    assert decoder.pending_bytes > 0
    assert decoder.feed(b':[{"content":{"parts":[{"text":"hi"}]}}]}\n') == 1
    assert decoder.pending_bytes == 0
    assert decoder.take_response() == "hi"


def test_malformed_and_foreign_lines_are_skipped():
    lines = [
        b": keep-alive\n",
        b"\n",
        b"event: message\n",
        b"data: not-json\n",
        b'data: {"candidates": []}\n',
        b'data: {"promptFeedback": {"blockReason": "SAFETY"}}\n',
        b'data: {"candidates": [{"content": {"parts": [{"inlineData": {}}]}}]}\n',
        b'data: {"candidates": [{"finishReason": "STOP"}]}\n',
        b"data: \xff\xfe\n",
        b'data:{"candidates": [{"content": {"parts": [{"text": "no space"}]}}]}\n',
        sse_event("ok"),
    ]
    emitted, text = decode(lines)
    assert emitted == ["ok"]
    assert text == "ok"


def test_multibyte_character_split_across_chunks():
    event = sse_event("€")
    split = event.index("€".encode("utf-8")) + 1
    emitted, text = decode([event[:split], event[split:]])
    assert emitted == ["€"]
    assert text == "€"


def test_incomplete_tail_is_not_emitted():
    decoder = StreamDecoder()
    decoder.feed(sse_event("a") + b'data: {"candidates": [{"content": {"parts": [{"text": "b"}]}}]}')
    assert decoder.take_response() == "a"


def test_response_handed_off_once():
    decoder = StreamDecoder()
    decoder.feed(sse_event("x"))
    assert decoder.take_response() == "x"
    with pytest.raises(RuntimeError):
        decoder.take_response()
    with pytest.raises(RuntimeError):
        decoder.feed(sse_event("y"))


def test_discard_drops_accumulated_text():
    decoder = StreamDecoder()
    decoder.feed(sse_event("partial") + b"data: {")
    decoder.discard()
    assert decoder.pending_bytes == 0
    assert decoder.text == ""


def test_extract_text_requires_string():
    assert extract_text({"candidates": [{"content": {"parts": [{"text": 5}]}}]}) is None
    assert extract_text([]) is None
    assert extract_text({"candidates": [{"content": {"parts": [{"text": ""}]}}]}) == ""
