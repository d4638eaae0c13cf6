import gzip
import io
import json

import pytest

from gemini_core.api.service import ChatSession
from gemini_core.domain.exceptions import ApiError, LocalResourceError, NetworkError, ValidationError
from gemini_core.domain.models import CallResult, GenerationParams
from gemini_core.providers.credentials import Credential, CredentialSet
from gemini_core.providers.gemini_client import GeminiClient
from gemini_core.providers.registry import Operation


class SettingsStub:
    attachment_limit = 4
    attachment_root = None
    thinking_budget_caps = {"flash": 16384}

    def generation_params(self):
        return GenerationParams(model="gemini-2.5-pro")


def sse(*texts):
    out = b""
    for t in texts:
        doc = {"candidates": [{"content": {"role": "model", "parts": [{"text": t}]}}]}
        out += b"data: " + json.dumps(doc).encode("utf-8") + b"\r\n\r\n"
    return out


class FakeClient:
    """按队列返回结果；流式调用时把 SSE 字节分段喂给 consumer。"""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def execute(self, operation, payload=None, consumer=None, *, model=None):
        doc = json.loads(gzip.decompress(payload)) if payload else None
        self.calls.append({"operation": operation, "doc": doc, "model": model})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, bytes):
            for i in range(0, len(outcome), 7):
                consumer(outcome[i:i + 7])
            return CallResult.success(None)
        return outcome


def make_session(*outcomes):
    return ChatSession(SettingsStub(), client=FakeClient(*outcomes))


def test_submit_appends_user_and_model_turns():
    session = make_session(sse("Hel", "lo!"))
    streamed = []
    result = session.submit("hi", sink=streamed.append)
    assert result.ok
    assert streamed == ["Hel", "lo!"]
    assert session.last_response == "Hello!"
    assert [t.role for t in session.conversation.turns] == ["user", "model"]
    assert session.conversation.turns[1].text == "Hello!"
    call = session.client.calls[0]
    assert call["operation"] is Operation.STREAM_GENERATE
    assert call["model"] == "gemini-2.5-pro"
    assert call["doc"]["contents"] == [{"role": "user", "parts": [{"text": "hi"}]}]


def test_failed_submit_rolls_back_user_turn():
    failure = CallResult.failure(NetworkError(code="ConnectError", message="refused"), attempts=1)
    session = make_session(sse("first"), failure)
    session.submit("one", sink=None)
    result = session.submit("two", sink=None)
    assert not result.ok
    assert result.kind == "transport"
    assert len(session.conversation) == 2
    assert session.conversation.last_turn.text == "first"
    assert session.last_response == "first"


def test_fatal_failure_after_partial_stream_discards_text():
    class PartialClient(FakeClient):
        def execute(self, operation, payload=None, consumer=None, *, model=None):
            consumer(sse("half"))
            return CallResult.failure(ApiError(code="API_ERROR", message="boom", http_status=500))

    session = ChatSession(SettingsStub(), client=PartialClient())
    result = session.submit("q", sink=None)
    assert result.kind == "fatal_service"
    assert len(session.conversation) == 0
    assert session.last_response is None


def test_pending_attachments_are_sent_before_text():
    session = make_session(sse("ok"))
    session.attach_stream(io.BytesIO(b"col1,col2\n1,2\n"), name="data.csv")
    session.submit("summarize", sink=None)
    parts = session.client.calls[0]["doc"]["contents"][0]["parts"]
    assert parts[0]["inlineData"]["mimeType"] == "text/plain"
    assert parts[1] == {"text": "summarize"}
    assert len(session.pending) == 0


def test_attachment_only_submit_is_allowed():
    session = make_session(sse("seen"))
    session.attach_stream(io.BytesIO(b"%PDF-1.4 fake"), name="doc.pdf")
    assert session.submit(sink=None).ok
    assert session.conversation.turns[0].parts[0].mime_type == "application/pdf"


def test_empty_submit_is_rejected():
    session = make_session()
    with pytest.raises(ValidationError) as exc:
        session.submit("", sink=None)
    assert exc.value.code == "EMPTY_PROMPT"
    assert len(session.conversation) == 0


def test_compression_failure_rolls_back(monkeypatch):
    def broken(_doc):
        raise LocalResourceError(code="COMPRESSION_FAILED", message="Failed to compress request payload.")

    monkeypatch.setattr("gemini_core.api.service.compress_payload", broken)
    session = make_session()
    result = session.submit("hi", sink=None)
    assert result.kind == "local_resource"
    assert result.status_code is None
    assert len(session.conversation) == 0
    assert session.client.calls == []


def test_count_tokens_includes_pending_without_storing():
    session = make_session(CallResult.success({"totalTokens": 123}))
    session.attach_stream(io.BytesIO(b"abc"), name="notes.txt")
    result = session.count_tokens()
    assert result.ok
    assert result.payload == 123
    doc = session.client.calls[0]["doc"]
    assert set(doc) == {"contents"}
    assert doc["contents"][0]["parts"][0]["inlineData"]["data"] == "YWJj"
    assert len(session.conversation) == 0
    assert len(session.pending) == 1


def test_count_tokens_missing_total_is_none():
    session = make_session(CallResult.success({}))
    session.set_system_instruction("sys")
    assert session.count_tokens().payload is None


def test_set_model_reclamps_thinking_budget():
    session = make_session()
    session.set_thinking_budget(32768)
    assert session.params.thinking_budget == 32768
    session.set_model("gemini-2.5-flash")
    assert session.params.thinking_budget == 16384
    session.set_thinking_budget(-1)
    assert session.params.thinking_budget == -1


def test_reset_clears_everything():
    session = make_session(sse("r"))
    session.set_system_instruction("be terse")
    session.submit("x", sink=None)
    session.attach_stream(io.BytesIO(b"y"), name="y.txt")
    session.reset()
    assert len(session.conversation) == 0
    assert session.conversation.system_instruction is None
    assert len(session.pending) == 0
    assert session.last_response is None


def test_history_save_and_load(tmp_path):
    session = make_session(sse("answer"))
    session.set_system_instruction("persona")
    session.submit("question", sink=None)
    path = session.save_history(tmp_path / "history.json")
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["systemInstruction"] == {"parts": [{"text": "persona"}]}

    other = make_session()
    loaded = other.load_history(path)
    assert [t.text for t in loaded.turns] == ["question", "answer"]
    assert other.conversation.system_instruction == "persona"


def test_load_keeps_current_system_instruction_when_file_has_none(tmp_path):
    path = tmp_path / "plain.json"
    path.write_text(json.dumps({"contents": [{"role": "user", "parts": [{"text": "q"}]}]}), encoding="utf-8")
    session = make_session()
    session.set_system_instruction("keep me")
    session.load_history(path)
    assert session.conversation.system_instruction == "keep me"
    assert len(session.conversation) == 1


def test_list_models_passthrough():
    session = make_session(CallResult.success({"models": []}))
    assert session.list_models().payload == {"models": []}
    assert session.client.calls[0]["operation"] is Operation.LIST_MODELS


def test_invalid_proxy_rolls_back_user_turn():
    class ClientCfg:
        http_timeout = 1.0
        gemini_base_url = "https://generativelanguage.googleapis.com/v1beta"
        keyless_base_url = gemini_base_url
        api_host = None
        proxy = "not-a-proxy-url"
        max_retries = 3
        default_model = "gemini-2.5-pro"
        gemini_api_key_origin = "default"

    client = GeminiClient(ClientCfg(), credentials=CredentialSet([Credential("key-0123456789")]))
    session = ChatSession(SettingsStub(), client=client)
    result = session.submit("hi", sink=None)
    assert result.kind == "transport"
    assert len(session.conversation) == 0


def test_sink_error_rolls_back_and_propagates():
    def closed_pipe(_text):
        raise BrokenPipeError("stdout closed")

    session = make_session(sse("never shown"))
    with pytest.raises(BrokenPipeError):
        session.submit("hi", sink=closed_pipe)
    assert len(session.conversation) == 0
    assert session.last_response is None
