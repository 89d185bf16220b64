import json
import threading

import httpx
import pytest

from chat_core.domain.exceptions import (
    AuthenticationFailedError,
    ConnectionFailedError,
    SessionExpiredError,
)
from chat_core.domain.models import ConversationTurn, ResponseFragment
from chat_core.providers.chatgpt_client import ChatGPTClient


class SettingsStub:
    http_timeout = 1.0
    user_agent = "UA/1.0"
    response_buffer = 1
    stream_poll_interval = 0.01


class FakeCredentials:
    def __init__(self, error=None):
        self.error = error
        self.invalidated = False

    def get_access_token(self):
        if self.error is not None:
            raise self.error
        return "tok"

    def is_authenticated(self):
        return self.error is None

    def ensure_authenticated(self):
        self.get_access_token()

    def invalidate(self):
        self.invalidated = True


def event(text, message_id="m1", conversation_id="c1"):
    parts = [text] if text is not None else []
    payload = {
        "message": {"id": message_id, "content": {"parts": parts}},
        "conversation_id": conversation_id,
        "error": None,
    }
    return [f"data: {json.dumps(payload)}", ""]


class FakeResponse:
    status_code = 200

    def __init__(self, lines):
        self._lines = list(lines)
        self.closed = threading.Event()

    def iter_lines(self):
        for line in self._lines:
            yield line

    def read(self):
        return b""

    def close(self):
        self.closed.set()


def install_client(monkeypatch, response):
    captured = {"connects": 0}

    class Client:
        def __init__(self, *a, **kw):
            pass

        def build_request(self, method, url, json=None, headers=None):
            captured.update(url=url, json=json, headers=headers)
            return object()

        def send(self, request, stream=False):
            captured["connects"] += 1
            return response

        def close(self):
            pass

    monkeypatch.setattr("httpx.Client", Client)
    return captured


def test_stream_yields_snapshots_and_skips_empty(monkeypatch):
    lines = event("Hi") + event(None) + event("Hi there") + ["data: [DONE]", ""]
    install_client(monkeypatch, FakeResponse(lines))
    client = ChatGPTClient(SettingsStub(), FakeCredentials())
    stream = client.send_message("hello")
    fragments = list(stream)
    assert fragments == [
        ResponseFragment(message="Hi", message_id="m1", conversation_id="c1"),
        ResponseFragment(message="Hi there", message_id="m1", conversation_id="c1"),
    ]
    assert stream.join(timeout=2)
    assert stream.completed is True


def test_malformed_chunk_does_not_end_stream(monkeypatch):
    lines = event("a") + ["data: {not json", ""] + ["data: [1, 2]", ""] + event("ab")
    install_client(monkeypatch, FakeResponse(lines))
    client = ChatGPTClient(SettingsStub(), FakeCredentials())
    stream = client.send_message("hello")
    assert [f.message for f in stream] == ["a", "ab"]
    # 没有结束哨兵：流关闭但不算正常完成
    assert stream.completed is False


def test_request_headers_and_body(monkeypatch):
    captured = install_client(monkeypatch, FakeResponse(["data: [DONE]", ""]))
    client = ChatGPTClient(SettingsStub(), FakeCredentials())
    client.send_message(ConversationTurn(message="hi", conversation_id="c9", parent_message_id="p9")).last()
    assert captured["url"] == "https://chat.openai.com/backend-api/conversation"
    assert captured["headers"]["Authorization"] == "Bearer tok"
    assert captured["headers"]["User-Agent"] == "UA/1.0"
    body = captured["json"]
    assert body["conversation_id"] == "c9"
    assert body["parent_message_id"] == "p9"
    assert body["messages"][0]["content"]["parts"] == ["hi"]


def test_new_conversation_omits_conversation_id(monkeypatch):
    captured = install_client(monkeypatch, FakeResponse(["data: [DONE]", ""]))
    client = ChatGPTClient(SettingsStub(), FakeCredentials())
    assert client.send_message("hi").last() is None
    body = captured["json"]
    assert "conversation_id" not in body
    assert body["parent_message_id"]


def test_auth_failure_prevents_connection(monkeypatch):
    captured = install_client(monkeypatch, FakeResponse([]))
    creds = FakeCredentials(error=SessionExpiredError(code="SESSION_EXPIRED", message="expired", http_status=401))
    client = ChatGPTClient(SettingsStub(), creds)
    with pytest.raises(AuthenticationFailedError) as ei:
        client.send_message("hi")
    assert isinstance(ei.value.cause, SessionExpiredError)
    assert ei.value.http_status == 401
    assert captured["connects"] == 0
    assert client.is_authenticated() is False


def test_connect_failure_is_wrapped(monkeypatch):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def build_request(self, *a, **kw):
            return object()

        def send(self, *a, **kw):
            raise httpx.ConnectTimeout("timed out")

        def close(self):
            pass

    monkeypatch.setattr("httpx.Client", Client)
    creds = FakeCredentials()
    client = ChatGPTClient(SettingsStub(), creds)
    with pytest.raises(ConnectionFailedError):
        client.send_message("hi")
    assert creds.invalidated is False


def test_rejected_token_is_invalidated(monkeypatch):
    resp = FakeResponse([])
    resp.status_code = 401
    install_client(monkeypatch, resp)
    creds = FakeCredentials()
    client = ChatGPTClient(SettingsStub(), creds)
    with pytest.raises(ConnectionFailedError) as ei:
        client.send_message("hi")
    assert ei.value.http_status == 401
    assert creds.invalidated is True


def test_cancel_releases_worker_without_remote_close(monkeypatch):
    class EndlessResponse(FakeResponse):
        def iter_lines(self):
            n = 0
            while not self.closed.is_set():
                n += 1
                for line in event("x" * n):
                    yield line

    resp = EndlessResponse([])
    install_client(monkeypatch, resp)
    client = ChatGPTClient(SettingsStub(), FakeCredentials())
    stream = client.send_message("hi")
    it = iter(stream)
    assert next(it).message == "x"
    stream.close()
    assert stream.join(timeout=2)
    assert resp.closed.is_set()
    assert stream.cancelled
    assert stream.completed is False


def test_break_out_of_loop_cancels(monkeypatch):
    class StalledResponse(FakeResponse):
        def iter_lines(self):
            yield from event("first")
            # 服务端不再发送数据，直到连接被关闭
            self.closed.wait(5)
            raise httpx.ReadError("closed")

    resp = StalledResponse([])
    install_client(monkeypatch, resp)
    client = ChatGPTClient(SettingsStub(), FakeCredentials())
    stream = client.send_message("hi")
    for fragment in stream:
        assert fragment.message == "first"
        break
    assert stream.join(timeout=2)
    assert resp.closed.is_set()
