import threading

import pytest

from chat_core.api import service
from chat_core.domain.exceptions import AuthenticationFailedError, SessionExpiredError
from chat_core.domain.models import ResponseFragment
from chat_core.providers.response_stream import ResponseStream


class FakeEvents:
    def __init__(self, chunks, completed=True):
        self._chunks = list(chunks)
        self.completed = False
        self._final = completed
        self.closed = threading.Event()

    def __iter__(self):
        for chunk in self._chunks:
            yield chunk
        self.completed = self._final

    def close(self):
        self.closed.set()


class FakeClient:
    name = "fake"

    def __init__(self, chunks=(), error=None):
        self._chunks = chunks
        self._error = error
        self.calls = []

    def send_message(self, message, conversation_id=None, parent_message_id=None):
        self.calls.append((message, conversation_id, parent_message_id))
        if self._error is not None:
            raise self._error
        return ResponseStream(FakeEvents(self._chunks), poll_interval=0.01).start()

    def is_authenticated(self):
        return self._error is None

    def ensure_authenticated(self):
        if self._error is not None:
            raise self._error


def _chunk(text):
    return '{"conversation_id": "c1", "message": {"id": "m1", "content": {"parts": ["%s"]}}}' % text


def test_ask_returns_final_reply(monkeypatch):
    fake = FakeClient([_chunk("He"), _chunk("Hello")])
    monkeypatch.setattr(service, "_client", fake)
    res = service.ask("hi", "c1", "m0")
    assert res == {"conversation_id": "c1", "message_id": "m1", "message": "Hello", "completed": True}
    assert fake.calls == [("hi", "c1", "m0")]


def test_ask_without_content(monkeypatch):
    monkeypatch.setattr(service, "_client", FakeClient([]))
    res = service.ask("hi", "c7")
    assert res["message"] == ""
    assert res["conversation_id"] == "c7"


def test_stream_reply_yields_dicts(monkeypatch):
    monkeypatch.setattr(service, "_client", FakeClient([_chunk("a"), _chunk("ab")]))
    assert [d["message"] for d in service.stream_reply("hi")] == ["a", "ab"]


def test_ask_propagates_errors(monkeypatch):
    cause = SessionExpiredError(code="SESSION_EXPIRED", message="expired")
    err = AuthenticationFailedError(code="AUTHENTICATION_FAILED", message="no token", cause=cause)
    monkeypatch.setattr(service, "_client", FakeClient(error=err))
    with pytest.raises(AuthenticationFailedError):
        service.ask("hi")
    assert service.is_authenticated() is False
    with pytest.raises(AuthenticationFailedError):
        service.ensure_authenticated()


def test_response_stream_order_is_preserved():
    chunks = [_chunk("x" * i) for i in range(1, 30)]
    stream = ResponseStream(FakeEvents(chunks), buffer_size=4, poll_interval=0.01).start()
    got = list(stream)
    assert got == [ResponseFragment("x" * i, "m1", "c1") for i in range(1, 30)]
    assert stream.join(timeout=2)


def test_finished_stream_can_be_iterated_again():
    stream = ResponseStream(FakeEvents([_chunk("Hi")]), poll_interval=0.01).start()
    assert [f.message for f in stream] == ["Hi"]
    result = {}

    def consume():
        result["second"] = list(stream)
        result["last"] = stream.last()

    t = threading.Thread(target=consume)
    t.start()
    t.join(timeout=3)
    assert not t.is_alive()
    assert result == {"second": [], "last": None}
