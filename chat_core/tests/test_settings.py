import pydantic
import pytest

from chat_core.config.settings import ChatSettings
from chat_core.providers.registry import CHATGPT_CONFIG


def test_settings_override_backend_urls():
    s = ChatSettings(openai_session="abcdefghijkl", base_url="https://example.com/")
    backend = CHATGPT_CONFIG.with_overrides(s)
    assert backend.session_url == "https://example.com/api/auth/session"
    assert backend.conversation_url == "https://example.com/backend-api/conversation"
    assert s.http_timeout >= 1.0


def test_short_session_token_rejected():
    with pytest.raises(pydantic.ValidationError):
        ChatSettings(openai_session="short")


def test_blank_session_token_is_none():
    assert ChatSettings(openai_session="   ").openai_session is None


def test_env_override(monkeypatch):
    monkeypatch.setenv("HTTP_TIMEOUT", "12.5")
    assert ChatSettings().http_timeout == 12.5
