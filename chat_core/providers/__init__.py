"""对话后端集成层。

该包下的模块负责：
- 定义会话凭证来源与客户端协议 (base)。
- 维护后端端点配置 (registry)。
- 换取与缓存 access token (credentials)。
- 具体后端实现 (chatgpt_client) 与响应通道 (response_stream)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.infrastructure.cache.ttl_cache import TTLCache
from chat_core.providers.base import SessionProvider, StaticSessionProvider
from chat_core.providers.chatgpt_client import ChatGPTClient
from chat_core.providers.credentials import CredentialManager
from chat_core.providers.registry import get_backend_config


def create_client(
    name: str = "chatgpt",
    session_provider: Optional[SessionProvider] = None,
) -> ChatGPTClient:
    """根据配置创建客户端，默认从 settings.openai_session 读取会话凭证。"""

    backend = get_backend_config(name)
    provider = session_provider or StaticSessionProvider(settings.openai_session)
    credentials = CredentialManager(
        provider.get_session(),
        settings,
        cache=TTLCache(),
        backend=backend,
    )
    return ChatGPTClient(settings, credentials, backend=backend)
