"""Chat Core 顶层包。

该包提供对话后端的认证会话与流式问答能力，
包括配置加载、领域模型、access token 缓存、SSE 传输与对话客户端。
"""

from chat_core.providers import create_client
from chat_core.domain.models import ConversationTurn, ResponseFragment

__all__ = ["create_client", "ConversationTurn", "ResponseFragment"]
