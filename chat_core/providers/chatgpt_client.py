"""ChatGPT 网页后端对话客户端。

本模块负责单轮对话的编排：

1. 通过 CredentialManager 拿到 access token（失败则不建立连接）。
2. 构造请求头与请求体，调用 SSEClient 建立流式连接。
3. 启动 ResponseStream 的 worker，把事件解析为 ResponseFragment
   并交付给调用方。

连接建立之前的错误都同步抛出；连接建立之后，单个坏事件只记录日志，
不会中断整个对话。
"""

from typing import Any, Dict, Optional, Union
from uuid import uuid4

from chat_core.domain.exceptions import (
    AuthenticationFailedError,
    BusinessError,
    ConnectionFailedError,
    StreamConnectError,
)
from chat_core.domain.models import ConversationTurn
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.transport.sse_client import SSEClient
from chat_core.providers.credentials import CredentialManager
from chat_core.providers.registry import CHATGPT_CONFIG, BackendConfig
from chat_core.providers.response_stream import ResponseStream


class ChatGPTClient:
    """ChatGPT 对话客户端实现。

    - name: 后端名称（供日志/调试使用）。
    - send_message: 发送一轮对话，立即返回 ResponseStream。
    """

    name = "chatgpt"

    def __init__(
        self,
        settings,
        credentials: CredentialManager,
        transport: Optional[SSEClient] = None,
        backend: BackendConfig = CHATGPT_CONFIG,
    ):
        self._settings = settings
        self._credentials = credentials
        self._transport = transport or SSEClient(timeout=settings.http_timeout)
        self._backend = backend.with_overrides(settings)

    def is_authenticated(self) -> bool:
        return self._credentials.is_authenticated()

    def ensure_authenticated(self) -> None:
        self._credentials.ensure_authenticated()

    def send_message(
        self,
        message: Union[str, ConversationTurn],
        conversation_id: Optional[str] = None,
        parent_message_id: Optional[str] = None,
    ) -> ResponseStream:
        if isinstance(message, ConversationTurn):
            turn = message
        else:
            turn = ConversationTurn(
                message=message,
                conversation_id=conversation_id,
                parent_message_id=parent_message_id,
            )

        try:
            access_token = self._credentials.get_access_token()
        except BusinessError as e:
            raise AuthenticationFailedError(
                code="AUTHENTICATION_FAILED",
                message=f"Couldn't get access token: {e.message}",
                cause=e,
            ) from e

        headers = {
            "User-Agent": self._settings.user_agent,
            "Authorization": f"Bearer {access_token}",
            "Accept": "text/event-stream",
            "Content-Type": "application/json",
        }
        body = self._build_payload(turn)

        try:
            events = self._transport.connect(self._backend.conversation_url, headers, body)
        except StreamConnectError as e:
            if e.http_status in (401, 403):
                # token 被后端拒绝，下次调用重新换取
                self._credentials.invalidate()
            raise ConnectionFailedError(
                code="CONNECTION_FAILED",
                message=f"Couldn't connect to ChatGPT: {e.message}",
                cause=e,
            ) from e

        logger.info(
            "Conversation turn started",
            extra={"extra": {
                "conversation_id": turn.conversation_id,
                "parent_message_id": body["parent_message_id"],
            }},
        )
        stream = ResponseStream(
            events,
            buffer_size=self._settings.response_buffer,
            poll_interval=self._settings.stream_poll_interval,
        )
        return stream.start()

    def _build_payload(self, turn: ConversationTurn) -> Dict[str, Any]:
        """将 ConversationTurn 转成对话端点所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "action": "next",
            "messages": [
                {
                    "id": str(uuid4()),
                    "role": "user",
                    "content": {"content_type": "text", "parts": [turn.message]},
                }
            ],
            # 新会话没有父消息，后端要求仍然给一个 id
            "parent_message_id": turn.parent_message_id or str(uuid4()),
            "model": self._backend.default_model,
        }
        if turn.conversation_id:
            payload["conversation_id"] = turn.conversation_id
        return payload
