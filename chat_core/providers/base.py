"""会话凭证来源与对话客户端协议。

长期会话凭证通常由浏览器登录流程获得，这一步不在本包内实现，
上层只需提供一个 SessionProvider，返回不透明的凭证字符串即可。
"""

from typing import Optional, Protocol, Union

from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import ConversationTurn


class SessionProvider(Protocol):
    """长期会话凭证来源。"""

    def get_session(self) -> str:
        ...


class StaticSessionProvider:
    """直接使用配置中的会话凭证。"""

    def __init__(self, session_token: Optional[str]):
        self._session_token = session_token

    def get_session(self) -> str:
        if not self._session_token:
            raise ValidationError(code="MISSING_SESSION_TOKEN", message="OPENAI_SESSION not set")
        return self._session_token


class ChatBackend(Protocol):
    """对话客户端协议，上层（api/service）只依赖这些方法。"""

    name: str

    def send_message(
        self,
        message: Union[str, ConversationTurn],
        conversation_id: Optional[str] = None,
        parent_message_id: Optional[str] = None,
    ):
        """发送一轮对话，返回可迭代的 ResponseStream。"""

        ...

    def is_authenticated(self) -> bool:
        ...

    def ensure_authenticated(self) -> None:
        ...
