"""统一的对话数据模型。

- ConversationTurn: 调用方发起的一轮对话输入。
- ResponseFragment: 助手回复在某一时刻的完整快照（不是增量 diff）。
- SessionResult / MessageResponse: 后端 JSON 的解析结果，
  只在 providers 层内部使用，负责把宽松的 JSON 收敛成固定字段。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ConversationTurn:
    """一轮对话请求。

    conversation_id / parent_message_id 均为空时表示开启新会话。
    """

    message: str
    conversation_id: Optional[str] = None
    parent_message_id: Optional[str] = None


@dataclass(frozen=True)
class ResponseFragment:
    """助手回复的一个快照。

    同一轮对话中连续的片段共享 message_id / conversation_id，
    message 单调增长，后一个片段整体替换前一个。
    """

    message: str
    message_id: str
    conversation_id: str


@dataclass
class SessionResult:
    """会话接口 /api/auth/session 的响应。"""

    error: str = ""
    expires: str = ""
    access_token: str = ""

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "SessionResult":
        return cls(
            error=str(data.get("error") or ""),
            expires=str(data.get("expires") or ""),
            access_token=str(data.get("accessToken") or ""),
        )


@dataclass
class MessageResponse:
    """对话流中单个事件的 JSON 结构。

    {"conversation_id": ..., "error": ..., "message": {"id": ..., "content": {"parts": [...]}}}
    """

    conversation_id: str = ""
    error: Optional[str] = None
    message_id: str = ""
    parts: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "MessageResponse":
        message = data.get("message") or {}
        if not isinstance(message, dict):
            raise ValueError("message is not an object")
        content = message.get("content") or {}
        if not isinstance(content, dict):
            raise ValueError("message.content is not an object")
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            raise ValueError("message.content.parts is not a list")
        return cls(
            conversation_id=str(data.get("conversation_id") or ""),
            error=data.get("error") or None,
            message_id=str(message.get("id") or ""),
            # parts 里可能混有非字符串（如多模态对象），只保留文本
            parts=[p for p in parts if isinstance(p, str)],
        )

    def to_fragment(self) -> Optional[ResponseFragment]:
        """至少有一段非空文本时才生成片段，否则返回 None。"""

        text = next((p for p in self.parts if p), None)
        if text is None:
            return None
        return ResponseFragment(
            message=text,
            message_id=self.message_id,
            conversation_id=self.conversation_id,
        )
