"""对外 API 服务模块。

提供简化的函数接口供上层应用（如聊天机器人命令）调用。
"""

from dataclasses import asdict
from typing import Any, Dict, Iterator, Optional

from chat_core.infrastructure.logging.logger import logger
from chat_core.providers import create_client
from chat_core.providers.base import ChatBackend


_client: Optional[ChatBackend] = None


def get_default_client() -> ChatBackend:
    """获取默认的对话客户端实例（单例）。"""
    global _client
    if _client is None:
        _client = create_client()
    return _client


def is_authenticated() -> bool:
    """当前会话凭证能否换取 access token。"""
    return get_default_client().is_authenticated()


def ensure_authenticated() -> None:
    """同上，但失败时抛出具体的 domain.exceptions 异常。"""
    get_default_client().ensure_authenticated()


def stream_reply(
    message: str,
    conversation_id: Optional[str] = None,
    message_id: Optional[str] = None,
) -> Iterator[Dict[str, Any]]:
    """逐个产出回复快照，每项包含 message / message_id / conversation_id。"""
    stream = get_default_client().send_message(message, conversation_id, message_id)
    with stream:
        for fragment in stream:
            yield asdict(fragment)


def ask(
    message: str,
    conversation_id: Optional[str] = None,
    message_id: Optional[str] = None,
) -> Dict[str, Any]:
    """发送一轮对话并等待完整回复。
    
    Args:
        message: 用户输入内容
        conversation_id: 会话ID（可选，不提供则创建新会话）
        message_id: 上一条助手消息ID（可选，作为本轮的父消息）
    
    Returns:
        包含会话ID、助手消息ID、回复内容以及是否正常结束的字典
    
    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        stream = get_default_client().send_message(message, conversation_id, message_id)
        final = stream.last()
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "conversation_id": conversation_id,
            "error": str(e),
        }})
        raise

    return {
        "conversation_id": final.conversation_id if final else conversation_id,
        "message_id": final.message_id if final else None,
        "message": final.message if final else "",
        "completed": stream.completed,
    }
