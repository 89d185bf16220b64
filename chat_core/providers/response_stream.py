"""单轮对话的响应通道。

一个 worker 线程消费 EventStream，把解析出的 ResponseFragment
放进有界队列；调用方在主线程迭代 ResponseStream 取片段。

约定：
- 片段按解析顺序交付，不重排。
- 队列只关闭一次（放入结束标记），无论流是正常结束、断开还是被取消。
- 调用方可随时 close()；worker 放片段时会周期性检查取消信号，
  不会因为没人读而永久阻塞，底层连接也会随之释放。
"""

import json
import queue
import threading
from typing import Callable, Iterator, Optional

from chat_core.domain.models import MessageResponse, ResponseFragment
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.transport.sse_client import EventStream

_CLOSED = object()


def parse_event(chunk: str) -> Optional[ResponseFragment]:
    """把一个原始事件解析成 ResponseFragment。

    JSON 结构不对时抛 ValueError；结构正确但没有正文时返回 None。
    """

    data = json.loads(chunk)
    if not isinstance(data, dict):
        raise ValueError("message response is not a JSON object")
    res = MessageResponse.from_payload(data)
    if res.error:
        logger.warning(
            "Backend reported error in stream",
            extra={"extra": {"conversation_id": res.conversation_id, "error": str(res.error)}},
        )
    return res.to_fragment()


class ResponseStream:
    """调用方可见的响应通道，可迭代、可取消。"""

    def __init__(
        self,
        events: EventStream,
        buffer_size: int = 1,
        poll_interval: float = 0.1,
        parser: Callable[[str], Optional[ResponseFragment]] = parse_event,
    ):
        self._events = events
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=buffer_size)
        self._poll_interval = poll_interval
        self._parser = parser
        self._cancelled = threading.Event()
        self._finished = threading.Event()
        self._drained = threading.Event()
        self._worker = threading.Thread(target=self._run, name="chat-response-worker", daemon=True)

    def start(self) -> "ResponseStream":
        self._worker.start()
        return self

    # ---- 调用方 ----

    def __iter__(self) -> Iterator[ResponseFragment]:
        try:
            while not self._drained.is_set():
                item = self._queue.get()
                if item is _CLOSED:
                    # 结束标记放回队列，其它读者同样立即结束
                    self._drained.set()
                    self._queue.put_nowait(_CLOSED)
                    return
                yield item
        finally:
            # 提前 break 视为放弃本轮
            if not self._finished.is_set():
                self.close()

    def last(self) -> Optional[ResponseFragment]:
        """读完整个流，返回最后一个片段（即完整回复）。"""

        final = None
        for fragment in self:
            final = fragment
        return final

    def close(self) -> None:
        """取消本轮：通知 worker 退出并释放底层连接。"""

        self._cancelled.set()
        self._events.close()

    def join(self, timeout: Optional[float] = None) -> bool:
        """等待 worker 结束，返回是否已结束。"""

        self._worker.join(timeout)
        return not self._worker.is_alive()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def completed(self) -> bool:
        """后端是否发送了结束哨兵（区分正常结束与中途断开）。"""

        return self._finished.is_set() and self._events.completed

    def __enter__(self) -> "ResponseStream":
        return self

    def __exit__(self, *args) -> bool:
        self.close()
        return False

    # ---- worker ----

    def _offer(self, item: object) -> bool:
        while not self._cancelled.is_set():
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def _run(self) -> None:
        delivered = 0
        try:
            for chunk in self._events:
                if self._cancelled.is_set():
                    break
                try:
                    fragment = self._parser(chunk)
                except ValueError as e:
                    # json.JSONDecodeError 也是 ValueError
                    logger.warning(
                        f"Couldn't unmarshal message response: {e}",
                        extra={"extra": {"chunk": chunk[:200]}},
                    )
                    continue
                if fragment is None:
                    continue
                if not self._offer(fragment):
                    break
                delivered += 1
        except Exception:
            if not self._cancelled.is_set():
                logger.exception("Response worker failed")
        finally:
            self._events.close()
            self._finished.set()
            self._close_queue()
            logger.info(
                "Response stream closed",
                extra={"extra": {
                    "fragments": delivered,
                    "cancelled": self._cancelled.is_set(),
                    "completed": self._events.completed,
                }},
            )

    def _close_queue(self) -> None:
        if self._offer(_CLOSED):
            return
        # 已取消：丢弃未读片段，保证仍在 get() 的读者也能看到结束标记
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._queue.put_nowait(_CLOSED)
