"""Server-Sent Events 流式传输。

connect() 在握手成功后立即返回 EventStream，
之后每个服务端事件以原始字符串的形式按到达顺序逐个产出：

- `data:` 行累积，空行分发一个事件（多行 data 以 \\n 拼接）。
- `:` 开头的注释、event/id/retry 字段被忽略。
- 其它无法识别的行原样产出（"unparsed chunk"），由消费方决定如何处理。
- `data: [DONE]` 为结束哨兵；连接中途断开同样视为流结束，不抛异常。
"""

import threading
from typing import Any, Dict, Iterator, List, Mapping, Optional

import httpx

from chat_core.domain.exceptions import StreamConnectError
from chat_core.infrastructure.logging.logger import logger

DONE_SENTINEL = "[DONE]"
_IGNORED_FIELDS = ("event", "id", "retry")


class EventStream:
    """单次流式响应，独占一条 HTTP 连接。

    close() 可以从其它线程调用，用于打断阻塞中的读取。
    """

    def __init__(self, client: httpx.Client, response: httpx.Response, url: str):
        self._client = client
        self._response = response
        self._url = url
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self.completed = False

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[str]:
        data_lines: List[str] = []
        try:
            for raw in self._response.iter_lines():
                if self.closed:
                    return
                line = raw.rstrip("\r")
                if not line:
                    if data_lines:
                        event = "\n".join(data_lines)
                        data_lines = []
                        if event == DONE_SENTINEL:
                            self.completed = True
                            return
                        yield event
                    continue
                if line.startswith(":"):
                    continue
                field, sep, value = line.partition(":")
                if sep and field == "data":
                    data_lines.append(value[1:] if value.startswith(" ") else value)
                    continue
                if sep and field in _IGNORED_FIELDS:
                    continue
                logger.warning(
                    "Unparsed SSE line",
                    extra={"extra": {"url": self._url, "line": line[:200]}},
                )
                yield line
            # 服务端未以空行结尾时，把残留的 data 作为最后一个事件
            if data_lines and not self.closed:
                event = "\n".join(data_lines)
                if event == DONE_SENTINEL:
                    self.completed = True
                else:
                    yield event
        except (httpx.HTTPError, httpx.StreamError) as e:
            if not self.closed:
                logger.warning(
                    f"SSE stream dropped: {e}",
                    extra={"extra": {"url": self._url, "error": str(e)}},
                )
        finally:
            self.close()

    def close(self) -> None:
        # 消费方与 worker 可能同时调用，只允许一方真正关闭
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()
        try:
            self._response.close()
        finally:
            self._client.close()

    def __enter__(self) -> "EventStream":
        return self

    def __exit__(self, *args) -> bool:
        self.close()
        return False


class SSEClient:
    """基于 httpx 的 SSE 客户端。

    超时沿用 http_timeout：连接握手与两次事件之间的读取都受其约束，
    不会无限期阻塞。
    """

    def __init__(self, timeout: float):
        self._timeout = timeout

    def connect(
        self,
        url: str,
        headers: Mapping[str, str],
        body: Dict[str, Any],
    ) -> EventStream:
        client = httpx.Client(timeout=self._timeout, trust_env=False)
        response: Optional[httpx.Response] = None
        try:
            request = client.build_request("POST", url, json=body, headers=dict(headers))
            response = client.send(request, stream=True)
        except httpx.RequestError as e:
            client.close()
            raise StreamConnectError(
                code="STREAM_CONNECT_ERROR",
                message=f"Couldn't connect to {url}: {e}",
                url=url,
            ) from e
        if not 200 <= response.status_code < 300:
            try:
                detail = response.read().decode("utf-8", errors="replace")[:500]
            except httpx.HTTPError:
                detail = ""
            finally:
                response.close()
                client.close()
            raise StreamConnectError(
                code="STREAM_CONNECT_ERROR",
                message=f"Unexpected status {response.status_code} from {url}: {detail}",
                http_status=response.status_code,
                url=url,
            )
        logger.info("SSE stream opened", extra={"extra": {"url": url}})
        return EventStream(client, response, url)
