"""Access token 管理。

长期会话凭证（session token）不能直接访问对话端点，
需要先调用会话接口换取短期 access token：

1. 先查 TTL 缓存，命中直接返回，不访问网络。
2. 未命中时 GET /api/auth/session，通过 Cookie 携带会话凭证。
3. 解析 {error, expires, accessToken}，把后端的错误字符串
   统一翻译成 domain.exceptions 中的异常类型。
4. 成功后按后端给出的 expires 写入缓存。

并发场景下两个线程可能同时未命中并各自换取一次，
两次拿到的 token 同样有效，缓存以最后写入者为准。
"""

import json
import re
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from chat_core.domain.exceptions import (
    BackendError,
    BusinessError,
    MalformedResponseError,
    NetworkError,
    SessionExpiredError,
    UnauthorizedError,
)
from chat_core.domain.models import SessionResult
from chat_core.infrastructure.cache.ttl_cache import TTLCache
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import CHATGPT_CONFIG, BackendConfig

KEY_ACCESS_TOKEN = "accessToken"
REFRESH_ACCESS_TOKEN_ERROR = "RefreshAccessTokenError"
_FRACTION = re.compile(r"\.(\d+)")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_rfc3339(value: str) -> datetime:
    """解析 RFC3339 时间，必须带时区。

    fromisoformat 在 3.10 上只接受 3 或 6 位小数秒，且不认小写 t/z，先统一格式。
    """

    text = value.strip().upper().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp without offset: {value!r}")
    return parsed


class CredentialManager:
    """持有长期会话凭证，并负责换取、缓存 access token。"""

    def __init__(
        self,
        session_token: str,
        settings,
        cache: Optional[TTLCache] = None,
        backend: BackendConfig = CHATGPT_CONFIG,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._session_token = session_token
        self._settings = settings
        self._cache = cache if cache is not None else TTLCache()
        self._backend = backend.with_overrides(settings)
        self._now = now

    @property
    def user_agent(self) -> str:
        return self._settings.user_agent

    def get_access_token(self) -> str:
        cached, ok = self._cache.get(KEY_ACCESS_TOKEN)
        if ok:
            return cached

        result = self._fetch_session()
        self._check_result(result)
        try:
            expires_at = parse_rfc3339(result.expires)
        except ValueError as e:
            raise MalformedResponseError(
                code="MALFORMED_RESPONSE",
                message=f"Failed to parse expiry time {result.expires!r}: {e}",
            ) from e

        # ttl <= 0 时条目立即过期，下次调用会重新换取
        ttl = expires_at - self._now()
        self._cache.set(KEY_ACCESS_TOKEN, result.access_token, ttl)
        logger.info(
            "Access token refreshed",
            extra={"extra": {"expires": result.expires, "ttl_seconds": int(ttl.total_seconds())}},
        )
        return result.access_token

    def is_authenticated(self) -> bool:
        try:
            self.get_access_token()
        except BusinessError as e:
            logger.info(f"Not authenticated: {e.code}", extra={"extra": {"code": e.code}})
            return False
        return True

    def ensure_authenticated(self) -> None:
        self.get_access_token()

    def invalidate(self) -> None:
        """丢弃缓存的 access token，例如对话端点返回 401 时。"""

        self._cache.delete(KEY_ACCESS_TOKEN)

    def _fetch_session(self) -> SessionResult:
        headers = {
            "User-Agent": self.user_agent,
            "Cookie": f"{self._backend.session_cookie}={self._session_token}",
        }
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.get(self._backend.session_url, headers=headers)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=f"Failed to perform request: {e}") from e
        try:
            data = json.loads(resp.text)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                code="MALFORMED_RESPONSE",
                message=f"Failed to decode response: {e}",
                http_status=resp.status_code,
            ) from e
        if not isinstance(data, dict):
            raise MalformedResponseError(
                code="MALFORMED_RESPONSE",
                message="Session response is not a JSON object",
                http_status=resp.status_code,
            )
        return SessionResult.from_payload(data)

    @staticmethod
    def _check_result(result: SessionResult) -> None:
        """后端错误字符串只在这里做比较。"""

        if result.error == REFRESH_ACCESS_TOKEN_ERROR:
            raise SessionExpiredError(
                code="SESSION_EXPIRED",
                message="Session token has expired",
                http_status=401,
            )
        if result.error:
            raise BackendError(code="BACKEND_ERROR", message=result.error, http_status=502)
        if not result.access_token:
            raise UnauthorizedError(code="UNAUTHORIZED", message="unauthorized", http_status=401)
