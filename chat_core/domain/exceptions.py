"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或调用方做统一捕获与用户提示。

错误分两类：
- 凭证换取阶段：UnauthorizedError / SessionExpiredError / BackendError / MalformedResponseError。
- 连接阶段：StreamConnectError（传输层）以及对话客户端包装后的
  AuthenticationFailedError / ConnectionFailedError。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "SESSION_EXPIRED"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 url、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class UnauthorizedError(BusinessError):
    """会话接口没有返回 access token，且没有给出明确错误。"""


class SessionExpiredError(BusinessError):
    """后端明确宣告长期会话凭证失效，只能重新走一次登录获取新凭证。"""


class BackendError(BusinessError):
    """后端返回的其他错误字符串，message 原样透传。"""


class MalformedResponseError(BusinessError):
    """响应体不是合法 JSON，或 expires 不是合法的 RFC3339 时间。"""


class NetworkError(BusinessError):
    """网络层错误，例如 DNS 失败、连接超时等。"""


class StreamConnectError(NetworkError):
    """建立流式连接失败（含握手阶段返回非 2xx 状态码）。"""


class _WrappedError(BusinessError):
    """包装下游错误，原始异常保存在 cause 上。"""

    def __init__(self, code: str, message: str, cause: Optional[BaseException] = None, **extra):
        http_status = extra.pop("http_status", None)
        if http_status is None:
            http_status = cause.http_status if isinstance(cause, BusinessError) else 400
        super().__init__(code=code, message=message, http_status=http_status, **extra)
        self.cause = cause


class AuthenticationFailedError(_WrappedError):
    """获取 access token 失败，尚未尝试建立连接。"""


class ConnectionFailedError(_WrappedError):
    """已拿到 access token，但连接对话端点失败。"""
