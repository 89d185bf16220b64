"""后端端点配置。

把后端地址、会话/对话路径与默认模型集中在一处，
settings 中的同名字段可以覆盖这里的默认值。"""

from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class BackendConfig:
    """某个对话后端的整体配置。"""

    name: str
    base_url: str
    session_path: str
    conversation_path: str
    default_model: str
    session_cookie: str

    @property
    def session_url(self) -> str:
        return f"{self.base_url}{self.session_path}"

    @property
    def conversation_url(self) -> str:
        return f"{self.base_url}{self.conversation_path}"

    def with_overrides(self, cfg) -> "BackendConfig":
        """用 settings（或任意带同名属性的对象）覆盖默认值。"""

        return BackendConfig(
            name=self.name,
            base_url=(getattr(cfg, "base_url", None) or self.base_url).rstrip("/"),
            session_path=getattr(cfg, "session_path", None) or self.session_path,
            conversation_path=getattr(cfg, "conversation_path", None) or self.conversation_path,
            default_model=getattr(cfg, "model", None) or self.default_model,
            session_cookie=self.session_cookie,
        )


# ChatGPT 网页后端
CHATGPT_CONFIG = BackendConfig(
    name="chatgpt",
    base_url="https://chat.openai.com",
    session_path="/api/auth/session",
    conversation_path="/backend-api/conversation",
    default_model="text-davinci-002-render-sha",
    session_cookie="__Secure-next-auth.session-token",
)


BACKEND_REGISTRY: Mapping[str, BackendConfig] = {
    "chatgpt": CHATGPT_CONFIG,
}


def get_backend_config(name: str) -> BackendConfig:
    """根据名称获取 BackendConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in BACKEND_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown backend: {name!r}")
