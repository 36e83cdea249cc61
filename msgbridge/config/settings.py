"""Runtime settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MSGBRIDGE_",
        env_file=".env",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    app_name: str = "MsgBridge"
    log_level: str = "info"
    # DEBUG 下是否打印完整请求正文；False 时长字符串按 log_excerpt_max_chars 截断
    log_full_request_body: bool = False
    log_excerpt_max_chars: int = 500
    # 滚动日志目录；留空则只输出到 stderr
    log_dir: str = "logs"
    host: str = "127.0.0.1"
    port: int = 3456

    upstream_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("MSGBRIDGE_UPSTREAM_API_KEY", "OPENROUTER_API_KEY"),
    )
    upstream_base_url: str = "https://openrouter.ai/api/v1"
    upstream_path: str = "/chat/completions"
    upstream_referer: str = "https://msgbridge.local"
    upstream_timeout_seconds: float = Field(default=300.0, gt=0)
    target_model: str = "anthropic/claude-3.5-sonnet"

    # 为空时跳过入站校验
    inbound_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("MSGBRIDGE_INBOUND_API_KEY", "MOCK_API_KEY"),
    )

    @property
    def upstream_url(self) -> str:
        return f"{self.upstream_base_url.rstrip('/')}/{self.upstream_path.lstrip('/')}"

    @property
    def auth_enabled(self) -> bool:
        return bool(self.inbound_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
