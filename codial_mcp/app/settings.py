from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    server_name: str = "codial-mcp"
    server_version: str = "0.1.0"
    transport_type: Literal["stdio", "sse"] = "stdio"
    host: str = "127.0.0.1"
    port: int = 8080
    sse_endpoint: str = "/sse"
    messages_endpoint: str = "/messages"
    handshake_max_attempts: int = Field(default=10, ge=1)
    handshake_interval_seconds: float = Field(default=0.1, gt=0)
    # 0이면 liveness ping을 보내지 않아요.
    ping_interval_seconds: float = Field(default=1.0, ge=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    completion_page_size: int = Field(default=100, ge=1)
    stdio_line_limit_bytes: int = Field(default=16 * 1024 * 1024, ge=1024)
    log_level: str = "INFO"

    @field_validator("sse_endpoint", "messages_endpoint")
    @classmethod
    def _require_leading_slash(cls, value: str) -> str:
        """엔드포인트 경로는 항상 `/`로 시작하도록 맞춰요."""
        return value if value.startswith("/") else f"/{value}"


settings = Settings()
