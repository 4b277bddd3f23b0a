from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ShellKind = Literal["auto", "cmd", "sh"]


class RuntimeConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BATCHDBG_", case_sensitive=False)

    shell: ShellKind = "auto"
    shell_executable: str | None = None
    encoding: str | None = None

    command_timeout: float = Field(default=30.0, gt=0)
    startup_timeout: float = Field(default=10.0, gt=0)
    timeout_retries: int = Field(default=0, ge=0)
    max_call_depth: int = Field(default=256, ge=1)
    stop_on_entry: bool = True
    transcript_limit: int = Field(default=2000, ge=0)

    log_level: str = "info"
    log_format: str = "json"
    log_dir: str | None = None


@lru_cache
def get_runtime_config() -> RuntimeConfig:
    return RuntimeConfig()
