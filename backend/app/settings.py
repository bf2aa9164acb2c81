############################################################
#
# switchyard - Messages API Translation Gateway
#
# settings.py: Application configuration and environment settings
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Application settings using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Per-user credential file shared with the ccx launcher
USER_ENV_FILE = Path.home() / ".claude-proxy" / ".env"


def _get_version() -> str:
    """Read version from installed package metadata, falling back to the package."""
    try:
        from importlib.metadata import version
        return version("switchyard")
    except Exception:
        pass
    try:
        from backend import __version__
        return __version__
    except Exception:
        return "0.0.0"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=(".env", str(USER_ENV_FILE)),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "switchyard"
    app_version: str = Field(default_factory=_get_version)
    debug: bool = False
    reload: bool = False

    # Listener (local only; no caller authentication)
    host: str = Field(
        default="127.0.0.1",
        validation_alias=AliasChoices("claude_proxy_host", "host"),
    )
    port: int = Field(
        default=17870,
        validation_alias=AliasChoices("claude_proxy_port", "port"),
    )

    # Native passthrough: Anthropic
    anthropic_api_key: Optional[str] = None
    anthropic_upstream_url: Optional[str] = None
    anthropic_version: str = "2023-06-01"

    # Native passthrough: GLM (Z.AI Anthropic-compatible endpoint)
    glm_upstream_url: Optional[str] = None
    glm_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("zai_api_key", "glm_api_key"),
    )

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"

    # OpenRouter
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_referer: Optional[str] = None
    openrouter_title: Optional[str] = "switchyard"

    # Gemini
    gemini_api_key: Optional[str] = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # Ollama (key only needed behind an authenticating proxy)
    ollama_base_url: Optional[str] = "http://localhost:11434"
    ollama_api_key: Optional[str] = None

    # Upstream I/O
    upstream_connect_timeout: float = 10.0
    upstream_idle_timeout: float = 120.0  # max seconds between upstream chunks
    upstream_write_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    # Observability
    metrics_enabled: bool = True

    @field_validator(
        "anthropic_upstream_url",
        "glm_upstream_url",
        "openai_base_url",
        "openrouter_base_url",
        "gemini_base_url",
        "ollama_base_url",
        mode="after",
    )
    @classmethod
    def strip_trailing_slash(cls, v):
        """Normalize base URLs so paths can be appended verbatim."""
        if isinstance(v, str):
            v = v.strip().rstrip("/")
            return v or None
        return v

    @field_validator(
        "anthropic_api_key",
        "glm_api_key",
        "openai_api_key",
        "openrouter_api_key",
        "gemini_api_key",
        "ollama_api_key",
        mode="after",
    )
    @classmethod
    def blank_key_is_missing(cls, v):
        """Treat empty keys from half-filled .env files as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
