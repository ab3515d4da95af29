# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Values are read once at startup; nothing here is reloaded at runtime.

import json

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Node-level switch. When off, /_sandbox/get answers with a plain
    # message and requests are forwarded without any rewriting.
    SANDBOX_ENABLED: bool = True

    # Persist sandboxes across restarts. When True, shutdown leaves the
    # tenant indices in place and ids are reloaded lazily on the first
    # request after startup.
    SANDBOX_PERSIST: bool = False

    # Header carrying the tenant token.
    SANDBOX_HEADER_NAME: str = "Sandbox"

    # Backend index holding one {"sandboxId": ...} document per
    # persisted sandbox.
    SANDBOX_REGISTRY_INDEX: str = "global_index_sandboxes"

    # Search backend every rewritten request is forwarded to.
    SEARCH_BACKEND_URL: str = "http://localhost:9200"
    SEARCH_BACKEND_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # The registry never waits on its own; the reload read gets this timeout.
    SANDBOX_RELOAD_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    LOG_LEVEL: str = "INFO"

    @field_validator("SEARCH_BACKEND_URL", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value):
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("SANDBOX_HEADER_NAME", mode="before")
    @classmethod
    def _default_header(cls, value):
        if isinstance(value, str) and not value.strip():
            return "Sandbox"
        return value


# Instantiate a single settings object for app-wide import.
# Any module can just `from app.core.config import settings`.
settings = Settings()
