"""Client configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal
from urllib.parse import urlsplit, urlunsplit

import yaml
from pydantic import AnyUrl, Field, PositiveFloat, PositiveInt
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models import DEFAULT_EXPIRE_IN_SECONDS

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/planllama/client.yaml"),
    Path("/etc/planllama/client.yml"),
    Path("./config/client.yaml"),
    Path("./config/client.yml"),
)


class ClientSettings(BaseSettings):
    """Validated settings for the job-queue client."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="PLANLLAMA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection + identity
    api_token: str | None = Field(
        default=None,
        description="Customer API token presented when connecting.",
        repr=False,
    )
    server_url: AnyUrl = Field(
        default="http://localhost:3000",
        description="Base URL of the job-queue server.",
    )
    ws_path: str = Field(
        default="/ws",
        description="Path of the channel endpoint on the server.",
    )
    client_version: str = Field(
        default="0.1.0",
        description="Version advertised in the User-Agent header.",
    )
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Channel transport implementation to use.",
    )
    connect_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Seconds to wait for client_ready after start().",
    )
    request_timeout_seconds: PositiveFloat | None = Field(
        default=None,
        description="Optional bound on waiting for a server acknowledgement.",
    )

    # Execution
    default_expire_in_seconds: PositiveFloat = Field(
        default=DEFAULT_EXPIRE_IN_SECONDS,
        description="Deadline applied to pushed jobs that carry none.",
    )
    handler_exec_mode: Literal["auto", "inline", "thread"] = Field(
        default="auto",
        description="How handlers run: coroutines inline, plain callables in a worker thread.",
    )

    # Reliability
    reconnect_base_delay_seconds: float = Field(
        default=1.0,
        description="Base delay for transport reconnection backoff.",
    )
    reconnect_max_delay_seconds: float = Field(
        default=30.0,
        description="Maximum delay for transport reconnection backoff.",
    )
    reconnect_jitter: float = Field(
        default=0.2,
        description="Jitter factor applied to reconnection backoff (0.0-1.0).",
    )
    reconnect_abort_on_auth_error: bool = Field(
        default=True,
        description="Stop reconnecting when the server rejects the token.",
    )
    transport_recv_queue_max: PositiveInt | None = Field(
        default=None,
        description="Bound on buffered inbound frames (unbounded when unset).",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the client process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("ws_path")
    @classmethod
    def _normalize_ws_path(cls, value: str) -> str:
        if not value.startswith("/"):
            return f"/{value}"
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @property
    def ws_url(self) -> str:
        """Channel endpoint derived from ``server_url`` and ``ws_path``."""

        parts = urlsplit(str(self.server_url))
        scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
        return urlunsplit((scheme, parts.netloc, self.ws_path, "", ""))

    @property
    def user_agent(self) -> str:
        return f"planllama-client/{self.client_version}"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[ClientSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[ClientSettings] | None = None) -> Dict[str, Any]:
        candidates: Iterable[Path] = ClientSettings._resolve_candidate_paths()

        for path in candidates:
            data = ClientSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("PLANLLAMA_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise RuntimeError(f"Failed to read client config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid client config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Client config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> ClientSettings:
    """Return memoized client settings."""

    return ClientSettings()
