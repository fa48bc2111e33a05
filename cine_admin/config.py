"""Configuration management for cine-admin."""

import os
from typing import Any, Dict, Optional

import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .utils.error_handling import ConfigurationError

ENV_URL = "SUPABASE_URL"
ENV_ANON_KEY = "SUPABASE_ANON_KEY"
ENV_LOG_LEVEL = "CINE_ADMIN_LOG_LEVEL"


def _expand(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    return os.path.expanduser(os.path.expandvars(value))


class RemoteConfig(BaseModel):
    """Configuration for the hosted database."""

    url: str = Field(default="", description="Project URL, e.g. https://xyz.supabase.co")
    anon_key: str = Field(default="", repr=False)
    schema_name: str = Field(default="public", alias="schema")
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.strip().rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)


class RealtimeConfig(BaseModel):
    """Configuration for the change feed."""

    enabled: bool = Field(default=True)
    debounce_ms: int = Field(
        default=250,
        ge=0,
        le=60_000,
        description="Collapse bursts of notifications into one refresh (0 disables)",
    )
    heartbeat_seconds: float = Field(default=25.0, gt=0, le=300)
    reconnect_seconds: int = Field(default=5, ge=1, le=300)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


class StorageConfig(BaseModel):
    """Configuration for local persisted state."""

    state_db_path: str = Field(
        default="~/.cache/cine-admin/state.duckdb",
        description="DuckDB file holding the local session keys",
    )

    @field_validator("state_db_path")
    @classmethod
    def expand_db_path(cls, v):
        """Expand user paths and environment variables."""
        return _expand(v)


class UIConfig(BaseModel):
    """Configuration for UI appearance."""

    table_style: str = Field(default="rich", pattern="^(rich|simple|minimal)$")
    max_rows: int = Field(default=200, ge=1, le=10_000)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(
        default="WARNING", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$"
    )
    file: Optional[str] = Field(default=None, description="Rotating log file")

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return str(v).upper()

    @field_validator("file")
    @classmethod
    def expand_file(cls, v):
        return _expand(v)


class AuthConfig(BaseModel):
    """Configuration for the admin guard."""

    require_admin: bool = Field(
        default=True,
        description="Resource commands need a logged in administrator",
    )


class Config(BaseModel):
    """Main configuration class."""

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)


class ConfigManager:
    """Manages configuration loading and access."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, searches standard locations.
            environ: Environment used for overrides (default: os.environ)
        """
        self.config_path = config_path or self._find_config_file()
        self._environ = environ if environ is not None else os.environ
        self._config: Optional[Config] = None

    def _find_config_file(self) -> str:
        """Find configuration file in standard locations."""
        search_paths = [
            "cine_admin.toml",
            os.path.expanduser("~/.config/cine-admin/config.toml"),
            os.path.join(os.path.dirname(__file__), "config.toml"),
        ]

        for path in search_paths:
            if os.path.exists(path):
                return path

        # Return default path even if it doesn't exist
        return search_paths[-1]

    @property
    def config(self) -> Config:
        """Get configuration, loading if necessary."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> Config:
        """Load configuration from TOML file, then apply environment overrides."""
        data: Dict[str, Any] = {}
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    data = toml.load(f)
            except toml.TomlDecodeError as e:
                raise ConfigurationError(
                    f"Invalid configuration file {self.config_path}: {e}"
                )

        self._apply_environment(data)

        try:
            return Config(**data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration file {self.config_path}: {e}"
            )

    def _apply_environment(self, data: Dict[str, Any]) -> None:
        remote = data.setdefault("remote", {})
        if self._environ.get(ENV_URL):
            remote["url"] = self._environ[ENV_URL]
        if self._environ.get(ENV_ANON_KEY):
            remote["anon_key"] = self._environ[ENV_ANON_KEY]
        if self._environ.get(ENV_LOG_LEVEL):
            data.setdefault("logging", {})["level"] = self._environ[ENV_LOG_LEVEL]

    def require_remote(self) -> RemoteConfig:
        """Remote settings, failing when URL or key is missing.

        Raises:
            ConfigurationError: URL or API key not configured
        """
        remote = self.config.remote
        if not remote.configured:
            raise ConfigurationError(
                f"Set remote.url and remote.anon_key in {self.config_path} "
                f"or the {ENV_URL} / {ENV_ANON_KEY} environment variables"
            )
        return remote

    def reload(self):
        """Reload configuration."""
        self._config = None
