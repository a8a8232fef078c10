# pyright: reportExplicitAny=false, reportAny=false
"""Configuration models.

Every section is a frozen Pydantic model. Empty path strings mean "use
the default location under the relaybox home directory".
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relaybox.exceptions import ConfigError
from relaybox.kernel import (
    DEFAULT_LATEST_RELEASE_URL,
    DEFAULT_RECENT_RELEASES_URL,
    DEFAULT_USER_AGENT,
    Channel,
    binary_name,
    detect_platform,
)
from relaybox.supervisor import EngineConfig, SupervisorSettings
from relaybox.sysproxy import DEFAULT_BYPASS_LIST, DEFAULT_PROXY_HOST, DEFAULT_PROXY_PORT
from relaybox.utils import (
    get_download_cache_dir,
    get_engine_config_dir,
    get_kernel_dir,
    get_settings_db,
)

from ._loader import deep_merge, parse_env_vars, read_toml_file


class LogLevel(StrEnum):
    """Log level threshold values."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


class ConfigSourceName(StrEnum):
    """Configuration source names, highest precedence first."""

    CLI = "cli"
    ENV = "env"
    FILE = "file"
    USER = "user"
    DEFAULT = "default"


@dataclass(frozen=True, slots=True)
class ConfigSource:
    """A configuration source that contributed values.

    Attributes:
        name: The source type identifier.
        path: Path to the config file, or None for non-file sources.
        values: Configuration values from this source.
    """

    name: ConfigSourceName
    path: Path | None
    values: dict[str, Any]


class EngineSection(BaseModel):
    """Engine process settings.

    Attributes:
        channel: Installed channel whose binary is run when
            executable_path is empty.
        executable_path: Engine binary; empty uses the channel binary.
        config_directory: Where inline engine config is written.
        working_directory: Working directory of the engine process.
        control_api_host: Control API host.
        control_api_port: Control API port.
        control_api_secret: Control API bearer secret.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    channel: Channel = Channel.STABLE
    executable_path: str = ""
    config_directory: str = ""
    working_directory: str = ""
    control_api_host: str = "127.0.0.1"
    control_api_port: int = Field(default=9090, gt=0, lt=65536)
    control_api_secret: str = ""
    settle_delay: float = Field(default=0.3, ge=0)
    probe_interval: float = Field(default=0.2, gt=0)
    probe_timeout: float = Field(default=3.0, gt=0)
    stop_timeout: float = Field(default=5.0, gt=0)
    restart_pause: float = Field(default=0.5, ge=0)
    max_restarts: int = Field(default=3, ge=0)
    restart_delay: float = Field(default=1.0, ge=0)


class KernelSection(BaseModel):
    """Engine binary installation settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    install_directory: str = ""
    cache_directory: str = ""
    product: str = "sing-box"
    platform: str = ""
    latest_release_url: str = DEFAULT_LATEST_RELEASE_URL
    recent_releases_url: str = DEFAULT_RECENT_RELEASES_URL
    user_agent: str = DEFAULT_USER_AGENT


class ProxySection(BaseModel):
    """Host system-proxy settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    auto_system_proxy: bool = True
    host: str = DEFAULT_PROXY_HOST
    port: int = Field(default=DEFAULT_PROXY_PORT, gt=0, lt=65536)
    bypass_list: tuple[str, ...] = DEFAULT_BYPASS_LIST
    settings_backend: Literal["auto", "registry", "sqlite", "memory"] = "auto"
    settings_path: str = ""


class TelemetrySection(BaseModel):
    """Telemetry polling settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    poll_interval: float = Field(default=1.0, gt=0)
    request_timeout: float = Field(default=2.0, gt=0)
    selector_group: str = "PROXY"


class LoggingSection(BaseModel):
    """Logging settings.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Path to log file (empty logs to stderr).
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.TEXT
    file: str = ""


def _or_default(value: str, default: Path) -> Path:
    return Path(value).expanduser() if value else default


class Config(BaseModel):
    """Complete relaybox configuration.

    Use ``from_dict``, ``from_file`` or ``load`` rather than the
    constructor so validation errors surface as ConfigError.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    engine: EngineSection = Field(default_factory=EngineSection)
    kernel: KernelSection = Field(default_factory=KernelSection)
    proxy: ProxySection = Field(default_factory=ProxySection)
    telemetry: TelemetrySection = Field(default_factory=TelemetrySection)
    logging: LoggingSection = Field(default_factory=LoggingSection)
    sources: tuple[ConfigSource, ...] = Field(default=(), exclude=True)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        sources: tuple[ConfigSource, ...] = (),
    ) -> Self:
        """Create configuration from a dictionary.

        Raises:
            ConfigError: If a value fails validation.
        """
        try:
            return cls.model_validate({**data, "sources": sources})
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            msg = f"Invalid configuration value at {location}: {first['msg']}"
            raise ConfigError(msg) from e

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load configuration from one TOML file over the defaults.

        Raises:
            FileNotFoundError: If the file does not exist.
            ConfigLoadError: If the file cannot be parsed.
            ConfigError: If a value fails validation.
        """
        data = read_toml_file(path)
        return cls.from_dict(data, sources=(ConfigSource(ConfigSourceName.FILE, path, data),))

    @classmethod
    def load(
        cls,
        *,
        user_config_path: Path | None = None,
        config_path: Path | None = None,
        include_env: bool = True,
        cli_overrides: dict[str, Any] | None = None,
    ) -> Self:
        """Load merged configuration from all sources.

        Precedence, lowest to highest: defaults, user file, explicit file,
        environment, CLI overrides.

        Args:
            user_config_path: User config file; skipped if missing.
            config_path: Explicit config file; must exist.
            include_env: Include ``RELAYBOX_<SECTION>__<KEY>`` variables.
            cli_overrides: Nested dict of command-line overrides.

        Raises:
            FileNotFoundError: If config_path does not exist.
            ConfigLoadError: If a file cannot be parsed.
            ConfigError: If the merged config fails validation.
        """
        sources: list[ConfigSource] = []
        if user_config_path is not None and user_config_path.is_file():
            sources.append(
                ConfigSource(ConfigSourceName.USER, user_config_path, read_toml_file(user_config_path))
            )
        if config_path is not None:
            sources.append(ConfigSource(ConfigSourceName.FILE, config_path, read_toml_file(config_path)))
        if include_env:
            env_values = parse_env_vars()
            if env_values:
                sources.append(ConfigSource(ConfigSourceName.ENV, None, env_values))
        if cli_overrides:
            sources.append(ConfigSource(ConfigSourceName.CLI, None, cli_overrides))

        merged: dict[str, Any] = {}
        for source in sources:
            merged = deep_merge(merged, source.values)
        return cls.from_dict(merged, sources=tuple(reversed(sources)))

    # -------------------------------------------------------------------------
    # Resolved locations
    # -------------------------------------------------------------------------

    @property
    def platform(self) -> str:
        """Return the release platform, detecting it when unset."""
        return self.kernel.platform or detect_platform()

    @property
    def install_directory(self) -> Path:
        """Return the directory engine binaries are installed into."""
        return _or_default(self.kernel.install_directory, get_kernel_dir())

    @property
    def cache_directory(self) -> Path:
        """Return the archive download cache directory."""
        return _or_default(self.kernel.cache_directory, get_download_cache_dir())

    @property
    def settings_path(self) -> Path:
        """Return the SQLite proxy settings database path."""
        return _or_default(self.proxy.settings_path, get_settings_db())

    @property
    def executable_path(self) -> Path:
        """Return the engine binary run by the supervisor."""
        default = self.install_directory / binary_name(
            self.kernel.product, self.engine.channel, self.platform
        )
        return _or_default(self.engine.executable_path, default)

    def to_engine_config(self) -> EngineConfig:
        """Build the supervisor spawn configuration."""
        engine = self.engine
        return EngineConfig(
            executable_path=self.executable_path,
            config_directory=_or_default(engine.config_directory, get_engine_config_dir()),
            working_directory=_or_default(engine.working_directory, self.install_directory),
            control_api_host=engine.control_api_host,
            control_api_port=engine.control_api_port,
            control_api_secret=engine.control_api_secret,
        )

    def to_supervisor_settings(self) -> SupervisorSettings:
        """Build the supervisor timing and retry constants."""
        engine = self.engine
        return SupervisorSettings(
            settle_delay=engine.settle_delay,
            probe_interval=engine.probe_interval,
            probe_timeout=engine.probe_timeout,
            stop_timeout=engine.stop_timeout,
            restart_pause=engine.restart_pause,
            max_restarts=engine.max_restarts,
            restart_delay=engine.restart_delay,
        )
