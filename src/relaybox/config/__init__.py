"""Layered configuration for relaybox.

Sources, lowest to highest precedence: built-in defaults, the user config
file, an explicit ``--config`` file, ``RELAYBOX_<SECTION>__<KEY>``
environment variables, and command-line overrides.
"""

from ._load import safe_load_config
from ._loader import (
    ENV_PREFIX,
    deep_merge,
    parse_env_vars,
    parse_value,
    read_toml_file,
    set_nested_key,
)
from ._models import (
    Config,
    ConfigSource,
    ConfigSourceName,
    EngineSection,
    KernelSection,
    LogFormat,
    LoggingSection,
    LogLevel,
    ProxySection,
    TelemetrySection,
)

__all__ = [
    "ENV_PREFIX",
    "Config",
    "ConfigSource",
    "ConfigSourceName",
    "EngineSection",
    "KernelSection",
    "LogFormat",
    "LogLevel",
    "LoggingSection",
    "ProxySection",
    "TelemetrySection",
    "deep_merge",
    "parse_env_vars",
    "parse_value",
    "read_toml_file",
    "safe_load_config",
    "set_nested_key",
]
