# pyright: reportAny=false, reportUnknownVariableType=false, reportUnknownArgumentType=false
"""TOML configuration file loading, merging and environment parsing."""

from __future__ import annotations

import os
import tomllib
from typing import TYPE_CHECKING, Any

import orjson

from relaybox.exceptions import ConfigLoadError

if TYPE_CHECKING:
    from pathlib import Path

ENV_PREFIX = "RELAYBOX_"


def read_toml_file(path: Path) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Read and parse a TOML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigLoadError: If the file cannot be parsed; carries line and column when the interpreter reports them.
    """
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Failed to parse TOML file {path}: {e}"
        # Position attributes were added to TOMLDecodeError in 3.14.
        line = getattr(e, "lineno", None)
        column = getattr(e, "colno", None)
        raise ConfigLoadError(msg, path=path, line=line, column=column) from e


def copy_value(value: Any) -> Any:  # pyright: ignore[reportExplicitAny]
    """Return a copy of a config value that shares no dicts or lists with it."""
    if isinstance(value, dict):
        return {key: copy_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [copy_value(item) for item in value]
    return value


def deep_merge(
    base: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    override: dict[str, Any],  # pyright: ignore[reportExplicitAny]
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Merge ``override`` into ``base`` without modifying either.

    Tables merge recursively; arrays and scalars from ``override`` replace
    the base value.
    """
    merged = {key: copy_value(value) for key, value in base.items()}
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy_value(value)
    return merged


def parse_value(value: str) -> Any:  # pyright: ignore[reportExplicitAny]
    """Infer the type of a string from the environment or command line.

    Order of type inference:
        1. Boolean: true/false (case-insensitive)
        2. Integer
        3. Float (must contain a decimal point)
        4. JSON array or object
        5. String

    Examples:
        >>> parse_value("true")
        True
        >>> parse_value("9090")
        9090
        >>> parse_value('["localhost", "<local>"]')
        ['localhost', '<local>']
    """
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"

    try:
        return int(value)
    except ValueError:
        pass

    if "." in value:
        try:
            return float(value)
        except ValueError:
            pass

    if (value.startswith("[") and value.endswith("]")) or (
        value.startswith("{") and value.endswith("}")
    ):
        try:
            return orjson.loads(value)
        except orjson.JSONDecodeError:
            pass

    return value


def set_nested_key(
    d: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    key_path: str,
    value: Any,  # pyright: ignore[reportExplicitAny]
) -> None:
    """Set a value at a dotted key path, creating intermediate tables.

    Example:
        >>> d = {}
        >>> set_nested_key(d, "engine.control_api_port", 9091)
        >>> d
        {'engine': {'control_api_port': 9091}}
    """
    *parents, leaf = key_path.split(".")
    current = d
    for part in parents:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[leaf] = value


def parse_env_vars(
    prefix: str = ENV_PREFIX,
    environ: dict[str, str] | None = None,
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Collect ``<PREFIX><SECTION>__<KEY>`` variables into a config dict.

    Variables without a double underscore (``RELAYBOX_HOME``,
    ``RELAYBOX_DEBUG``) are process settings, not config keys, and are
    ignored.

    Example:
        ``RELAYBOX_ENGINE__CONTROL_API_PORT=9091`` sets
        ``engine.control_api_port`` to ``9091``.
    """
    source = os.environ if environ is None else environ
    result: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
    for key, raw in source.items():
        if not key.startswith(prefix):
            continue
        config_key = key[len(prefix) :]
        if "__" not in config_key:
            continue
        set_nested_key(result, config_key.replace("__", ".").lower(), parse_value(raw))
    return result
