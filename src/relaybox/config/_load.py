from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

from relaybox.exceptions import ConfigError
from relaybox.utils import get_user_config_path

from ._models import Config

if TYPE_CHECKING:
    from pathlib import Path


def _report(message: str, *, strict: bool) -> None:
    if strict:
        print(f"Error: {message}", file=sys.stderr)  # noqa: T201
        sys.exit(1)
    print(f"Warning: {message}", file=sys.stderr)  # noqa: T201


def safe_load_config(
    *,
    config_path: Path | None = None,
    cli_overrides: dict[str, object] | None = None,
) -> tuple[Config, str | None]:
    """Load configuration with error handling.

    Errors are handled according to the RELAYBOX_STRICT_CONFIG environment
    variable:
    - If unset or "0": warn to stderr and return the default config
    - If "1": fail fast with sys.exit(1)

    A missing explicit config file always exits, since the user asked for it.

    Args:
        config_path: Explicit path to config file (--config flag).
        cli_overrides: CLI argument overrides, nested by section.

    Returns:
        Tuple of (Config, error_message). On success, error_message is None.
    """
    strict_mode = os.environ.get("RELAYBOX_STRICT_CONFIG", "0") == "1"

    if config_path is not None and not config_path.exists():
        _report(f"Config file not found: {config_path}", strict=True)

    try:
        config = Config.load(
            user_config_path=get_user_config_path(),
            config_path=config_path,
            include_env=True,
            cli_overrides=dict(cli_overrides) if cli_overrides else None,
        )
    except ConfigError as e:
        error_msg = str(e)
        _report(f"Failed to load config: {error_msg}", strict=strict_mode)
        return Config.from_dict({}), error_msg
    except OSError as e:
        error_msg = f"Failed to load config: {e}"
        _report(error_msg, strict=strict_mode)
        return Config.from_dict({}), error_msg
    return config, None
