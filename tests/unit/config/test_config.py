from __future__ import annotations

import os
from pathlib import Path

import pytest

from relaybox.config import (
    Config,
    ConfigSourceName,
    LogFormat,
    LogLevel,
    deep_merge,
    parse_env_vars,
    parse_value,
    read_toml_file,
    safe_load_config,
    set_nested_key,
)
from relaybox.exceptions import ConfigError, ConfigLoadError
from relaybox.kernel import Channel


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for key in list(os.environ):
        if key.startswith("RELAYBOX_"):
            monkeypatch.delenv(key)
    home = tmp_path / "home"
    monkeypatch.setenv("RELAYBOX_HOME", str(home))
    return home


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    _ = path.write_text(text)
    return path


class TestParseValue:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("true", True),
            ("False", False),
            ("9090", 9090),
            ("0.5", 0.5),
            ('["localhost", "<local>"]', ["localhost", "<local>"]),
            ('{"a": 1}', {"a": 1}),
            ("127.0.0.1", "127.0.0.1"),
            ("[broken", "[broken"),
            ("sing-box", "sing-box"),
        ],
    )
    def test_inference(self, raw: str, expected: object) -> None:
        assert parse_value(raw) == expected


class TestMerging:
    def test_deep_merge_recurses_and_replaces(self) -> None:
        base = {"engine": {"control_api_port": 9090, "channel": "stable"}, "proxy": {"bypass_list": ["a"]}}
        override = {"engine": {"control_api_port": 9091}, "proxy": {"bypass_list": ["b", "c"]}}

        merged = deep_merge(base, override)

        assert merged == {
            "engine": {"control_api_port": 9091, "channel": "stable"},
            "proxy": {"bypass_list": ["b", "c"]},
        }
        assert base["engine"]["control_api_port"] == 9090

    def test_merged_result_shares_nothing(self) -> None:
        base: dict[str, object] = {"proxy": {"bypass_list": ["a"]}}

        merged = deep_merge(base, {})
        merged["proxy"]["bypass_list"].append("b")  # pyright: ignore[reportIndexIssue, reportAttributeAccessIssue, reportUnknownMemberType]

        assert base == {"proxy": {"bypass_list": ["a"]}}

    def test_set_nested_key_replaces_scalar_parent(self) -> None:
        data: dict[str, object] = {"engine": "scalar"}

        set_nested_key(data, "engine.control_api_port", 9091)

        assert data == {"engine": {"control_api_port": 9091}}


class TestEnvVars:
    def test_double_underscore_separates_section(self) -> None:
        environ = {
            "RELAYBOX_ENGINE__CONTROL_API_PORT": "9091",
            "RELAYBOX_PROXY__AUTO_SYSTEM_PROXY": "false",
            "RELAYBOX_HOME": "/tmp/ignored",
            "OTHER_ENGINE__PORT": "1",
        }

        assert parse_env_vars(environ=environ) == {
            "engine": {"control_api_port": 9091},
            "proxy": {"auto_system_proxy": False},
        }


class TestTomlFile:
    def test_parse_error_carries_location(self, tmp_path: Path) -> None:
        path = write(tmp_path / "bad.toml", "[engine]\ncontrol_api_port = = 1\n")

        with pytest.raises(ConfigLoadError) as exc_info:
            _ = read_toml_file(path)

        assert exc_info.value.path == path
        assert "bad.toml" in str(exc_info.value)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            _ = read_toml_file(tmp_path / "missing.toml")


class TestConfigModel:
    def test_defaults(self) -> None:
        config = Config.from_dict({})

        assert config.engine.channel is Channel.STABLE
        assert config.engine.control_api_port == 9090
        assert config.proxy.auto_system_proxy
        assert config.proxy.port == 7890
        assert config.telemetry.selector_group == "PROXY"
        assert config.logging.level is LogLevel.INFO
        assert config.logging.format is LogFormat.TEXT

    def test_invalid_value_names_location(self) -> None:
        with pytest.raises(ConfigError, match="engine.control_api_port"):
            _ = Config.from_dict({"engine": {"control_api_port": 70000}})

    def test_unknown_keys_are_ignored(self) -> None:
        config = Config.from_dict({"engine": {"colour": "blue"}, "extra": {}})

        assert config.engine.control_api_port == 9090

    def test_is_frozen(self) -> None:
        config = Config.from_dict({})

        with pytest.raises(ValueError, match="frozen"):
            config.engine.control_api_port = 1  # pyright: ignore[reportAttributeAccessIssue]

    def test_default_locations_follow_home(self, isolated_env: Path) -> None:
        config = Config.from_dict({"kernel": {"platform": "linux-amd64"}})

        assert config.install_directory == isolated_env / "kernel"
        assert config.cache_directory == isolated_env / "cache"
        assert config.settings_path == isolated_env / "settings.db"
        assert config.executable_path == isolated_env / "kernel" / "sing-box"

    def test_alpha_channel_selects_alpha_binary(self, isolated_env: Path) -> None:
        config = Config.from_dict(
            {"engine": {"channel": "alpha"}, "kernel": {"platform": "windows-amd64"}}
        )

        assert config.executable_path == isolated_env / "kernel" / "sing-box-alpha.exe"

    def test_explicit_executable_wins(self, tmp_path: Path) -> None:
        binary = tmp_path / "bin" / "engine"
        config = Config.from_dict({"engine": {"executable_path": str(binary)}})

        assert config.executable_path == binary

    def test_to_engine_config(self, isolated_env: Path) -> None:
        config = Config.from_dict(
            {
                "engine": {"control_api_port": 9191, "control_api_secret": "s"},
                "kernel": {"platform": "linux-amd64"},
            }
        )

        engine = config.to_engine_config()

        assert engine.api_url == "http://127.0.0.1:9191"
        assert engine.control_api_secret == "s"
        assert engine.working_directory == isolated_env / "kernel"
        assert engine.config_directory == isolated_env / "config"
        assert engine.process_name == "sing-box"

    def test_to_supervisor_settings(self) -> None:
        config = Config.from_dict({"engine": {"max_restarts": 5, "restart_delay": 2.0}})

        settings = config.to_supervisor_settings()

        assert settings.max_restarts == 5
        assert settings.restart_delay == 2.0


class TestConfigLoad:
    def test_precedence(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        user = write(
            tmp_path / "user.toml",
            "[engine]\ncontrol_api_port = 9001\ncontrol_api_secret = 'user'\n"
            "[telemetry]\npoll_interval = 3.0\n",
        )
        explicit = write(
            tmp_path / "explicit.toml",
            "[engine]\ncontrol_api_port = 9002\n[proxy]\nport = 1080\n",
        )
        monkeypatch.setenv("RELAYBOX_PROXY__PORT", "1081")

        config = Config.load(
            user_config_path=user,
            config_path=explicit,
            cli_overrides={"logging": {"level": "debug"}},
        )

        assert config.engine.control_api_port == 9002
        assert config.engine.control_api_secret == "user"
        assert config.telemetry.poll_interval == 3.0
        assert config.proxy.port == 1081
        assert config.logging.level is LogLevel.DEBUG
        assert [source.name for source in config.sources] == [
            ConfigSourceName.CLI,
            ConfigSourceName.ENV,
            ConfigSourceName.FILE,
            ConfigSourceName.USER,
        ]

    def test_missing_user_file_is_skipped(self, tmp_path: Path) -> None:
        config = Config.load(user_config_path=tmp_path / "missing.toml", include_env=False)

        assert config.sources == ()

    def test_from_file(self, tmp_path: Path) -> None:
        path = write(tmp_path / "config.toml", "[proxy]\nbypass_list = ['localhost']\n")

        config = Config.from_file(path)

        assert config.proxy.bypass_list == ("localhost",)
        assert config.sources[0].path == path


class TestSafeLoadConfig:
    def test_loads_user_config_from_home(self, isolated_env: Path) -> None:
        _ = write(isolated_env / "config.toml", "[proxy]\nport = 2080\n")

        config, error = safe_load_config()

        assert error is None
        assert config.proxy.port == 2080

    def test_invalid_config_falls_back_to_defaults(
        self, isolated_env: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        _ = write(isolated_env / "config.toml", "[proxy]\nport = 0\n")

        config, error = safe_load_config()

        assert error is not None
        assert config.proxy.port == 7890
        assert "Warning:" in capsys.readouterr().err

    def test_strict_mode_exits(self, isolated_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _ = write(isolated_env / "config.toml", "[proxy\n")
        monkeypatch.setenv("RELAYBOX_STRICT_CONFIG", "1")

        with pytest.raises(SystemExit) as exc_info:
            _ = safe_load_config()

        assert exc_info.value.code == 1

    def test_missing_explicit_file_exits(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit):
            _ = safe_load_config(config_path=tmp_path / "missing.toml")

    def test_cli_overrides_apply(self) -> None:
        config, _ = safe_load_config(cli_overrides={"logging": {"level": "debug"}})

        assert config.logging.level is LogLevel.DEBUG
