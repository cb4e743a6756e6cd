from __future__ import annotations

from pathlib import Path

import pytest

from mqtt_shell.config import (
    APP_NAME,
    MacroSpec,
    config_directory,
    load_macro_file,
    load_settings,
    read_yaml_file,
    unescape_prompt,
)
from mqtt_shell.errors import BrokerMissingError, ConfigurationError, EnvironmentNotFoundError


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("MQTT_SHELL_BROKER", "MQTT_SHELL_PUBLISH_QOS", "MQTT_SHELL_SUBSCRIBE_QOS", "MQTT_SHELL_PROMPT"):
        monkeypatch.delenv(name, raising=False)


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


def test_global_then_environment_then_overrides(tmp_path: Path) -> None:
    _write(tmp_path / ".global.yml", "broker: tcp://global:1883\nsubscribe-qos: 1\nclient-id: from-global\n")
    _write(tmp_path / "dev.yaml", "broker: tcp://dev:1883\npublish-qos: 2\ncolor-blacklist:\n  - '31'\n")

    settings = load_settings(
        env="dev",
        env_dir=tmp_path,
        overrides={"client_id": "from-cli", "publish_qos": None, "commands": []},
    )

    assert settings.broker == "tcp://dev:1883"
    assert settings.subscribe_qos == 1
    assert settings.publish_qos == 2
    assert settings.client_id == "from-cli"
    assert settings.color_blacklist == ["31"]
    assert settings.commands == []
    assert settings.history_file == tmp_path / ".history"


def test_missing_environment(tmp_path: Path) -> None:
    with pytest.raises(EnvironmentNotFoundError):
        load_settings(env="prod", env_dir=tmp_path, overrides={"broker": "tcp://x:1883"})


def test_missing_broker(tmp_path: Path) -> None:
    with pytest.raises(BrokerMissingError):
        load_settings(env_dir=tmp_path)


def test_broker_from_environment_variable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MQTT_SHELL_BROKER", "tcp://env:1883")

    assert load_settings(env_dir=tmp_path).broker == "tcp://env:1883"


def test_invalid_qos_is_a_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        load_settings(env_dir=tmp_path, overrides={"broker": "tcp://x:1883", "publish_qos": 3})


def test_macro_files_are_merged(tmp_path: Path) -> None:
    _write(tmp_path / "dev.yml", "broker: tcp://x:1883\nmacros:\n  inline:\n    commands: [list]\n")
    _write(tmp_path / ".macros.yml", "shared:\n  description: from default file\n  commands: [list]\n")
    extra = _write(tmp_path / "extra.yml", "shared:\n  description: overridden\n  script: list\n")

    settings = load_settings(env="dev", env_dir=tmp_path, macro_files=[extra, tmp_path / "missing.yml"])

    assert sorted(settings.macros) == ["inline", "shared"]
    assert settings.macros["shared"] == MacroSpec(description="overridden", script="list")


def test_prompt_escapes_are_decoded(tmp_path: Path) -> None:
    _write(tmp_path / ".global.yaml", "broker: tcp://x:1883\nprompt: '\\033[31m> \\033[0m'\n")

    settings = load_settings(env_dir=tmp_path)

    assert settings.prompt == "\x1b[31m> \x1b[0m"
    assert unescape_prompt("plain » ") == "plain » "


def test_read_yaml_file_rejects_non_mappings(tmp_path: Path) -> None:
    path = _write(tmp_path / "list.yml", "- a\n- b\n")

    with pytest.raises(ConfigurationError, match="expected a mapping"):
        read_yaml_file(path)
    assert read_yaml_file(_write(tmp_path / "empty.yml", "")) == {}


def test_load_macro_file_validates_specs(tmp_path: Path) -> None:
    path = _write(tmp_path / "macros.yml", "bad:\n  arguments: not-a-list-of-values\n  varargs: maybe\n")

    with pytest.raises(ConfigurationError, match="Unable to parse macro file"):
        load_macro_file(path)
    assert load_macro_file(tmp_path / "absent.yml") == {}


def test_config_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))

    assert config_directory() == tmp_path / "xdg" / APP_NAME

    (tmp_path / ".mqtt-shell").mkdir()
    assert config_directory() == tmp_path / ".mqtt-shell"
