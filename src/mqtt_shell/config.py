"""Configuration management for mqtt-shell."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import BrokerMissingError, ConfigurationError, EnvironmentNotFoundError

APP_NAME = "mqtt-shell"
LEGACY_CONFIG_DIR_NAME = ".mqtt-shell"
GLOBAL_FILE_STEM = ".global"
MACRO_FILE_NAME = ".macros.yml"
HISTORY_FILE_NAME = ".history"
YAML_SUFFIXES = (".yaml", ".yml")
DEFAULT_PROMPT = r"\033[36m»\033[0m "


class MacroSpec(BaseModel):
    """One macro definition as written in a macro or environment file."""

    description: str = ""
    arguments: list[str] = Field(default_factory=list)
    varargs: bool = False
    commands: list[str] = Field(default_factory=list)
    script: str = ""


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="MQTT_SHELL_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Broker Configuration
    broker: str | None = Field(None, description="The broker URI, e.g. tcp://127.0.0.1:1883")
    ca: Path | None = Field(None, description="CA file path (if tls is used)")
    subscribe_qos: int = Field(default=0, ge=0, le=2, description="Default QoS for subscriptions")
    publish_qos: int = Field(default=1, ge=0, le=2, description="Default QoS for publishing")
    username: str | None = Field(None, description="The username")
    password: str | None = Field(None, description="The password")
    client_id: str = Field(default=APP_NAME, description="The client id")
    clean_session: bool = Field(default=True, description="Do not receive messages stored for this client")

    # Shell Configuration
    commands: list[str] = Field(default_factory=list, description="Commands executed at startup")
    non_interactive: bool = Field(default=False, description="Run the start commands without opening a shell")
    history_file: Path | None = Field(None, description="The history file path")
    prompt: str = Field(default=DEFAULT_PROMPT, description="The prompt of the shell")
    macros: dict[str, MacroSpec] = Field(default_factory=dict, description="Macro definitions")
    color_blacklist: list[str] = Field(default_factory=list, description="Colors which will not be used")

    # Logging Configuration
    log_level: str = Field(default="WARNING", description="Log level")


def config_directory() -> Path:
    """Return the directory holding environment, macro and history files."""

    legacy = Path.home() / LEGACY_CONFIG_DIR_NAME
    if legacy.is_dir():
        return legacy
    base = os.getenv("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / APP_NAME


def read_yaml_file(path: Path) -> dict[str, Any]:
    """Read one yaml mapping; keys are normalized from ``kebab-case`` to ``snake_case``."""

    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Can not open file '{path}': {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Unable to parse file '{path}': {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Unable to parse file '{path}': expected a mapping")
    return {_normalize_key(key): value for key, value in payload.items()}


def environment_file(env_dir: Path, env: str) -> Path:
    """Locate ``<env>.yaml`` or ``<env>.yml`` inside the environment directory."""

    for suffix in YAML_SUFFIXES:
        candidate = env_dir / f"{env}{suffix}"
        if candidate.is_file():
            return candidate
    raise EnvironmentNotFoundError(f"No environment file found for '{env}' in {env_dir}")


def load_macro_file(path: Path) -> dict[str, MacroSpec]:
    """Load a macro file. Missing files are skipped."""

    if not path.is_file():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to parse macro file '{path}': {exc}") from exc
    if not payload:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Unable to parse macro file '{path}': expected a mapping")
    try:
        return {str(name): MacroSpec.model_validate(spec or {}) for name, spec in payload.items()}
    except ValidationError as exc:
        raise ConfigurationError(f"Unable to parse macro file '{path}': {exc}") from exc


def unescape_prompt(prompt: str) -> str:
    """Decode backslash escapes such as ``\\033`` inside a configured prompt."""

    try:
        return prompt.encode("latin-1", "backslashreplace").decode("unicode_escape")
    except UnicodeDecodeError as exc:
        raise ConfigurationError(f"Unable to parse prompt: {exc}") from exc


def load_settings(
    *,
    env: str | None = None,
    env_dir: Path | None = None,
    macro_files: Iterable[Path] = (),
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Build settings from global file, environment file and explicit overrides.

    Args:
        env: Optional environment name (``<env_dir>/<env>.yml``)
        env_dir: Optional environment directory override
        macro_files: Additional macro files merged after ``.macros.yml``
        overrides: Values given on the command line; ``None`` and empty lists are ignored

    Returns:
        Settings instance
    """

    env_dir = env_dir or config_directory()
    data: dict[str, Any] = {}
    for suffix in YAML_SUFFIXES:
        global_file = env_dir / f"{GLOBAL_FILE_STEM}{suffix}"
        if global_file.is_file():
            data.update(read_yaml_file(global_file))
    if env:
        data.update(read_yaml_file(environment_file(env_dir, env)))
    for key, value in (overrides or {}).items():
        if value is None or (isinstance(value, list | tuple) and not value):
            continue
        data[key] = value
    data.setdefault("history_file", env_dir / HISTORY_FILE_NAME)

    try:
        settings = Settings(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    if not settings.broker:
        raise BrokerMissingError("Broker is missing!")

    macros = dict(settings.macros)
    for path in [env_dir / MACRO_FILE_NAME, *macro_files]:
        macros.update(load_macro_file(Path(path)))
    settings.macros = macros
    settings.prompt = unescape_prompt(settings.prompt)
    return settings


def _normalize_key(key: object) -> str:
    return str(key).replace("-", "_")
