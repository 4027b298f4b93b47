"""TOML-based preferences configuration.

Loads ~/.terrafarm/config.toml (global) and .terrafarm.toml (project),
merges them, then applies TERRAFARM_* environment variables and command-line
overrides on top of the built-in defaults, in that order. The result is a
validated, immutable Preferences record.
"""

from __future__ import annotations

import os
import secrets
import shutil
import string
import tomllib
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

from terrafarm.constants import (
    DEFAULT_DATA_DIR,
    DEFAULT_NODE_SIZE,
    DEFAULT_REGION,
    DEFAULT_TEMPLATE,
    DEFAULT_TTL_MINUTES,
    DEFAULT_USER,
    GENERATED_PASSWORD_LENGTH,
    GLOBAL_CONFIG_PATH,
    PROJECT_CONFIG_NAME,
    TERRAFORM_BINARY,
    EnvVar,
)
from terrafarm.digitalocean.ssh import read_fingerprint
from terrafarm.exceptions import ConfigurationError
from terrafarm.preferences import Preferences
from terrafarm.utils.timeutil import parse_duration

type RawConfig = dict[str, Any]

# Config file key -> Preferences field
_FILE_KEYS: dict[str, str] = {
    "ttl": "ttl",
    "max-wait": "max_wait",
    "max_wait": "max_wait",
    "maxwait": "max_wait",
    "output": "output",
    "token": "token",
    "key": "key",
    "region": "region",
    "node-size": "node_size",
    "node_size": "node_size",
    "nodesize": "node_size",
    "user": "user",
    "password": "password",
    "template": "template",
}

_ENV_KEYS: dict[EnvVar, str] = {
    EnvVar.TTL: "ttl",
    EnvVar.MAX_WAIT: "max_wait",
    EnvVar.OUTPUT: "output",
    EnvVar.TEMPLATE: "template",
    EnvVar.TOKEN: "token",
    EnvVar.KEY: "key",
    EnvVar.REGION: "region",
    EnvVar.NODE_SIZE: "node_size",
    EnvVar.USER: "user",
    EnvVar.PASSWORD: "password",
}

_DURATION_FIELDS = frozenset({"ttl", "max_wait"})

_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "-_+="


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Can't read preferences file {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)
    return _deep_merge(global_cfg, project_cfg)


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def default_preferences() -> Preferences:
    return Preferences(
        ttl=DEFAULT_TTL_MINUTES,
        region=DEFAULT_REGION,
        node_size=DEFAULT_NODE_SIZE,
        user=DEFAULT_USER,
        password=generate_password(),
        template=DEFAULT_TEMPLATE,
    )


def parse_minutes(value: Any, source: str) -> int:
    """Convert a duration value to whole minutes.

    Integers are taken as minutes (TOML values), strings are durations
    like "3h" or "90m". "0" disables the feature.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Incorrect {source} property")

    if isinstance(value, int):
        minutes = value
        seconds = value * 60
    else:
        try:
            seconds = parse_duration(str(value))
        except ValueError as e:
            raise ConfigurationError(f"Incorrect {source} property: {e}") from e
        minutes = seconds // 60

    if minutes < 0 or (minutes == 0 and seconds != 0):
        raise ConfigurationError(f"Incorrect {source} property: {value!r}")

    return minutes


def _apply(prefs: Preferences, values: Mapping[str, Any], source: str) -> Preferences:
    changes: dict[str, Any] = {}
    for name, value in values.items():
        if value is None or value == "":
            continue
        if name in _DURATION_FIELDS:
            changes[name] = parse_minutes(value, f"{name.replace('_', '-')} ({source})")
        else:
            changes[name] = str(value)
    return replace(prefs, **changes)


def _file_values(raw: RawConfig) -> dict[str, Any]:
    values: dict[str, Any] = {}
    unknown = []
    for key, value in raw.items():
        field_name = _FILE_KEYS.get(key.lower())
        if field_name is None:
            unknown.append(key)
            continue
        values[field_name] = value
    if unknown:
        raise ConfigurationError([f"Unknown property {key} in preferences file" for key in unknown])
    return values


def _env_values(env: Mapping[str, str]) -> dict[str, Any]:
    return {field_name: env[var] for var, field_name in _ENV_KEYS.items() if env.get(var)}


def get_data_dir(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    if env.get(EnvVar.DATA):
        return Path(env[EnvVar.DATA]).expanduser()
    return DEFAULT_DATA_DIR


def check_environment(data_dir: Path, *, terraform: str = TERRAFORM_BINARY) -> None:
    """Fail fast when the data dir or the terraform binary is unusable."""
    errors = []

    if not data_dir.is_dir() or not os.access(data_dir, os.R_OK | os.W_OK | os.X_OK):
        errors.append(f"Data directory {data_dir} is not accessible")

    if shutil.which(terraform) is None:
        errors.append(f"Can't find {terraform}. Please install it first.")

    if errors:
        raise ConfigurationError(errors)


def resolve_preferences(
    overrides: Mapping[str, Any] | None = None,
    *,
    data_dir: Path,
    env: Mapping[str, str] | None = None,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    validate: bool = True,
) -> Preferences:
    """Merge defaults, config files, environment and CLI overrides.

    Args:
        overrides: Values from command-line flags, keyed by Preferences field.
        data_dir: Directory holding templates and state files.
        env: Environment mapping, defaults to os.environ.
        project_dir: Directory searched for the project config file.
        global_path: Path of the global config file.
        validate: Whether to run Preferences.validate.

    Raises:
        ConfigurationError: With every problem found.
    """
    env = os.environ if env is None else env

    prefs = default_preferences()
    prefs = _apply(prefs, _file_values(load_config(project_dir=project_dir, global_path=global_path)), "preferences file")
    prefs = _apply(prefs, _env_values(env), "environment variables")
    prefs = _apply(prefs, overrides or {}, "command-line arguments")

    fingerprint_error = None
    if prefs.key:
        prefs = replace(prefs, key=str(Path(prefs.key).expanduser()))
        try:
            prefs = replace(prefs, fingerprint=read_fingerprint(prefs.public_key))
        except (OSError, ValueError) as e:
            fingerprint_error = f"Can't get fingerprint of public key {prefs.public_key}: {e}"

    if validate:
        errors = prefs.validate(data_dir)
        if fingerprint_error and Path(prefs.public_key).is_file():
            errors.append(fingerprint_error)
        if errors:
            raise ConfigurationError(errors)

    return prefs
