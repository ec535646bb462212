# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Configuration helpers for the :mod:`servelite.cli.servelite` entry point."""

from __future__ import annotations

import math
import os
import tomllib
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

from ..server.broadcast import DEFAULT_CAPACITY
from ..server.listener import DEFAULT_READY_TIMEOUT, DEFAULT_SHUTDOWN_TIMEOUT
from ..server.ports import DEFAULT_PORT, MAX_PORT_TRIES

DEFAULT_CONFIG_PATH = Path("~/.config/servelite/config.toml")

ENV_PORT = "SERVELITE_PORT"
ENV_MAX_PORT_TRIES = "SERVELITE_MAX_PORT_TRIES"
ENV_BROADCAST_CAPACITY = "SERVELITE_BROADCAST_CAPACITY"

_MAX_PORT = 65535
_FIELDS = (
    "preferred_port",
    "max_port_tries",
    "broadcast_capacity",
    "ready_timeout",
    "shutdown_timeout",
)

__all__ = ["DEFAULT_CONFIG_PATH", "ConfigError", "ServeLiteConfig", "load_config"]


@dataclass(frozen=True, slots=True)
class ServeLiteConfig:
    """Resolved settings for a :class:`~servelite.server.SessionManager`."""

    preferred_port: int = DEFAULT_PORT
    max_port_tries: int = MAX_PORT_TRIES
    broadcast_capacity: int = DEFAULT_CAPACITY
    ready_timeout: float = DEFAULT_READY_TIMEOUT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT

    def session_options(self) -> dict[str, Any]:
        """Keyword arguments for :class:`~servelite.server.SessionManager`."""
        return {name: getattr(self, name) for name in _FIELDS}


class ConfigError(ValueError):
    """Raised when the servelite configuration is invalid."""


def load_config(
    path: Path | Mapping[str, Any] | None,
    cli_overrides: object | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> ServeLiteConfig:
    """Load and validate the servelite configuration.

    Parameters
    ----------
    path:
        Path to a TOML or YAML configuration file. ``None`` falls back to
        ``~/.config/servelite/config.toml``, which may be absent. Tests may
        pass an in-memory mapping to skip filesystem I/O.
    cli_overrides:
        Overrides provided by CLI processing, as a mapping or namespace whose
        keys mirror ``ServeLiteConfig`` field names. ``None`` values are
        ignored.
    env:
        Optional environment mapping. Defaults to :data:`os.environ`.

    Returns
    -------
    ServeLiteConfig
        The resolved configuration object.
    """

    env_map = dict(os.environ if env is None else env)

    if isinstance(path, Mapping):
        config_data: dict[str, object] = dict(path)
    else:
        config_path = path if path is not None else DEFAULT_CONFIG_PATH.expanduser()
        config_data = _load_config_file(config_path)

    config = _normalise_config(config_data)
    config = _apply_environment_overrides(config=config, env=env_map)
    config = _apply_cli_overrides(config=config, overrides=cli_overrides)

    return _build_config(config)


def _load_config_file(path: Path) -> dict[str, object]:
    if not path.exists():
        if path == DEFAULT_CONFIG_PATH.expanduser():
            return {}
        msg = f"Configuration file not found: {path}"
        raise ConfigError(msg)

    suffix = path.suffix.lower()
    data: object
    try:
        if suffix == ".toml" or not suffix:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        elif suffix in {".yaml", ".yml"}:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        else:
            msg = f"Unsupported configuration format: {path.suffix}"
            raise ConfigError(msg)
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as error:
        msg = f"Malformed configuration file {path}: {error}"
        raise ConfigError(msg) from error

    if not isinstance(data, MutableMapping):
        msg = "Configuration file must contain a mapping at the root."
        raise ConfigError(msg)

    mapping = cast(MutableMapping[object, object], data)
    typed_data: dict[str, object] = {}
    for key, value in mapping.items():
        if not isinstance(key, str):
            msg = f"Configuration keys must be strings (got {key!r})."
            raise ConfigError(msg)
        typed_data[key] = value
    return typed_data


def _normalise_config(raw: Mapping[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(raw)
    server_section_obj = raw.get("server")
    if isinstance(server_section_obj, Mapping):
        server_section = cast(Mapping[str, object], server_section_obj)
        for key, value in server_section.items():
            _ = merged.setdefault(key, value)

    config: dict[str, object] = {
        name: merged.get(name) for name in _FIELDS
    }
    if config["preferred_port"] is None:
        config["preferred_port"] = merged.get("port")
    return config


def _apply_environment_overrides(
    *, config: dict[str, object], env: Mapping[str, str]
) -> dict[str, object]:
    if ENV_PORT in env:
        config["preferred_port"] = env[ENV_PORT]
    if ENV_MAX_PORT_TRIES in env:
        config["max_port_tries"] = env[ENV_MAX_PORT_TRIES]
    if ENV_BROADCAST_CAPACITY in env:
        config["broadcast_capacity"] = env[ENV_BROADCAST_CAPACITY]
    return config


def _apply_cli_overrides(
    *, config: dict[str, object], overrides: object | None
) -> dict[str, object]:
    if overrides is None:
        return config

    materialised: dict[str, object]
    if isinstance(overrides, Mapping):
        materialised = dict(cast(Mapping[str, object], overrides))
    elif hasattr(overrides, "__dict__"):
        materialised = {key: getattr(overrides, key) for key in vars(overrides)}
    else:
        msg = "CLI overrides must be a mapping or support attribute access."
        raise TypeError(msg)

    for key, value in materialised.items():
        if value is None or key not in _FIELDS:
            continue
        config[key] = value

    return config


def _build_config(config: Mapping[str, object]) -> ServeLiteConfig:
    defaults = ServeLiteConfig()
    preferred_port = _coerce_port(config.get("preferred_port"), defaults.preferred_port)
    max_port_tries = _coerce_positive_int(
        config.get("max_port_tries"), "max_port_tries", defaults.max_port_tries
    )
    broadcast_capacity = _coerce_positive_int(
        config.get("broadcast_capacity"),
        "broadcast_capacity",
        defaults.broadcast_capacity,
    )
    ready_timeout = _coerce_timeout(
        config.get("ready_timeout"), "ready_timeout", defaults.ready_timeout
    )
    shutdown_timeout = _coerce_timeout(
        config.get("shutdown_timeout"), "shutdown_timeout", defaults.shutdown_timeout
    )
    return ServeLiteConfig(
        preferred_port=preferred_port,
        max_port_tries=max_port_tries,
        broadcast_capacity=broadcast_capacity,
        ready_timeout=ready_timeout,
        shutdown_timeout=shutdown_timeout,
    )


def _coerce_int(value: object, field_name: str) -> int:
    if isinstance(value, bool):
        msg = f"{field_name} must be an integer."
        raise ConfigError(msg)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            msg = f"{field_name} must be an integer: {value!r}"
            raise ConfigError(msg) from exc
    msg = f"{field_name} must be an integer."
    raise ConfigError(msg)


def _coerce_port(value: object, default: int) -> int:
    if value is None:
        return default
    port = _coerce_int(value, "port")
    if not 1 <= port <= _MAX_PORT:
        msg = f"Port must be between 1 and {_MAX_PORT} (inclusive): {port}"
        raise ConfigError(msg)
    return port


def _coerce_positive_int(value: object, field_name: str, default: int) -> int:
    if value is None:
        return default
    number = _coerce_int(value, field_name)
    if number < 1:
        msg = f"{field_name} must be positive: {number}"
        raise ConfigError(msg)
    return number


def _coerce_timeout(value: object, field_name: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        msg = f"{field_name} must be a number of seconds."
        raise ConfigError(msg)
    try:
        seconds = float(value)
    except ValueError as exc:
        msg = f"{field_name} must be a number of seconds: {value!r}"
        raise ConfigError(msg) from exc
    if not math.isfinite(seconds) or seconds <= 0:
        msg = f"{field_name} must be a positive, finite number: {seconds}"
        raise ConfigError(msg)
    return seconds
