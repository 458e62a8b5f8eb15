"""Runtime settings.

Precedence, lowest first: built-in defaults, YAML file (``--config`` or
``./evsim.yaml``), ``.env`` in the working directory, process environment,
command-line flags. Each call builds a fresh ``Settings``; nothing is cached
and ``os.environ`` is never modified.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import dotenv_values

from .errors import ConfigError


DEFAULT_CONFIG_FILE = "evsim.yaml"
DEFAULT_DOTENV_FILE = ".env"


@dataclass(frozen=True)
class Settings:
    api_server: Optional[str] = None
    insecure: bool = False
    ca_certs: Tuple[str, ...] = ()
    timeout: float = 10.0
    poll_interval: float = 1.0
    max_polls: int = 10
    log_level: str = "INFO"

    def merged(self, **overrides: Any) -> "Settings":
        """Apply CLI overrides; ``None`` means "flag not given"."""
        given = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **given)


def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {v!r}")


def _as_paths(v: Any) -> Tuple[str, ...]:
    if isinstance(v, (list, tuple)):
        return tuple(str(p) for p in v)
    return tuple(p.strip() for p in str(v).split(",") if p.strip())


_CASTS: Dict[str, Callable[[Any], Any]] = {
    "api_server": str,
    "insecure": _as_bool,
    "ca_certs": _as_paths,
    "timeout": float,
    "poll_interval": float,
    "max_polls": int,
    "log_level": lambda v: str(v).upper(),
}

_ENV_MAP = {
    "api_server": "EVSIM_API_SERVER",
    "insecure": "EVSIM_INSECURE",
    "ca_certs": "EVSIM_CA_CERTS",
    "timeout": "EVSIM_TIMEOUT",
    "poll_interval": "EVSIM_POLL_INTERVAL",
    "max_polls": "EVSIM_MAX_POLLS",
    "log_level": "EVSIM_LOG_LEVEL",
}

# YAML keys use dashes, like the command-line flags
_YAML_KEYS = {name.replace("_", "-"): name for name in _CASTS}


def _cast(name: str, value: Any, source: str) -> Any:
    try:
        return _CASTS[name](value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{source}: bad value for {name}: {e}") from e


def _from_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"reading config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path}: expecting a mapping at top level")
    out: Dict[str, Any] = {}
    for key, value in data.items():
        name = _YAML_KEYS.get(str(key)) or (str(key) if str(key) in _CASTS else None)
        if name is None:
            raise ConfigError(f"config file {path}: unknown setting {key!r}")
        out[name] = _cast(name, value, str(path))
    return out


def _from_env(env: Mapping[str, Optional[str]], source: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name, var in _ENV_MAP.items():
        value = env.get(var)
        if value is not None:
            out[name] = _cast(name, value, f"{source} {var}")
    return out


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
) -> Settings:
    base = Path(cwd) if cwd else Path.cwd()
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    if config_path:
        values.update(_from_yaml(Path(config_path)))
    elif (base / DEFAULT_CONFIG_FILE).is_file():
        values.update(_from_yaml(base / DEFAULT_CONFIG_FILE))

    dotenv_path = base / DEFAULT_DOTENV_FILE
    if dotenv_path.is_file():
        values.update(_from_env(dotenv_values(dotenv_path), str(dotenv_path)))

    values.update(_from_env(environ, "environment"))
    known = {f.name for f in fields(Settings)}
    return Settings(**{k: v for k, v in values.items() if k in known})


__all__ = ["Settings", "load_settings"]
