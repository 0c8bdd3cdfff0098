"""
Configuration loader merging defaults, config files, environment, and CLI args.
"""

from __future__ import annotations

import argparse
import math
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Mapping, MutableMapping, Tuple

from .index import DEFAULT_SUPER_INDEX_CAPACITY, IndexStyle

DEFAULT_CONFIG_FILENAME = "avimux.toml"


@dataclass
class MuxConfig:
    """Settings used by the CLI to drive an ``AviWriter``."""

    width: int = 320
    height: int = 240
    fourcc: str = "I420"
    fps: float = 30.0
    index_style: str = IndexStyle.OPENDML.value
    super_index_capacity: int = DEFAULT_SUPER_INDEX_CAPACITY
    keyframe_interval: int = 1
    log_format: str = "human"
    json_log: bool = False
    dry_run: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


def load_default_config() -> MuxConfig:
    """Return default configuration for the CLI."""

    return MuxConfig()


def load_config(
    args: argparse.Namespace | None = None,
    *,
    env: Mapping[str, str] | None = None,
    config_file: str | Path | None = None,
) -> MuxConfig:
    """
    Load configuration merging defaults, config file, environment, then CLI.

    Precedence: CLI args > environment variables > config file > defaults.
    """

    defaults = load_default_config()
    config_data: dict[str, Any] = {
        key: getattr(defaults, key) for key in _known_fields()
    }
    extras: dict[str, Any] = {}

    resolved_config_path = _resolve_config_path(args, config_file)
    if resolved_config_path is not None:
        file_config, file_extras = _load_from_file(resolved_config_path)
        config_data.update(file_config)
        extras.update(file_extras)

    config_data.update(_load_from_env(env))
    config_data.update(_load_from_cli(args))

    if config_data.get("json_log"):
        config_data["log_format"] = "json"

    validated = _validate_config(config_data)

    combined_extras = {**extras, **validated.pop("extra", {})}
    if combined_extras:
        validated["extra"] = combined_extras

    return MuxConfig(**validated)


def parse_size(value: str) -> Tuple[int, int]:
    """Parse a ``WIDTHxHEIGHT`` string."""
    try:
        width, height = (int(part) for part in value.lower().split("x", 1))
    except ValueError as exc:
        raise ValueError(f"size must look like WIDTHxHEIGHT, got {value!r}") from exc
    return width, height


def _known_fields() -> set[str]:
    return {f.name for f in fields(MuxConfig) if f.init and f.name != "extra"}


def _resolve_config_path(
    args: argparse.Namespace | None, config_file: str | Path | None
) -> Path | None:
    candidate: str | Path | None = None
    if args is not None and getattr(args, "config", None):
        candidate = getattr(args, "config")
    elif config_file is not None:
        candidate = config_file

    if candidate is None:
        default_path = Path(DEFAULT_CONFIG_FILENAME)
        return default_path if default_path.exists() else None

    path = Path(candidate).expanduser()
    return path if path.exists() else None


def _load_from_file(path: Path) -> Tuple[dict[str, Any], dict[str, Any]]:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError:
        return {}, {}

    return _partition_known(data)


def _truthy(value: Any) -> bool:
    return str(value).lower() in {"1", "true", "yes"}


ENV_KEY_MAP: dict[str, Tuple[str, Callable[[str], Any]]] = {
    "AVIMUX_WIDTH": ("width", int),
    "AVIMUX_HEIGHT": ("height", int),
    "AVIMUX_FOURCC": ("fourcc", str),
    "AVIMUX_FPS": ("fps", float),
    "AVIMUX_INDEX_STYLE": ("index_style", str),
    "AVIMUX_SUPER_INDEX_CAPACITY": ("super_index_capacity", int),
    "AVIMUX_KEYFRAME_INTERVAL": ("keyframe_interval", int),
    "AVIMUX_LOG_FORMAT": ("log_format", str),
    "AVIMUX_JSON_LOG": ("json_log", _truthy),
    "AVIMUX_DRY_RUN": ("dry_run", _truthy),
}


def _load_from_env(env: Mapping[str, str] | None) -> dict[str, Any]:
    source = env if env is not None else os.environ
    result: dict[str, Any] = {}
    for env_key, (config_key, caster) in ENV_KEY_MAP.items():
        if env_key in source and source[env_key] != "":
            result[config_key] = caster(source[env_key])
    return result


CLI_ATTR_MAP: dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "width": ("width", int),
    "height": ("height", int),
    "fourcc": ("fourcc", str),
    "fps": ("fps", float),
    "index_style": ("index_style", str),
    "super_index_capacity": ("super_index_capacity", int),
    "keyframe_interval": ("keyframe_interval", int),
    "log_format": ("log_format", str),
    "json_log": ("json_log", bool),
    "dry_run": ("dry_run", bool),
}


def _load_from_cli(args: argparse.Namespace | None) -> dict[str, Any]:
    if args is None:
        return {}

    result: dict[str, Any] = {}
    size = getattr(args, "size", None)
    if size:
        result["width"], result["height"] = parse_size(size)

    for attr_name, (config_key, caster) in CLI_ATTR_MAP.items():
        if hasattr(args, attr_name):
            value = getattr(args, attr_name)
            if value is None:
                continue
            if isinstance(value, bool) and caster is bool:
                # store_true flags only override when set
                if value:
                    result[config_key] = value
            else:
                result[config_key] = caster(value)
    return result


def _partition_known(data: Mapping[str, Any]) -> Tuple[dict[str, Any], dict[str, Any]]:
    known: dict[str, Any] = {}
    extras: dict[str, Any] = {}
    known_keys = _known_fields()
    for key, value in data.items():
        if key in known_keys:
            known[key] = value
        else:
            extras[key] = value
    return known, extras


def _validate_config(data: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    for key in ("width", "height"):
        value = data.get(key)
        if value is not None and int(value) <= 0:
            raise ValueError(f"{key} must be positive")

    fps = data.get("fps")
    if fps is not None and (not math.isfinite(float(fps)) or float(fps) < 1):
        raise ValueError("fps must be a finite number >= 1")

    fourcc = data.get("fourcc")
    if fourcc is not None and not 1 <= len(str(fourcc)) <= 4:
        raise ValueError("fourcc must be 1 to 4 characters")

    index_style = data.get("index_style")
    if index_style is not None and index_style not in {s.value for s in IndexStyle}:
        raise ValueError(
            f"index_style must be one of {', '.join(s.value for s in IndexStyle)}"
        )

    capacity = data.get("super_index_capacity")
    if capacity is not None and int(capacity) <= 0:
        raise ValueError("super_index_capacity must be positive")

    keyframe_interval = data.get("keyframe_interval")
    if keyframe_interval is not None and int(keyframe_interval) < 1:
        raise ValueError("keyframe_interval must be >= 1")

    return data
