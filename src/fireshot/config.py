"""Configuration management for Fireshot.

Configuration priority (highest to lowest):
1. CLI overrides (passed to load_config)
2. Environment variables (FIRESHOT_*)
3. Config file (~/.config/fireshot/config.yaml)
4. Built-in defaults
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Any

import yaml
from platformdirs import user_config_dir

ENV_PREFIX = "FIRESHOT"
CONFIG_DIR = Path(user_config_dir("fireshot"))
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.yaml"

EXPORT_FORMATS = {"png", "jpeg", "jpg", "webp", "bmp"}
BUSY_POLICIES = {"reject", "queue"}
STALE_POLICIES = {"cancel", "report"}
COLOR_PATTERN = r"^#([0-9a-fA-F]{6}|[0-9a-fA-F]{8})$"


@dataclass
class Config:
    """Fireshot configuration."""

    # Capture backend
    wayland_capture: str = "wayland-capture"
    capture_timeout_ms: int = 30000

    # Output settings
    output_dir: Path = field(default_factory=lambda: Path.home() / "Pictures" / "screenshots")
    default_format: str = "png"
    default_quality: int = 90

    # Selection
    min_selection_size: int = 4
    handle_margin: int = 8

    # Export policies
    export_busy_policy: str = "reject"
    stale_export_policy: str = "cancel"

    # Drawing defaults
    default_color: str = "#ff3b30"
    default_stroke_width: int = 3
    marker_opacity: float = 0.35
    font: str = "sans-serif"
    font_size: int = 18
    pixelate_block: int = 8
    blur_radius: int = 6

    enable_clipboard: bool = True

    # Hooks
    hooks_dir: Optional[Path] = field(default_factory=lambda: CONFIG_DIR / "hooks")

    def __post_init__(self):
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        if isinstance(self.hooks_dir, str):
            self.hooks_dir = Path(self.hooks_dir)


PATH_KEYS = {"output_dir", "hooks_dir"}
INT_KEYS = {
    "capture_timeout_ms",
    "default_quality",
    "min_selection_size",
    "handle_margin",
    "default_stroke_width",
    "font_size",
    "pixelate_block",
    "blur_radius",
}
FLOAT_KEYS = {"marker_opacity"}
BOOL_KEYS = {"enable_clipboard"}


def _env(name: str) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}_{name}")


def _config_path_from_env() -> Optional[Path]:
    value = _env("CONFIG") or _env("CONFIG_PATH")
    if value:
        return Path(value).expanduser()
    return None


def _load_config_file(path: Path, strict: bool = False) -> dict:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        if strict:
            raise ValueError(f"Failed to parse config file {path}: {exc}")
        return {}

    if not isinstance(data, dict):
        if strict:
            raise ValueError(f"Config file {path} must be a mapping")
        return {}

    return data


def _expand_path(value: Any) -> Any:
    if value is None:
        return value
    return str(Path(value).expanduser())


def config_defaults() -> dict:
    return {
        "wayland_capture": "wayland-capture",
        "capture_timeout_ms": 30000,
        "output_dir": str(Path.home() / "Pictures" / "screenshots"),
        "default_format": "png",
        "default_quality": 90,
        "min_selection_size": 4,
        "handle_margin": 8,
        "export_busy_policy": "reject",
        "stale_export_policy": "cancel",
        "default_color": "#ff3b30",
        "default_stroke_width": 3,
        "marker_opacity": 0.35,
        "font": "sans-serif",
        "font_size": 18,
        "pixelate_block": 8,
        "blur_radius": 6,
        "enable_clipboard": True,
        "hooks_dir": str(CONFIG_DIR / "hooks"),
    }


def _load_env_overrides() -> dict:
    config: dict[str, Any] = {}

    for key in config_defaults():
        value = _env(key.upper())
        if value is None:
            continue
        if key in PATH_KEYS:
            config[key] = _expand_path(value)
        elif key in INT_KEYS:
            try:
                config[key] = int(value)
            except ValueError:
                continue
        elif key in FLOAT_KEYS:
            try:
                config[key] = float(value)
            except ValueError:
                continue
        elif key in BOOL_KEYS:
            config[key] = value.lower() in ("true", "1", "yes", "on")
        else:
            config[key] = value

    return config


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    return config_path or _config_path_from_env() or DEFAULT_CONFIG_PATH


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[dict] = None,
    strict: bool = False,
) -> Config:
    """Load configuration from all sources."""
    resolved_path = resolve_config_path(config_path)

    config_dict = config_defaults()
    file_config = _load_config_file(resolved_path, strict=strict)
    config_dict.update({k: v for k, v in file_config.items() if k in config_dict})
    config_dict.update(_load_env_overrides())

    if overrides:
        for key, value in overrides.items():
            if value is not None:
                config_dict[key] = value

    for key in PATH_KEYS:
        if key in config_dict and config_dict[key] is not None:
            config_dict[key] = _expand_path(config_dict[key])

    return Config(**config_dict)


# Global config instance (lazy loaded)
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def config_schema() -> dict:
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {
            "wayland_capture": {"type": "string"},
            "capture_timeout_ms": {"type": "integer", "minimum": 0},
            "output_dir": {"type": "string"},
            "default_format": {"type": "string", "enum": sorted(EXPORT_FORMATS)},
            "default_quality": {"type": "integer", "minimum": 1, "maximum": 100},
            "min_selection_size": {"type": "integer", "minimum": 1},
            "handle_margin": {"type": "integer", "minimum": 0},
            "export_busy_policy": {"type": "string", "enum": sorted(BUSY_POLICIES)},
            "stale_export_policy": {"type": "string", "enum": sorted(STALE_POLICIES)},
            "default_color": {"type": "string", "pattern": COLOR_PATTERN},
            "default_stroke_width": {"type": "integer", "minimum": 1},
            "marker_opacity": {"type": "number", "minimum": 0, "maximum": 1},
            "font": {"type": "string"},
            "font_size": {"type": "integer", "minimum": 1},
            "pixelate_block": {"type": "integer", "minimum": 2},
            "blur_radius": {"type": "integer", "minimum": 1},
            "enable_clipboard": {"type": "boolean"},
            "hooks_dir": {"type": ["string", "null"]},
        },
        "additionalProperties": False,
    }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "integer": _is_int,
    "number": _is_number,
    "boolean": lambda v: isinstance(v, bool),
    "null": lambda v: v is None,
}


def _check_value(key: str, value: Any, spec: dict) -> Optional[str]:
    """First problem with value against its schema entry, or None."""
    expected = spec["type"]
    types = expected if isinstance(expected, list) else [expected]
    if not any(_TYPE_CHECKS[t](value) for t in types):
        if len(types) > 1:
            return f"{key} must be one of types: {', '.join(types)}"
        article = "an" if types[0][0] in "aeiou" else "a"
        return f"{key} must be {article} {types[0]}"
    if value is None:
        return None

    if "enum" in spec and value not in spec["enum"]:
        return f"{key} must be one of: {', '.join(spec['enum'])}"
    if "pattern" in spec and not re.match(spec["pattern"], value):
        return f"{key} must match {spec['pattern']}"
    if "minimum" in spec and value < spec["minimum"]:
        return f"{key} must be >= {spec['minimum']}"
    if "maximum" in spec and value > spec["maximum"]:
        return f"{key} must be <= {spec['maximum']}"
    return None


def validate_config_dict(data: Any) -> list[str]:
    """Every problem in a raw config mapping; empty when it is valid."""
    if not isinstance(data, dict):
        return ["Config must be a mapping/object"]

    props = config_schema()["properties"]
    errors = [f"Unknown config key: {key}" for key in data if key not in props]
    for key, value in data.items():
        if key in props:
            error = _check_value(key, value, props[key])
            if error:
                errors.append(error)
    return errors


def validate_config_file(config_path: Optional[Path] = None) -> list[str]:
    path = resolve_config_path(config_path)
    if not path.exists():
        return []
    try:
        data = _load_config_file(path, strict=True)
    except ValueError as exc:
        return [str(exc)]
    return validate_config_dict(data)


def config_to_dict(config: Config) -> dict:
    result = {}
    for key in config_defaults():
        value = getattr(config, key)
        result[key] = str(value) if isinstance(value, Path) else value
    return result
