"""Run settings: defaults, an optional YAML config file, then CLI flags."""

from __future__ import annotations
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

import yaml

from lexer import VibeError


class ConfigError(VibeError):
    pass


@dataclass(frozen=True)
class Settings:
    claude: str = "claude"
    model: Optional[str] = None
    skip_permissions: bool = True
    dry_run: bool = False
    verbose: bool = True
    strict: bool = False
    extensions: Tuple[str, ...] = ()


_BOOL_KEYS = ("interactive", "dry_run", "verbose", "strict")
_STR_KEYS = ("claude", "model")
KNOWN_KEYS = frozenset(_BOOL_KEYS + _STR_KEYS + ("extensions",))


def _check_type(path: str, key: str, value: Any, expected: type) -> None:
    if not isinstance(value, expected):
        raise ConfigError(f"{path}: '{key}' must be a {expected.__name__}, got {type(value).__name__}")


def load_settings(path: str, base: Optional[Settings] = None) -> Settings:
    """Read a YAML mapping from ``path`` and layer it over ``base``."""
    settings = base or Settings()
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Failed to read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        return settings
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    unknown = sorted(str(k) for k in data if k not in KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"{path}: unknown keys: {', '.join(unknown)}")

    changes: Dict[str, Any] = {}
    for key in _STR_KEYS:
        if key in data and data[key] is not None:
            _check_type(path, key, data[key], str)
            changes[key] = data[key]
    for key in _BOOL_KEYS:
        if key in data:
            _check_type(path, key, data[key], bool)
    if "interactive" in data:
        changes["skip_permissions"] = not data["interactive"]
    for key in ("dry_run", "verbose", "strict"):
        if key in data:
            changes[key] = data[key]
    if "extensions" in data:
        exts = data["extensions"] or []
        _check_type(path, "extensions", exts, list)
        base_dir = os.path.dirname(os.path.abspath(path))
        resolved = []
        for ext in exts:
            _check_type(path, "extensions", ext, str)
            resolved.append(ext if os.path.isabs(ext) else os.path.join(base_dir, ext))
        changes["extensions"] = settings.extensions + tuple(resolved)
    return replace(settings, **changes)


def apply_cli_overrides(settings: Settings, args: Any) -> Settings:
    """Flags given on the command line win over the config file."""
    changes: Dict[str, Any] = {}
    if getattr(args, "claude", None):
        changes["claude"] = args.claude
    if getattr(args, "model", None):
        changes["model"] = args.model
    if getattr(args, "interactive", False):
        changes["skip_permissions"] = False
    if getattr(args, "dry_run", False):
        changes["dry_run"] = True
    if getattr(args, "verbose", False):
        changes["verbose"] = True
    if getattr(args, "quiet", False):
        changes["verbose"] = False
    if getattr(args, "strict", False):
        changes["strict"] = True
    extra = tuple(getattr(args, "ext", None) or ())
    if extra:
        changes["extensions"] = settings.extensions + extra
    return replace(settings, **changes)
