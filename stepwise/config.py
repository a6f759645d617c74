"""Configuration file loading and merging for stepwise.

Reads TOML config from ~/.config/stepwise/config.toml (global) and
<project>/stepwise.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .agent import Limits
from .errors import ConfigError
from .storage import DEFAULT_MODEL

_UNSET = object()  # Sentinel for "not set by CLI"

PROJECT_CONFIG = "stepwise.toml"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_key": str,
    "base_url": str,
    "max_hops": int,
    "max_context_chars": int,
    "command_timeout": int,
    "api_timeout": (int, float),
    "rate_limit_retries": int,
    "rate_limit_delay": (int, float),
    "color": bool,
    "quiet": bool,
}

_POSITIVE_KEYS = {
    "max_hops",
    "max_context_chars",
    "command_timeout",
    "api_timeout",
}

_NON_NEGATIVE_KEYS = {"rate_limit_retries", "rate_limit_delay"}

_LIMIT_KEYS = (
    "max_hops",
    "max_context_chars",
    "command_timeout",
    "api_timeout",
    "rate_limit_retries",
    "rate_limit_delay",
)

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": None,
    "api_key": None,
    "base_url": None,
    "max_hops": None,
    "max_context_chars": None,
    "command_timeout": None,
    "api_timeout": None,
    "rate_limit_retries": None,
    "rate_limit_delay": None,
    "color": False,
    "no_color": False,
    "quiet": False,
}


# --- Internal helpers ---


def _global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "stepwise"
    return Path.home() / ".config" / "stepwise"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate value types and ranges in a parsed config dict.

    Raises ConfigError for mismatches. Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int in Python, so isinstance(True, int) is True.
        # Reject bools for non-bool fields explicitly.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )
        if key in _POSITIVE_KEYS and value <= 0:
            raise ConfigError(f"{source}: {key!r} must be positive, got {value}")
        if key in _NON_NEGATIVE_KEYS and value < 0:
            raise ConfigError(f"{source}: {key!r} must not be negative, got {value}")


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using an environment variable.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(project_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict holding only keys actually set in config files
    (no defaults injected).
    """
    global_path = _global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(project_dir).resolve() / PROJECT_CONFIG
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to the argparse namespace where the CLI didn't set one.

    Remaining _UNSET sentinels are then replaced with hardcoded defaults.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive --color/--no-color pair
    if "color" in config and _is_unset("color") and _is_unset("no_color"):
        args.color = config["color"]
        args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def config_to_limits(args: argparse.Namespace) -> Limits:
    """Build loop limits from resolved args, keeping defaults for anything unset."""
    overrides = {}
    for key in _LIMIT_KEYS:
        value = getattr(args, key, None)
        if value is not None and value is not _UNSET:
            overrides[key] = value
    return Limits(**overrides)


def resolve_api_key(args: argparse.Namespace) -> str | None:
    """Explicit key first, then STEPWISE_API_KEY.

    None lets LiteLLM fall back to the provider's own variable (GEMINI_API_KEY etc.).
    """
    if args.api_key:
        return args.api_key
    return os.environ.get("STEPWISE_API_KEY") or None


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# stepwise configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/stepwise.toml' if project else '~/.config/stepwise/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Model ---",
        f'# model = "{DEFAULT_MODEL}"   # any LiteLLM model string',
        '# api_key = "..."            # prefer provider env vars (e.g. GEMINI_API_KEY)',
        '# base_url = "https://..."',
        "",
        "# --- Loop limits ---",
        "# max_hops = 25",
        "# max_context_chars = 100000",
        "# command_timeout = 60",
        "# api_timeout = 600",
        "# rate_limit_retries = 3",
        "# rate_limit_delay = 60",
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
