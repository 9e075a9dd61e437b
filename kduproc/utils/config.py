"""kduproc.utils.config – user paths and TOML config loader"""

from __future__ import annotations

import copy
import os
import pathlib
import tomllib
from functools import lru_cache
from typing import Any, Dict, cast

from kduproc.exceptions import ConfigurationError

DEFAULT_CONFIG_DIR = pathlib.Path.home() / ".config" / "kduproc"
# Allow overriding the config directory at import time via environment variable
CONFIG_DIR = pathlib.Path(os.getenv("KDUPROC_CONFIG_DIR", str(DEFAULT_CONFIG_DIR))).expanduser()
CONFIG_FILE = CONFIG_DIR / "config.toml"

POST_PROCESSOR_NAMES = ("raster", "graph")


def get_config_path() -> pathlib.Path:
    """Return config file path honoring environment variables."""
    env_file = os.getenv("KDUPROC_CONFIG_FILE")
    if env_file:
        return pathlib.Path(env_file).expanduser()
    env_dir = os.getenv("KDUPROC_CONFIG_DIR")
    if env_dir:
        return pathlib.Path(env_dir).expanduser() / "config.toml"
    return CONFIG_FILE


DEFAULTS: Dict[str, Any] = {
    "kakadu": {
        "path_to_binaries": "",
        "path_to_stdout_symlink": str(CONFIG_DIR / "stdout.ppm"),
        "post_processor": "raster",
        "decode_timeout": 120.0,
        "max_output_mb": 1024,
        "tolerate_silent_exit": True,
        "max_reduction_factor": 5,
    },
    "encoding": {
        "jpg_quality": 80,
    },
    "logging": {
        "level": "INFO",
    },
}

# Expected config schema for validation
EXPECTED_SCHEMA: Dict[str, Any] = {
    "kakadu": {
        "path_to_binaries": str,
        "path_to_stdout_symlink": str,
        "post_processor": str,
        "decode_timeout": (int, float),
        "max_output_mb": int,
        "tolerate_silent_exit": bool,
        "max_reduction_factor": int,
    },
    "encoding": {"jpg_quality": int},
    "logging": {"level": str},
}


def _type_name(expected: Any) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return cast(type, expected).__name__


def _validate_config(data: Dict[str, Any]) -> None:
    errors: list[str] = []
    for key, expected in EXPECTED_SCHEMA.items():
        value = data.get(key)
        if not isinstance(value, dict):
            errors.append(f"section '{key}' must be a table")
            continue
        for sub, exptype in expected.items():
            subval = value.get(sub)
            # bool is an int subclass; reject it where a number is expected
            wrong_bool = isinstance(subval, bool) and exptype is not bool
            if wrong_bool or not isinstance(subval, exptype):
                errors.append(f"'{key}.{sub}' must be {_type_name(exptype)}")

    kakadu = data.get("kakadu", {})
    if isinstance(kakadu, dict):
        if kakadu.get("post_processor") not in POST_PROCESSOR_NAMES:
            errors.append(f"'kakadu.post_processor' must be one of {', '.join(POST_PROCESSOR_NAMES)}")
        factor = kakadu.get("max_reduction_factor")
        if isinstance(factor, int) and not 0 <= factor <= 5:
            errors.append("'kakadu.max_reduction_factor' must be between 0 and 5")
    encoding = data.get("encoding")
    quality = encoding.get("jpg_quality") if isinstance(encoding, dict) else None
    if isinstance(quality, int) and not 1 <= quality <= 100:
        errors.append("'encoding.jpg_quality' must be between 1 and 100")

    if errors:
        raise ConfigurationError("Invalid configuration: " + "; ".join(errors))


@lru_cache(maxsize=1)
def _load_config() -> Dict[str, Any]:
    """Load configuration from TOML and validate."""
    data: Dict[str, Any] = copy.deepcopy(DEFAULTS)

    cfg_path = get_config_path()
    if cfg_path.exists():
        with cfg_path.open("rb") as fp:
            try:
                loaded_data = tomllib.load(fp)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigurationError(f"Invalid TOML in {cfg_path}: {exc}") from exc

        for key, value in loaded_data.items():
            if key in data and isinstance(data[key], dict) and isinstance(value, dict):
                data[key].update(value)
            else:
                data[key] = value

    _validate_config(data)
    return data


# public helpers -----------------------------------------------------------


def _kakadu_setting(name: str) -> Any:
    return _load_config()["kakadu"][name]


def get_binaries_dir() -> pathlib.Path | None:
    """Directory holding the kdu_* binaries, or None to rely on PATH."""
    bin_dir = cast(str, _kakadu_setting("path_to_binaries"))
    if not bin_dir:
        return None
    return pathlib.Path(bin_dir).expanduser()


def get_stdout_symlink_path() -> str:
    """Destination passed to ``kdu_expand -o``; a .ppm symlink to stdout."""
    path = cast(str, _kakadu_setting("path_to_stdout_symlink"))
    # Keep a bare separator (e.g. "/") intact
    return str(pathlib.Path(path).expanduser()).rstrip(os.sep) or os.sep


def get_post_processor_name() -> str:
    return cast(str, _kakadu_setting("post_processor"))


def get_decode_timeout() -> float | None:
    """Seconds to wait for the decoder; None when disabled (0)."""
    timeout = float(_kakadu_setting("decode_timeout"))
    return timeout if timeout > 0 else None


def get_max_output_bytes() -> int:
    return cast(int, _kakadu_setting("max_output_mb")) * 1024 * 1024


def get_tolerate_silent_exit() -> bool:
    return cast(bool, _kakadu_setting("tolerate_silent_exit"))


def get_max_reduction_factor() -> int:
    return cast(int, _kakadu_setting("max_reduction_factor"))


def get_jpg_quality() -> int:
    return cast(int, _load_config()["encoding"]["jpg_quality"])


def get_logging_level() -> str:
    return cast(str, _load_config()["logging"]["level"])
