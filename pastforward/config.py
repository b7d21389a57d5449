"""Configuration loading and validation for PastForward."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Tuple

import yaml


PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_PATH = CONFIG_DIR / "config.yaml"
ENV_CONFIG_PATH = "PASTFORWARD_CONFIG"


DEFAULT_CONFIG: Dict[str, Any] = {
    "generation": {
        "base_url": "https://generativelanguage.googleapis.com",
        "model": "gemini-2.5-flash-image-preview",
        "api_key_env": "GEMINI_API_KEY",
        "timeout": 120,
        "retry": {
            "max_attempts": 3,
            "backoff_seconds": 2.0,
            "max_backoff_seconds": 30.0,
        },
    },
    "scheduler": {
        "concurrency_limit": 2,
        "regenerate_failed": 0,
    },
    "album": {
        "canvas_width": 2480,
        "canvas_height": 3508,
        "cols": 2,
        "padding": 100,
        "header_height": 400,
        "rotation_jitter": 0.05,
        "jpeg_quality": 0.9,
        "fonts": {
            "title": ["PermanentMarker-Regular.ttf", "DejaVuSans-Bold.ttf"],
            "subtitle": ["Caveat-Regular.ttf", "DejaVuSans.ttf"],
            "caption": ["PermanentMarker-Regular.ttf", "DejaVuSans-Bold.ttf"],
        },
    },
    "paths": {
        "outputs": "data/outputs",
        "summaries": "data/summaries",
        "logs": "logs",
        "modes_file": None,
    },
    "logging": {
        "console_level": "INFO",
        "file_level": "DEBUG",
        "json_logs": False,
        "color": True,
    },
}


@dataclass(frozen=True)
class ConfigLoadResult:
    """Container for the merged configuration."""

    config: Dict[str, Any]
    sources: Tuple[str, ...]


def _ensure_default_config(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(DEFAULT_CONFIG, handle, sort_keys=True)
    tmp.replace(path)


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, MutableMapping):
        raise ValueError(f"Configuration file {path} must contain a mapping at the root")
    return dict(data)


def _deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MutableMapping)
            and isinstance(value, MutableMapping)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_path(base_dir: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    return (base_dir / path).resolve()


def _apply_path_defaults(config: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    paths = dict(config.get("paths", {}))
    for key, rel_path in paths.items():
        if isinstance(rel_path, str) and rel_path:
            paths[key] = str(_resolve_path(base_dir, rel_path))
    config["paths"] = paths
    return config


def _collect_sources(config_path: Path) -> Iterable[Tuple[Path, bool]]:
    yield config_path, True
    env_path = os.getenv(ENV_CONFIG_PATH)
    if env_path:
        yield Path(env_path).expanduser(), False


def _validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    for section in ("generation", "scheduler", "album"):
        if not isinstance(config.get(section), MutableMapping):
            raise ValueError(f"Configuration must define a '{section}' section")
    limit = config["scheduler"].get("concurrency_limit")
    if limit is None or int(limit) < 1:
        raise ValueError("scheduler.concurrency_limit must be a positive integer")
    if int(config["scheduler"].get("regenerate_failed") or 0) < 0:
        raise ValueError("scheduler.regenerate_failed must not be negative")
    timeout = config["generation"].get("timeout")
    if timeout is None or float(timeout) <= 0:
        raise ValueError("generation.timeout must be positive")
    quality = float(config["album"].get("jpeg_quality", 0))
    if not 0 < quality <= 1:
        raise ValueError("album.jpeg_quality must be within (0, 1]")
    if int(config["album"].get("cols", 0)) < 1:
        raise ValueError("album.cols must be a positive integer")
    return config


def load_config(
    path: str | Path | None = None,
    *,
    config_path: str | Path | None = None,
    base_dir: str | Path | None = None,
    include_sources: bool = False,
) -> ConfigLoadResult | Dict[str, Any]:
    """Load and validate configuration settings.

    ``path`` is an explicit override file applied last (the CLI ``--config``
    flag). ``config_path`` replaces the default ``config/config.yaml``, which
    is created with the defaults when missing.
    """

    config: Dict[str, Any] = json.loads(json.dumps(DEFAULT_CONFIG))
    sources: list[str] = []
    default_path = Path(config_path) if config_path else CONFIG_PATH

    for source, required in _collect_sources(default_path):
        if required:
            _ensure_default_config(source)
        if not source.exists():
            continue
        config = _deep_merge(config, _load_yaml(source))
        sources.append(str(source.resolve()))

    if path:
        override = Path(path).expanduser()
        if not override.exists():
            raise FileNotFoundError(f"Configuration file not found: {override}")
        config = _deep_merge(config, _load_yaml(override))
        sources.append(str(override.resolve()))

    config = json.loads(json.dumps(config))  # deep copy via JSON for immutability
    config = _apply_path_defaults(config, Path(base_dir) if base_dir else PROJECT_ROOT)
    config = _validate_config(config)

    result = ConfigLoadResult(config=config, sources=tuple(sources))
    if include_sources:
        return result
    return result.config


__all__ = ["DEFAULT_CONFIG", "ConfigLoadResult", "load_config"]
