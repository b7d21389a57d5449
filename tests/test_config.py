from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from pastforward.config import DEFAULT_CONFIG, ENV_CONFIG_PATH, load_config


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv(ENV_CONFIG_PATH, raising=False)


def _write(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_missing_default_file_is_created_with_defaults(tmp_path: Path) -> None:
    default_path = tmp_path / "config" / "config.yaml"

    config = load_config(config_path=default_path, base_dir=tmp_path)

    assert default_path.exists()
    assert yaml.safe_load(default_path.read_text(encoding="utf-8")) == DEFAULT_CONFIG
    assert config["scheduler"]["concurrency_limit"] == 2
    assert config["album"]["canvas_width"] == 2480


def test_override_file_is_merged_last(tmp_path: Path) -> None:
    default_path = _write(tmp_path / "config.yaml", {"scheduler": {"concurrency_limit": 3}})
    override = _write(tmp_path / "override.yaml", {"generation": {"model": "other-model"}})

    result = load_config(override, config_path=default_path, base_dir=tmp_path, include_sources=True)

    assert result.config["scheduler"]["concurrency_limit"] == 3
    assert result.config["generation"]["model"] == "other-model"
    assert result.config["generation"]["timeout"] == DEFAULT_CONFIG["generation"]["timeout"]
    assert result.sources == (str(default_path.resolve()), str(override.resolve()))


def test_environment_file_overrides_default(tmp_path: Path, monkeypatch) -> None:
    default_path = _write(tmp_path / "config.yaml", {})
    env_file = _write(tmp_path / "env.yaml", {"album": {"cols": 3}})
    monkeypatch.setenv(ENV_CONFIG_PATH, str(env_file))

    config = load_config(config_path=default_path, base_dir=tmp_path)

    assert config["album"]["cols"] == 3


def test_relative_paths_resolve_against_base_dir(tmp_path: Path) -> None:
    default_path = _write(tmp_path / "config.yaml", {"paths": {"outputs": "out/images"}})

    config = load_config(config_path=default_path, base_dir=tmp_path)

    assert Path(config["paths"]["outputs"]) == (tmp_path / "out" / "images").resolve()
    assert config["paths"]["modes_file"] is None


def test_missing_explicit_override_raises(tmp_path: Path) -> None:
    default_path = _write(tmp_path / "config.yaml", {})

    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", config_path=default_path, base_dir=tmp_path)


@pytest.mark.parametrize(
    "overlay",
    [
        {"scheduler": {"concurrency_limit": 0}},
        {"scheduler": {"regenerate_failed": -1}},
        {"generation": {"timeout": 0}},
        {"album": {"jpeg_quality": 1.5}},
        {"album": {"cols": 0}},
    ],
)
def test_invalid_values_are_rejected(tmp_path: Path, overlay) -> None:
    default_path = _write(tmp_path / "config.yaml", overlay)

    with pytest.raises(ValueError):
        load_config(config_path=default_path, base_dir=tmp_path)


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    default_path = tmp_path / "config.yaml"
    default_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(config_path=default_path, base_dir=tmp_path)
