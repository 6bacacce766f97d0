from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from popmap.config import load_config

from conftest import REPO_ROOT


def _write_config(tmp_path: Path, **overrides: dict) -> Path:
    raw = yaml.safe_load((REPO_ROOT / "config.yaml").read_text(encoding="utf-8"))
    for section, values in overrides.items():
        raw[section].update(values)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    return path


def test_repository_config_loads():
    cfg = load_config(REPO_ROOT / "config.yaml")

    assert cfg.simplify.retention_fraction == 0.1
    assert cfg.sources.geometry_tier == "medium"
    assert cfg.sources.points_tier == "fine"
    assert cfg.view.tiles == "CartoDB.Positron"
    assert cfg.view.world_copy_jump is False
    assert cfg.view.max_bounds.south == -90
    assert cfg.style.palette_size == 30
    assert len(cfg.style.palette) == 11
    assert cfg.project.output_html == REPO_ROOT / "map.html"


def test_relative_paths_resolve_against_config_directory(tmp_path):
    cfg = load_config(_write_config(tmp_path))

    assert cfg.paths.cache_dir == tmp_path.resolve() / ".cache" / "natural_earth"
    assert cfg.paths.logs_dir in cfg.paths.build_directories


@pytest.mark.parametrize("fraction", [0, -0.5, 1.01])
def test_retention_fraction_must_be_in_unit_interval(tmp_path, fraction):
    path = _write_config(tmp_path, simplify={"retention_fraction": fraction})

    with pytest.raises(ValueError, match="retention_fraction"):
        load_config(path)


def test_unknown_resolution_tier_is_rejected(tmp_path):
    path = _write_config(tmp_path, sources={"geometry_tier": "ultra"})

    with pytest.raises(ValueError, match="geometry_tier"):
        load_config(path)


def test_zoom_start_outside_range_is_rejected(tmp_path):
    path = _write_config(tmp_path, view={"zoom_start": 12})

    with pytest.raises(ValueError, match="zoom_start"):
        load_config(path)


def test_invalidate_size_delay_can_be_disabled(tmp_path):
    cfg = load_config(_write_config(tmp_path, view={"invalidate_size_delay_ms": None}))

    assert cfg.view.invalidate_size_delay_ms is None


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")
