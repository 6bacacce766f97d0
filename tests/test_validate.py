from __future__ import annotations

from dataclasses import replace

import yaml

from popmap.cli import main
from popmap.validate import Validator, format_report_lines

from conftest import REPO_ROOT


def test_repository_config_validates(cfg):
    report = Validator(cfg).run()

    assert report.ok, report.errors
    assert format_report_lines(report)[-1] == "[OK] Validation passed with no errors."


def test_bad_colors_and_tiles_are_errors(cfg):
    cfg = replace(
        cfg,
        style=replace(cfg.style, na_color="not-a-color", palette=("#bce4d8", "#zzzzzz")),
        view=replace(cfg.view, tiles="Nowhere.Tiles"),
    )

    report = Validator(cfg).run()

    assert not report.ok
    assert any("style.na_color" in error for error in report.errors)
    assert any("style.palette[1]" in error for error in report.errors)
    assert any("view.tiles" in error for error in report.errors)


def test_coarse_points_tier_warns(cfg):
    cfg = replace(cfg, sources=replace(cfg.sources, points_tier="coarse"))

    report = Validator(cfg).run()

    assert report.ok
    assert any("points_tier" in warning for warning in report.warnings)


def test_cli_validate_exit_codes(tmp_path):
    raw = yaml.safe_load((REPO_ROOT / "config.yaml").read_text(encoding="utf-8"))
    good = tmp_path / "good.yaml"
    good.write_text(yaml.safe_dump(raw), encoding="utf-8")
    raw["style"]["port_icon_url"] = "ftp://icons.example/port.png"
    bad = tmp_path / "bad.yaml"
    bad.write_text(yaml.safe_dump(raw), encoding="utf-8")

    assert main(["validate", "--config", str(good)]) == 0
    assert main(["validate", "--config", str(bad)]) == 1
    assert (tmp_path / "build" / "logs" / "build.log").exists()
