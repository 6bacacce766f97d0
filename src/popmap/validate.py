"""Offline validation of the configuration before a build touches the network."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence
from urllib.parse import urlparse

from .config import AppConfig


@dataclass(slots=True)
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


class Validator:
    """Checks values the typed config loader cannot judge on its own."""

    def __init__(self, cfg: AppConfig) -> None:
        self.cfg = cfg

    def run(self) -> ValidationReport:
        report = ValidationReport()
        self._validate_colors(report)
        self._validate_tiles(report)
        self._validate_sources(report)
        self._validate_icons(report)
        self._validate_output(report)
        return report

    def _validate_colors(self, report: ValidationReport) -> None:
        is_color_like = _require_is_color_like()
        style = self.cfg.style
        for idx, color in enumerate(style.palette):
            if not is_color_like(color):
                report.add_error(f"style.palette[{idx}] is not a valid color: '{color}'")
        for field_name, color in (
            ("style.na_color", style.na_color),
            ("style.border_color", style.border_color),
        ):
            if not is_color_like(color):
                report.add_error(f"{field_name} is not a valid color: '{color}'")
        report.add_info(
            f"Palette: {len(style.palette)} anchors resampled to {style.palette_size} stops"
        )

    def _validate_tiles(self, report: ValidationReport) -> None:
        providers = _require_xyzservices_providers()
        try:
            provider = providers.query_name(self.cfg.view.tiles)
        except ValueError:
            report.add_error(f"view.tiles is not a known xyzservices provider: '{self.cfg.view.tiles}'")
            return
        report.add_info(f"Basemap tiles: {provider.name}")

    def _validate_sources(self, report: ValidationReport) -> None:
        sources = self.cfg.sources
        if sources.points_tier != "fine":
            report.add_warning(
                "Natural Earth publishes airports and ports only at 10m; "
                f"points_tier='{sources.points_tier}' will leave the marker layers empty."
            )
        for field_name, url in (
            ("sources.natural_earth_base_url", sources.natural_earth_base_url),
            ("statistics.base_url", self.cfg.statistics.base_url),
        ):
            if not _is_http_url(url):
                report.add_error(f"{field_name} must be an http(s) URL: '{url}'")
        if not self.cfg.statistics.enabled:
            report.add_info("Statistics join disabled; baked-in estimates will be used.")

    def _validate_icons(self, report: ValidationReport) -> None:
        for field_name, url in (
            ("style.airport_icon_url", self.cfg.style.airport_icon_url),
            ("style.port_icon_url", self.cfg.style.port_icon_url),
        ):
            if not _is_http_url(url):
                report.add_error(f"{field_name} must be an http(s) URL: '{url}'")

    def _validate_output(self, report: ValidationReport) -> None:
        output_html = self.cfg.project.output_html
        if output_html.suffix.casefold() not in {".html", ".htm"}:
            report.add_warning(f"Output file does not end in .html: {output_html}")
        if output_html.exists():
            report.add_info(f"Existing output will be overwritten: {output_html}")


def format_report_lines(report: ValidationReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append("[OK] Validation passed with no errors.")
    return lines


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _require_is_color_like() -> Any:
    try:
        from matplotlib.colors import is_color_like
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for color validation") from exc
    return is_color_like


def _require_xyzservices_providers() -> Any:
    try:
        from xyzservices import providers
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("xyzservices is required for basemap tiles") from exc
    return providers
