"""End-to-end build: geometry -> simplify -> join -> color scale -> map file."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Callable, Sequence

import requests

from .assemble import build_map, save_map
from .colors import build_scale, legend_ticks, sample_palette
from .config import AppConfig
from .io_ne import NaturalEarthRepository
from .join import join_statistics
from .models import (
    POINT_CATEGORIES,
    DataSourceError,
    PointCategory,
    PointFeature,
    StatisticsResult,
)
from .selfcontained import AssetFetcher, InlineReport, cache_icon, inline_assets, to_data_uri
from .simplify import count_vertices, simplify
from .util import format_code_list
from .worldbank import WorldBankClient


_LOGGER = logging.getLogger("popmap.pipeline")


@dataclass(slots=True)
class BuildReport:
    output_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)
    steps: dict[str, str] = field(default_factory=dict)
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


def run_build(cfg: AppConfig) -> BuildReport:
    """Build the map with the live Natural Earth and World Bank sources."""
    with requests.Session() as session:
        session.headers.update({"User-Agent": cfg.sources.user_agent})
        repo = NaturalEarthRepository(
            cfg.paths.cache_dir,
            base_url=cfg.sources.natural_earth_base_url,
            session=session,
            timeout_s=cfg.sources.request_timeout_s,
        )
        stats_client = WorldBankClient(
            session=session,
            base_url=cfg.statistics.base_url,
            timeout_s=cfg.sources.request_timeout_s,
            per_page=cfg.statistics.per_page,
        )
        fetch = AssetFetcher(session, timeout_s=cfg.sources.request_timeout_s)
        return build_population_map(cfg, repo=repo, stats_client=stats_client, fetch=fetch)


def build_population_map(
    cfg: AppConfig,
    *,
    repo: Any,
    stats_client: Any | None,
    fetch: Callable[[str], bytes] | None = None,
) -> BuildReport:
    """Run every stage against the given sources.

    `repo` provides `load_countries(tier)` and `load_points(tier, category)`;
    `stats_client` provides `fetch_indicator(indicator, start, end)`. A missing
    geometry layer aborts the build; statistics and point layers degrade.
    """
    report = BuildReport()
    t0 = time.perf_counter()

    try:
        countries = repo.load_countries(cfg.sources.geometry_tier)
    except DataSourceError as exc:
        report.add_error(f"Country geometry unavailable: {exc}")
        report.steps["load_geometry"] = "error"
        return report
    if not countries:
        report.add_error("Country geometry source returned no features.")
        report.steps["load_geometry"] = "error"
        return report
    report.steps["load_geometry"] = "ok"

    vertices_before = sum(count_vertices(feature.geometry) for feature in countries)
    countries = simplify(countries, cfg.simplify.retention_fraction)
    vertices_after = sum(count_vertices(feature.geometry) for feature in countries)
    report.steps["simplify"] = "ok"
    report.add_info(
        f"Simplified {len(countries)} countries: {vertices_before} -> {vertices_after} vertices "
        f"(retention_fraction={cfg.simplify.retention_fraction})"
    )

    statistics = fetch_statistics(cfg, stats_client, report)
    joined = join_statistics(countries, statistics)
    join_report = joined.report
    report.steps["join_statistics"] = "ok" if statistics.available else "fallback"
    report.add_info(
        "Population join: "
        f"statistic={join_report.from_statistic}, "
        f"estimate={join_report.from_estimate}, "
        f"dropped={len(join_report.dropped)}"
    )
    if join_report.dropped:
        report.add_info(
            "Dropped for missing or non-positive population: "
            + format_code_list(join_report.dropped)
        )
    if not joined.features:
        report.add_error("No country has a positive population after the statistics join.")
        return report

    palette = sample_palette(cfg.style.palette, cfg.style.palette_size)
    scale = build_scale(
        [feature.log_pop_est for feature in joined.features],
        palette,
        cfg.style.na_color,
    )
    ticks = legend_ticks(scale, cfg.view.legend_ticks)
    report.steps["color_scale"] = "ok"
    report.add_info(
        f"Color domain log10(population) = [{scale.vmin:.3f}, {scale.vmax:.3f}] "
        f"over {len(palette)} stops"
    )

    points = load_overlays(cfg, repo, report)
    icon_images = resolve_icon_images(cfg, fetch, report) if cfg.output.self_contained else {}

    fmap = build_map(
        joined.features,
        scale,
        points,
        style=cfg.style,
        view=cfg.view,
        ticks=ticks,
        icon_images=icon_images,
    )

    inline_report = InlineReport()
    postprocess: Callable[[str], str] | None = None
    if cfg.output.self_contained and fetch is not None:
        postprocess = partial(inline_assets, fetch=fetch, report=inline_report)

    try:
        report.output_path = save_map(fmap, cfg.project.output_html, postprocess=postprocess)
    except OSError as exc:
        report.add_error(f"Failed writing map to {cfg.project.output_html}: {exc}")
        report.steps["write_html"] = "error"
        return report
    report.steps["write_html"] = "ok"
    if inline_report.failed:
        report.add_warning(
            f"{len(inline_report.failed)} assets kept remote references: "
            + ", ".join(inline_report.failed[:5])
        )
    if inline_report.inlined:
        report.add_info(f"Inlined {len(inline_report.inlined)} remote assets")

    report.summary = {
        **join_report.to_counts(),
        "vertices_before_simplify": vertices_before,
        "vertices_after_simplify": vertices_after,
        **{f"{category}_rendered": len(points.get(category, ())) for category in POINT_CATEGORIES},
    }
    report.add_info(
        f"Map written to {report.output_path} in {time.perf_counter() - t0:.1f}s"
    )
    return report


def fetch_statistics(cfg: AppConfig, stats_client: Any | None, report: BuildReport) -> StatisticsResult:
    stats_cfg = cfg.statistics
    if not stats_cfg.enabled or stats_client is None:
        report.add_info("Statistics join disabled; using baked-in population estimates.")
        return StatisticsResult.unavailable(
            indicator=stats_cfg.indicator,
            start_year=stats_cfg.start_year,
            end_year=stats_cfg.end_year,
            error="disabled",
        )
    try:
        return stats_client.fetch_indicator(
            stats_cfg.indicator,
            stats_cfg.start_year,
            stats_cfg.end_year,
        )
    except DataSourceError as exc:
        _LOGGER.warning("Statistics provider unavailable, falling back to estimates: %s", exc)
        report.add_warning(f"Statistics provider unavailable; using baked-in estimates ({exc})")
        return StatisticsResult.unavailable(
            indicator=stats_cfg.indicator,
            start_year=stats_cfg.start_year,
            end_year=stats_cfg.end_year,
            error=str(exc),
        )


def load_overlays(
    cfg: AppConfig,
    repo: Any,
    report: BuildReport,
    categories: Sequence[PointCategory] = POINT_CATEGORIES,
) -> dict[PointCategory, list[PointFeature]]:
    """Load each point category independently; a failing one is left out."""
    points: dict[PointCategory, list[PointFeature]] = {}
    for category in categories:
        try:
            points[category] = repo.load_points(cfg.sources.points_tier, category)
        except DataSourceError as exc:
            _LOGGER.warning("Skipping %s layer: %s", category, exc)
            report.add_warning(f"{category} layer skipped: {exc}")
            report.steps[f"load_{category}"] = "skipped"
            continue
        report.steps[f"load_{category}"] = "ok"
    return points


def resolve_icon_images(
    cfg: AppConfig,
    fetch: Callable[[str], bytes] | None,
    report: BuildReport,
) -> dict[PointCategory, str]:
    """Data URIs for the marker icons, read through the local icon cache.

    Categories whose icon cannot be fetched keep their remote URL.
    """
    if fetch is None:
        return {}
    urls: dict[PointCategory, str] = {
        "airports": cfg.style.airport_icon_url,
        "ports": cfg.style.port_icon_url,
    }
    images: dict[PointCategory, str] = {}
    for category, url in urls.items():
        try:
            path = cache_icon(url, cfg.paths.cache_dir, fetch)
            images[category] = to_data_uri(path.read_bytes(), url)
        except (DataSourceError, OSError) as exc:
            report.add_warning(f"{category} icon stays remote: {exc}")
    return images


def format_build_lines(report: BuildReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append("[OK] Map build completed with no errors.")
    return lines
