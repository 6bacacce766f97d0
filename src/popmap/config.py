"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, cast

import yaml


RESOLUTION_TIERS: dict[str, int] = {"coarse": 110, "medium": 50, "fine": 10}
LEGEND_POSITIONS = ("topright", "topleft", "bottomright", "bottomleft")


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _int(value: Any, field_name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _optional_int(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    return _int(value, field_name)


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _str_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Expected list for '{field_name}'")
    out: list[str] = []
    for idx, item in enumerate(value):
        out.append(_str(item, f"{field_name}[{idx}]"))
    return tuple(out)


def _tier(value: Any, field_name: str) -> str:
    tier = _str(value, field_name).casefold()
    if tier not in RESOLUTION_TIERS:
        raise ValueError(
            f"{field_name} must be one of: " + ", ".join(sorted(RESOLUTION_TIERS))
        )
    return tier


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw)
    return p if p.is_absolute() else root_dir / p


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    name: str
    output_html: Path

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> ProjectConfig:
        return cls(
            name=_str(raw.get("name"), "project.name"),
            output_html=_path_from_cfg(raw.get("output_html"), "project.output_html", root_dir),
        )


@dataclass(frozen=True, slots=True)
class PathsConfig:
    cache_dir: Path
    manifests_dir: Path
    logs_dir: Path

    @property
    def build_directories(self) -> tuple[Path, ...]:
        return (self.cache_dir, self.manifests_dir, self.logs_dir)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> PathsConfig:
        return cls(
            cache_dir=_path_from_cfg(raw.get("cache_dir"), "paths.cache_dir", root_dir),
            manifests_dir=_path_from_cfg(raw.get("manifests_dir"), "paths.manifests_dir", root_dir),
            logs_dir=_path_from_cfg(raw.get("logs_dir"), "paths.logs_dir", root_dir),
        )


@dataclass(frozen=True, slots=True)
class SourcesConfig:
    geometry_tier: str
    points_tier: str
    natural_earth_base_url: str
    request_timeout_s: float
    user_agent: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> SourcesConfig:
        timeout = _float(raw.get("request_timeout_s"), "sources.request_timeout_s")
        if timeout <= 0:
            raise ValueError("sources.request_timeout_s must be > 0")
        return cls(
            geometry_tier=_tier(raw.get("geometry_tier"), "sources.geometry_tier"),
            points_tier=_tier(raw.get("points_tier"), "sources.points_tier"),
            natural_earth_base_url=_str(
                raw.get("natural_earth_base_url"), "sources.natural_earth_base_url"
            ).rstrip("/"),
            request_timeout_s=timeout,
            user_agent=_str(raw.get("user_agent"), "sources.user_agent"),
        )


@dataclass(frozen=True, slots=True)
class StatisticsConfig:
    enabled: bool
    indicator: str
    start_year: int
    end_year: int
    base_url: str
    per_page: int

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> StatisticsConfig:
        start_year = _int(raw.get("start_year"), "statistics.start_year")
        end_year = _int(raw.get("end_year"), "statistics.end_year")
        if start_year > end_year:
            raise ValueError("statistics.start_year cannot be greater than statistics.end_year")
        per_page = _int(raw.get("per_page"), "statistics.per_page")
        if per_page < 1:
            raise ValueError("statistics.per_page must be >= 1")
        return cls(
            enabled=_bool(raw.get("enabled"), "statistics.enabled"),
            indicator=_str(raw.get("indicator"), "statistics.indicator"),
            start_year=start_year,
            end_year=end_year,
            base_url=_str(raw.get("base_url"), "statistics.base_url").rstrip("/"),
            per_page=per_page,
        )


@dataclass(frozen=True, slots=True)
class SimplifyConfig:
    retention_fraction: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> SimplifyConfig:
        fraction = _float(raw.get("retention_fraction"), "simplify.retention_fraction")
        if not 0.0 < fraction <= 1.0:
            raise ValueError("simplify.retention_fraction must be in (0, 1]")
        return cls(retention_fraction=fraction)


@dataclass(frozen=True, slots=True)
class StyleConfig:
    palette: tuple[str, ...]
    palette_size: int
    na_color: str
    fill_opacity: float
    border_color: str
    border_weight: float
    highlight_weight: float
    airport_icon_url: str
    port_icon_url: str
    icon_size_px: int

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> StyleConfig:
        palette = _str_list(raw.get("palette"), "style.palette")
        if len(palette) < 2:
            raise ValueError("style.palette needs at least two colors")
        palette_size = _int(raw.get("palette_size"), "style.palette_size")
        if palette_size < 2:
            raise ValueError("style.palette_size must be >= 2")
        fill_opacity = _float(raw.get("fill_opacity"), "style.fill_opacity")
        if not 0.0 <= fill_opacity <= 1.0:
            raise ValueError("style.fill_opacity must be between 0 and 1")
        icon_size_px = _int(raw.get("icon_size_px"), "style.icon_size_px")
        if icon_size_px < 1:
            raise ValueError("style.icon_size_px must be >= 1")
        return cls(
            palette=palette,
            palette_size=palette_size,
            na_color=_str(raw.get("na_color"), "style.na_color"),
            fill_opacity=fill_opacity,
            border_color=_str(raw.get("border_color"), "style.border_color"),
            border_weight=_float(raw.get("border_weight"), "style.border_weight"),
            highlight_weight=_float(raw.get("highlight_weight"), "style.highlight_weight"),
            airport_icon_url=_str(raw.get("airport_icon_url"), "style.airport_icon_url"),
            port_icon_url=_str(raw.get("port_icon_url"), "style.port_icon_url"),
            icon_size_px=icon_size_px,
        )


@dataclass(frozen=True, slots=True)
class BoundsConfig:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> BoundsConfig:
        bounds = cls(
            south=_float(raw.get("south"), "view.max_bounds.south"),
            west=_float(raw.get("west"), "view.max_bounds.west"),
            north=_float(raw.get("north"), "view.max_bounds.north"),
            east=_float(raw.get("east"), "view.max_bounds.east"),
        )
        if bounds.south >= bounds.north or bounds.west >= bounds.east:
            raise ValueError("view.max_bounds must satisfy south < north and west < east")
        return bounds


@dataclass(frozen=True, slots=True)
class ViewConfig:
    tiles: str
    center_lat: float
    center_lon: float
    zoom_start: int
    min_zoom: int
    max_zoom: int
    world_copy_jump: bool
    max_bounds: BoundsConfig
    legend_title: str
    legend_position: str
    legend_ticks: int
    invalidate_size_delay_ms: int | None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ViewConfig:
        min_zoom = _int(raw.get("min_zoom"), "view.min_zoom")
        max_zoom = _int(raw.get("max_zoom"), "view.max_zoom")
        zoom_start = _int(raw.get("zoom_start"), "view.zoom_start")
        if min_zoom > max_zoom:
            raise ValueError("view.min_zoom cannot be greater than view.max_zoom")
        if not min_zoom <= zoom_start <= max_zoom:
            raise ValueError("view.zoom_start must lie within [view.min_zoom, view.max_zoom]")
        legend_position = _str(raw.get("legend_position"), "view.legend_position").casefold()
        if legend_position not in LEGEND_POSITIONS:
            raise ValueError("view.legend_position must be one of: " + ", ".join(LEGEND_POSITIONS))
        legend_ticks = _int(raw.get("legend_ticks"), "view.legend_ticks")
        if legend_ticks < 2:
            raise ValueError("view.legend_ticks must be >= 2")
        delay = _optional_int(raw.get("invalidate_size_delay_ms"), "view.invalidate_size_delay_ms")
        if delay is not None and delay < 0:
            raise ValueError("view.invalidate_size_delay_ms must be >= 0 or null")
        return cls(
            tiles=_str(raw.get("tiles"), "view.tiles"),
            center_lat=_float(raw.get("center_lat"), "view.center_lat"),
            center_lon=_float(raw.get("center_lon"), "view.center_lon"),
            zoom_start=zoom_start,
            min_zoom=min_zoom,
            max_zoom=max_zoom,
            world_copy_jump=_bool(raw.get("world_copy_jump"), "view.world_copy_jump"),
            max_bounds=BoundsConfig.from_mapping(_mapping(raw.get("max_bounds"), "view.max_bounds")),
            legend_title=_str(raw.get("legend_title"), "view.legend_title"),
            legend_position=legend_position,
            legend_ticks=legend_ticks,
            invalidate_size_delay_ms=delay,
        )


@dataclass(frozen=True, slots=True)
class OutputConfig:
    self_contained: bool

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> OutputConfig:
        return cls(self_contained=_bool(raw.get("self_contained"), "output.self_contained"))


@dataclass(frozen=True, slots=True)
class BuildConfig:
    write_manifest: bool

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> BuildConfig:
        return cls(write_manifest=_bool(raw.get("write_manifest"), "build.write_manifest"))


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path
    project: ProjectConfig
    paths: PathsConfig
    sources: SourcesConfig
    statistics: StatisticsConfig
    simplify: SimplifyConfig
    style: StyleConfig
    view: ViewConfig
    output: OutputConfig
    build: BuildConfig

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path) -> AppConfig:
        root_dir = source_path.parent.resolve()
        return cls(
            source_path=source_path.resolve(),
            project=ProjectConfig.from_mapping(_mapping(raw.get("project"), "project"), root_dir),
            paths=PathsConfig.from_mapping(_mapping(raw.get("paths"), "paths"), root_dir),
            sources=SourcesConfig.from_mapping(_mapping(raw.get("sources"), "sources")),
            statistics=StatisticsConfig.from_mapping(_mapping(raw.get("statistics"), "statistics")),
            simplify=SimplifyConfig.from_mapping(_mapping(raw.get("simplify"), "simplify")),
            style=StyleConfig.from_mapping(_mapping(raw.get("style"), "style")),
            view=ViewConfig.from_mapping(_mapping(raw.get("view"), "view")),
            output=OutputConfig.from_mapping(_mapping(raw.get("output"), "output")),
            build=BuildConfig.from_mapping(_mapping(raw.get("build"), "build")),
        )


def load_config(path: str | Path) -> AppConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return AppConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
