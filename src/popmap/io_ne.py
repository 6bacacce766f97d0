"""Natural Earth dataset loading interfaces."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import requests

from .config import RESOLUTION_TIERS
from .models import CountryFeature, DataSourceError, PointCategory, PointFeature


_LOGGER = logging.getLogger("popmap.io_ne")

_COUNTRY_LAYER = "admin_0_countries"
_DOWNLOAD_CHUNK_BYTES = 1024 * 1024


def _first_existing_column(columns: Iterable[str], candidates: Sequence[str]) -> str | None:
    existing = {col.lower(): col for col in columns}
    for candidate in candidates:
        match = existing.get(candidate.lower())
        if match:
            return match
    return None


class NaturalEarthRepository:
    """Download-once access to Natural Earth cultural layers.

    Archives are cached under `cache_dir` and read with GeoPandas. Every
    failure to obtain or read a layer surfaces as `DataSourceError`.
    """

    # per-row fallback order; ISO_A3 is -99 for a few disputed or partial states
    COUNTRY_ISO_COLUMNS = ("ISO_A3", "ISO_A3_EH", "WB_A3", "ADM0_A3")
    COUNTRY_NAME_COLUMNS = ("NAME", "NAME_LONG", "ADMIN")
    COUNTRY_POP_COLUMNS = ("POP_EST",)
    POINT_NAME_COLUMNS = ("NAME", "NAME_EN", "ABBREV")

    def __init__(
        self,
        cache_dir: Path,
        *,
        base_url: str,
        session: requests.Session,
        timeout_s: float,
    ) -> None:
        self.cache_dir = cache_dir
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._timeout_s = timeout_s

    def archive_url(self, tier: str, layer: str) -> str:
        scale = _scale_for_tier(tier)
        return f"{self.base_url}/{scale}m/cultural/ne_{scale}m_{layer}.zip"

    def archive_path(self, tier: str, layer: str) -> Path:
        scale = _scale_for_tier(tier)
        return self.cache_dir / f"ne_{scale}m_{layer}.zip"

    def ensure_archive(self, tier: str, layer: str) -> Path:
        """Return the cached archive for a layer, downloading it when absent."""
        path = self.archive_path(tier, layer)
        if path.exists():
            _LOGGER.debug("Reusing cached Natural Earth archive %s", path)
            return path

        url = self.archive_url(tier, layer)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        _LOGGER.info("Downloading %s", url)
        try:
            with self._session.get(url, stream=True, timeout=self._timeout_s) as response:
                response.raise_for_status()
                with tmp_path.open("wb") as fh:
                    for chunk in response.iter_content(chunk_size=_DOWNLOAD_CHUNK_BYTES):
                        fh.write(chunk)
            tmp_path.replace(path)
        except (requests.RequestException, OSError) as exc:
            raise DataSourceError(f"Failed downloading {url}: {exc}") from exc
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return path

    def read_layer(self, tier: str, layer: str) -> Any:
        """Read one layer as a GeoDataFrame in EPSG:4326."""
        path = self.ensure_archive(tier, layer)
        gpd = self._require_geopandas()
        try:
            frame = gpd.read_file(path)
        except Exception as exc:
            raise DataSourceError(f"Failed reading Natural Earth archive {path}: {exc}") from exc
        if frame.crs is not None and frame.crs.to_epsg() != 4326:
            frame = frame.to_crs(epsg=4326)
        return frame

    def load_countries(self, tier: str) -> list[CountryFeature]:
        """Load admin-0 country polygons with name, ISO3 and baked-in population."""
        frame = self.read_layer(tier, _COUNTRY_LAYER)
        features = self.countries_from_frame(frame)
        if not features:
            raise DataSourceError(f"Natural Earth {tier} countries layer contained no polygons")
        _LOGGER.info("Loaded %d country geometries (tier=%s)", len(features), tier)
        return features

    def countries_from_frame(self, frame: Any) -> list[CountryFeature]:
        columns = [str(col) for col in frame.columns]
        name_col = _first_existing_column(columns, self.COUNTRY_NAME_COLUMNS)
        pop_col = _first_existing_column(columns, self.COUNTRY_POP_COLUMNS)
        iso_cols = _existing_columns(columns, self.COUNTRY_ISO_COLUMNS)
        if name_col is None or not iso_cols or pop_col is None:
            raise DataSourceError(
                "Natural Earth countries layer is missing name/ISO3/population columns. "
                f"Available columns: {', '.join(columns)}"
            )

        features: list[CountryFeature] = []
        for row in frame.itertuples(index=False):
            row_dict = row._asdict()
            geometry = row_dict.get("geometry")
            if geometry is None or geometry.is_empty:
                continue
            if geometry.geom_type not in {"Polygon", "MultiPolygon"}:
                continue
            features.append(
                CountryFeature(
                    name=_text_or_empty(row_dict.get(name_col)),
                    iso3=_resolve_iso3(row_dict, iso_cols),
                    pop_est=self._to_float_or_none(row_dict.get(pop_col)),
                    geometry=geometry,
                )
            )
        return features

    def load_points(self, tier: str, category: PointCategory) -> list[PointFeature]:
        """Load airports or ports as named points."""
        frame = self.read_layer(tier, category)
        points = self.points_from_frame(frame, category)
        _LOGGER.info("Loaded %d %s (tier=%s)", len(points), category, tier)
        return points

    def points_from_frame(self, frame: Any, category: PointCategory) -> list[PointFeature]:
        columns = [str(col) for col in frame.columns]
        name_col = _first_existing_column(columns, self.POINT_NAME_COLUMNS)
        if name_col is None:
            raise DataSourceError(
                f"Natural Earth {category} layer has no name column. "
                f"Available columns: {', '.join(columns)}"
            )

        points: list[PointFeature] = []
        for row in frame.itertuples(index=False):
            row_dict = row._asdict()
            geometry = row_dict.get("geometry")
            if geometry is None or geometry.is_empty or geometry.geom_type != "Point":
                continue
            name = _text_or_empty(row_dict.get(name_col))
            points.append(
                PointFeature(
                    name=name,
                    lon=float(geometry.x),
                    lat=float(geometry.y),
                    category=category,
                )
            )
        return points

    @staticmethod
    def _to_float_or_none(value: Any) -> float | None:
        try:
            number = float(value) if value is not None else None
        except (TypeError, ValueError):
            return None
        # pandas reports missing numbers as NaN
        if number is None or math.isnan(number):
            return None
        return number

    @staticmethod
    def _require_geopandas() -> Any:
        try:
            import geopandas as gpd
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError("geopandas is required for Natural Earth data loading") from exc
        return gpd


def _scale_for_tier(tier: str) -> int:
    try:
        return RESOLUTION_TIERS[tier.casefold()]
    except KeyError as exc:
        raise ValueError(
            f"Unknown resolution tier '{tier}'. Expected one of: "
            + ", ".join(sorted(RESOLUTION_TIERS))
        ) from exc


def _existing_columns(columns: Iterable[str], candidates: Sequence[str]) -> list[str]:
    by_lower = {col.lower(): col for col in columns}
    found: list[str] = []
    for candidate in candidates:
        match = by_lower.get(candidate.lower())
        if match and match not in found:
            found.append(match)
    return found


def _resolve_iso3(row: Mapping[str, Any], iso_columns: Sequence[str]) -> str:
    """First well-formed code among `iso_columns`, in order; empty when none is valid."""
    for column in iso_columns:
        code = _text_or_empty(row.get(column))
        if _is_iso3(code):
            return code
    return ""


def _is_iso3(code: str) -> bool:
    return len(code) == 3 and code.isalpha() and code.isupper()


def _text_or_empty(value: Any) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ""
    return str(value).strip()
