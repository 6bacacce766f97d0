from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Iterable

import pytest
from shapely.geometry import Polygon, box

from popmap.config import AppConfig, load_config
from popmap.models import (
    CountryFeature,
    DataSourceError,
    PointFeature,
    StatisticRecord,
    StatisticsResult,
)

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def cfg(tmp_path: Path) -> AppConfig:
    base = load_config(REPO_ROOT / "config.yaml")
    return replace(
        base,
        project=replace(base.project, output_html=tmp_path / "map.html"),
        paths=replace(
            base.paths,
            cache_dir=tmp_path / "cache",
            manifests_dir=tmp_path / "manifests",
            logs_dir=tmp_path / "logs",
        ),
        output=replace(base.output, self_contained=False),
    )


def country(iso3: str, pop_est: float | None, geometry: Polygon | None = None, name: str | None = None) -> CountryFeature:
    return CountryFeature(
        name=name or f"Country {iso3}",
        iso3=iso3,
        pop_est=pop_est,
        geometry=geometry if geometry is not None else box(0, 0, 1, 1),
    )


def statistics(records: Iterable[tuple[str, float | None]]) -> StatisticsResult:
    return StatisticsResult(
        status="available",
        indicator="SP.POP.TOTL",
        start_year=2023,
        end_year=2023,
        records=tuple(StatisticRecord(iso3=iso3, value=value) for iso3, value in records),
    )


class FakeRepository:
    """In-memory stand-in for NaturalEarthRepository."""

    def __init__(
        self,
        countries: list[CountryFeature],
        points: dict[str, list[PointFeature]] | None = None,
        *,
        failing: Iterable[str] = (),
    ) -> None:
        self.countries = countries
        self.points = points or {}
        self.failing = set(failing)
        self.calls: list[tuple[str, str]] = []

    def load_countries(self, tier: str) -> list[CountryFeature]:
        self.calls.append(("countries", tier))
        if "countries" in self.failing:
            raise DataSourceError("geometry provider unreachable")
        return list(self.countries)

    def load_points(self, tier: str, category: str) -> list[PointFeature]:
        self.calls.append((category, tier))
        if category in self.failing:
            raise DataSourceError(f"{category} provider unreachable")
        return list(self.points.get(category, []))


class FakeStatisticsClient:
    def __init__(self, result: StatisticsResult | None = None, *, fail: bool = False) -> None:
        self.result = result
        self.fail = fail

    def fetch_indicator(self, indicator: str, start_year: int, end_year: int) -> StatisticsResult:
        if self.fail or self.result is None:
            raise DataSourceError("statistics provider unreachable")
        return self.result
