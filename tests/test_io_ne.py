from __future__ import annotations

import geopandas as gpd
import pytest
import requests
from shapely.geometry import LineString, Point, box

from popmap.io_ne import NaturalEarthRepository
from popmap.join import join_statistics
from popmap.models import DataSourceError

from conftest import statistics


class _FakeResponse:
    def __init__(self, chunks=(), error: Exception | None = None) -> None:
        self._chunks = list(chunks)
        self._error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def raise_for_status(self) -> None:
        if self._error is not None:
            raise self._error

    def iter_content(self, chunk_size: int):
        yield from self._chunks


class _FakeSession:
    def __init__(self, response: _FakeResponse) -> None:
        self.response = response
        self.urls: list[str] = []

    def get(self, url, **kwargs):
        self.urls.append(url)
        return self.response


def _repo(tmp_path, session=None) -> NaturalEarthRepository:
    return NaturalEarthRepository(
        tmp_path,
        base_url="https://naciscdn.org/naturalearth/",
        session=session or _FakeSession(_FakeResponse()),
        timeout_s=5,
    )


def test_archive_url_per_tier(tmp_path):
    repo = _repo(tmp_path)

    assert repo.archive_url("coarse", "admin_0_countries") == (
        "https://naciscdn.org/naturalearth/110m/cultural/ne_110m_admin_0_countries.zip"
    )
    assert repo.archive_url("fine", "ports").endswith("/10m/cultural/ne_10m_ports.zip")
    assert repo.archive_path("medium", "airports") == tmp_path / "ne_50m_airports.zip"
    with pytest.raises(ValueError):
        repo.archive_url("huge", "ports")


def test_countries_fall_back_to_next_valid_code_per_row(tmp_path):
    frame = gpd.GeoDataFrame(
        {
            "NAME": ["France", "Norway", "Kosovo"],
            "ISO_A3": ["-99", "-99", "-99"],
            "ISO_A3_EH": ["FRA", "NOR", "-99"],
            "ADM0_A3": ["FRA", "NOR", "KOS"],
            "POP_EST": [67_000_000, 5_300_000, None],
        },
        geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1), box(2, 0, 3, 1)],
        crs="EPSG:4326",
    )

    features = _repo(tmp_path).countries_from_frame(frame)

    assert [f.iso3 for f in features] == ["FRA", "NOR", "KOS"]
    assert features[0].pop_est == 67_000_000
    assert features[2].pop_est is None
    assert all(f.pop_source == "estimate_absent" for f in features)


def test_iso_a3_wins_over_admin_codes_and_joins_statistics(tmp_path):
    frame = gpd.GeoDataFrame(
        {
            "NAME": ["France", "S. Sudan", "Kosovo", "Palestine"],
            "ISO_A3": ["FRA", "SSD", "-99", "PSE"],
            "ISO_A3_EH": ["FRA", "SSD", "-99", "PSE"],
            "WB_A3": ["FRA", "SSD", "KSV", "PSE"],
            "ADM0_A3": ["FRA", "SDS", "KOS", "PSX"],
            "POP_EST": [67_000_000, 11_000_000, 1_800_000, 5_000_000],
        },
        geometry=[box(i, 0, i + 1, 1) for i in range(4)],
    )

    features = _repo(tmp_path).countries_from_frame(frame)
    joined = join_statistics(features, statistics([("SSD", 11_100_000), ("PSE", 5_200_000)]))

    assert [f.iso3 for f in features] == ["FRA", "SSD", "KSV", "PSE"]
    assert joined.report.from_statistic == 2
    by_iso = {f.iso3: f for f in joined.features}
    assert by_iso["SSD"].pop_est == 11_100_000
    assert by_iso["SSD"].pop_source == "statistic"


def test_rows_without_any_valid_code_get_empty_iso3(tmp_path):
    frame = gpd.GeoDataFrame(
        {"NAME": [float("nan")], "ISO_A3": ["-99"], "POP_EST": [10]},
        geometry=[box(0, 0, 1, 1)],
    )

    (feature,) = _repo(tmp_path).countries_from_frame(frame)

    assert feature.iso3 == ""
    assert feature.name == ""


def test_countries_skip_non_polygon_rows(tmp_path):
    frame = gpd.GeoDataFrame(
        {"NAME": ["A", "B"], "ISO_A3": ["AAA", "BBB"], "POP_EST": [1, 2]},
        geometry=[box(0, 0, 1, 1), LineString([(0, 0), (1, 1)])],
    )

    features = _repo(tmp_path).countries_from_frame(frame)

    assert [f.iso3 for f in features] == ["AAA"]


def test_countries_without_population_column_fail(tmp_path):
    frame = gpd.GeoDataFrame({"NAME": ["A"], "ISO_A3": ["AAA"]}, geometry=[box(0, 0, 1, 1)])

    with pytest.raises(DataSourceError):
        _repo(tmp_path).countries_from_frame(frame)


def test_points_from_frame(tmp_path):
    frame = gpd.GeoDataFrame(
        {"name": ["Heathrow", None, float("nan")]},
        geometry=[Point(-0.45, 51.47), Point(2.55, 49.0), Point(8.57, 50.03)],
    )

    points = _repo(tmp_path).points_from_frame(frame, "airports")

    assert [(p.name, p.lon, p.lat, p.category) for p in points] == [
        ("Heathrow", -0.45, 51.47, "airports"),
        ("", 2.55, 49.0, "airports"),
        ("", 8.57, 50.03, "airports"),
    ]


def test_cached_archive_is_reused(tmp_path):
    session = _FakeSession(_FakeResponse())
    repo = _repo(tmp_path, session)
    cached = repo.archive_path("fine", "ports")
    cached.write_bytes(b"zip")

    assert repo.ensure_archive("fine", "ports") == cached
    assert session.urls == []


def test_download_writes_archive(tmp_path):
    session = _FakeSession(_FakeResponse(chunks=[b"ab", b"cd"]))
    repo = _repo(tmp_path / "cache", session)

    path = repo.ensure_archive("coarse", "admin_0_countries")

    assert path.read_bytes() == b"abcd"
    assert session.urls == [repo.archive_url("coarse", "admin_0_countries")]


def test_failed_download_raises_and_leaves_no_partial_file(tmp_path):
    error = requests.HTTPError("404 Not Found")
    repo = _repo(tmp_path, _FakeSession(_FakeResponse(error=error)))

    with pytest.raises(DataSourceError):
        repo.ensure_archive("fine", "ports")

    assert list(tmp_path.iterdir()) == []
