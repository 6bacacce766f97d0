"""Topology-preserving Visvalingam-Whyatt simplification for country polygons.

Rings are cut into arcs at junction vertices (where more than two rings meet or
where a shared border ends). Each distinct arc is simplified once and every ring
that uses it is rebuilt from the same simplified copy, so neighbouring countries
keep identical borders and no gaps or overlaps appear between them.

Vertex significance is the Visvalingam-Whyatt effective area. Interior arc
vertices are ranked across the whole feature set and the most significant
`retention_fraction` of them are kept, which makes the result for a smaller
fraction a subset of the result for a larger one.
"""

from __future__ import annotations

import heapq
import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Sequence

from .models import CountryFeature


_LOGGER = logging.getLogger("popmap.simplify")

Point = tuple[float, float]


@dataclass(frozen=True, slots=True)
class _RingPlan:
    # (arc index, traversed in reverse); degenerate rings keep their raw coords
    arcs: tuple[tuple[int, bool], ...] = ()
    raw: tuple[Point, ...] | None = None
    pending: tuple[Point, ...] | None = None


@dataclass(frozen=True, slots=True)
class _GeometryPlan:
    kind: str
    polygons: tuple[tuple[_RingPlan, ...], ...]


def count_vertices(geometry: Any) -> int:
    """Count coordinates over all rings of a polygonal geometry (closing points included)."""
    total = 0
    for polygon in _iter_polygons(geometry):
        total += len(polygon.exterior.coords)
        total += sum(len(ring.coords) for ring in polygon.interiors)
    return total


def simplify(features: Sequence[CountryFeature], retention_fraction: float) -> list[CountryFeature]:
    """Return new features whose geometries keep about `retention_fraction` of their vertices."""
    geometries = simplify_geometries([feature.geometry for feature in features], retention_fraction)
    return [feature.with_geometry(geometry) for feature, geometry in zip(features, geometries)]


def simplify_geometries(geometries: Sequence[Any], retention_fraction: float) -> list[Any]:
    """Simplify a set of polygonal geometries on a shared arc topology."""
    if not 0.0 < retention_fraction <= 1.0:
        raise ValueError("retention_fraction must be in (0, 1]")
    if retention_fraction == 1.0:
        return list(geometries)

    builder = _TopologyBuilder()
    plans = [builder.plan(geometry) for geometry in geometries]
    builder.detect_junctions()
    plans = [builder.resolve(plan) if plan is not None else None for plan in plans]
    arcs = builder.arcs

    areas = [_effective_areas(arc) for arc in arcs]
    ranking = _rank_interior_vertices(areas)
    keep_count = int(round(retention_fraction * len(ranking)))
    kept: set[tuple[int, int]] = set(ranking[:keep_count])
    rank_of = {key: idx for idx, key in enumerate(ranking)}
    kept |= _protected_vertices(plans, arcs, rank_of)

    simplified_arcs = [
        [
            point
            for idx, point in enumerate(arc)
            if idx in (0, len(arc) - 1) or (arc_idx, idx) in kept
        ]
        for arc_idx, arc in enumerate(arcs)
    ]
    _LOGGER.debug(
        "Simplified %d arcs: kept %d of %d removable vertices (fraction=%.3f)",
        len(arcs),
        len(kept),
        len(ranking),
        retention_fraction,
    )

    out: list[Any] = []
    for geometry, plan in zip(geometries, plans):
        if plan is None:
            out.append(geometry)
            continue
        out.append(_rebuild_geometry(plan, simplified_arcs))
    return out


class _TopologyBuilder:
    """Collects rings, finds junctions and deduplicates arcs."""

    def __init__(self) -> None:
        self._neighbours: dict[Point, set[Point]] = {}
        self._junctions: set[Point] = set()
        self._arc_index: dict[tuple[Point, ...], int] = {}
        self.arcs: list[tuple[Point, ...]] = []

    def plan(self, geometry: Any) -> _GeometryPlan | None:
        polygons = _iter_polygons(geometry)
        if not polygons:
            return None
        polygon_rings: list[tuple[_RingPlan, ...]] = []
        for polygon in polygons:
            rings = [polygon.exterior, *polygon.interiors]
            ring_plans: list[_RingPlan] = []
            for ring in rings:
                points = _open_ring(ring.coords)
                if len(set(points)) < 3:
                    ring_plans.append(_RingPlan(raw=tuple(_xy(c) for c in ring.coords)))
                    continue
                self._register_neighbours(points)
                ring_plans.append(_RingPlan(pending=tuple(points)))
            polygon_rings.append(tuple(ring_plans))
        return _GeometryPlan(kind=geometry.geom_type, polygons=tuple(polygon_rings))

    def detect_junctions(self) -> None:
        self._junctions = {point for point, near in self._neighbours.items() if len(near) > 2}

    def resolve(self, plan: _GeometryPlan) -> _GeometryPlan:
        polygons: list[tuple[_RingPlan, ...]] = []
        for rings in plan.polygons:
            resolved: list[_RingPlan] = []
            for ring in rings:
                if ring.pending is not None:
                    resolved.append(_RingPlan(arcs=self._split_ring(list(ring.pending))))
                else:
                    resolved.append(ring)
            polygons.append(tuple(resolved))
        return _GeometryPlan(kind=plan.kind, polygons=tuple(polygons))

    def _register_neighbours(self, points: Sequence[Point]) -> None:
        n = len(points)
        for i, point in enumerate(points):
            near = self._neighbours.setdefault(point, set())
            near.add(points[i - 1])
            near.add(points[(i + 1) % n])

    def _split_ring(self, points: list[Point]) -> tuple[tuple[int, bool], ...]:
        cut_positions = [i for i, point in enumerate(points) if point in self._junctions]
        if not cut_positions:
            # same start for every copy of this ring, whichever feature it belongs to
            start = min(range(len(points)), key=lambda i: points[i])
            rotated = points[start:] + points[:start]
            return (self._arc_ref(tuple(rotated + [rotated[0]])),)

        start = cut_positions[0]
        rotated = points[start:] + points[:start]
        cuts = [pos - start for pos in cut_positions] + [len(points)]
        rotated.append(rotated[0])
        refs: list[tuple[int, bool]] = []
        for begin, end in zip(cuts, cuts[1:]):
            refs.append(self._arc_ref(tuple(rotated[begin : end + 1])))
        return tuple(refs)

    def _arc_ref(self, arc: tuple[Point, ...]) -> tuple[int, bool]:
        backwards = arc[::-1]
        canonical = min(arc, backwards)
        if canonical not in self._arc_index:
            self._arc_index[canonical] = len(self.arcs)
            self.arcs.append(canonical)
        return (self._arc_index[canonical], arc != canonical)


def _effective_areas(points: Sequence[Point]) -> list[float]:
    """Visvalingam-Whyatt effective area per vertex; endpoints get infinity."""
    n = len(points)
    areas = [math.inf] * n
    if n < 3:
        return areas

    prev = list(range(-1, n - 1))
    nxt = list(range(1, n + 1))
    current = [math.inf] * n
    heap: list[tuple[float, int]] = []
    for i in range(1, n - 1):
        current[i] = _triangle_area(points[i - 1], points[i], points[i + 1])
        heap.append((current[i], i))
    heapq.heapify(heap)

    removed = [False] * n
    floor = 0.0
    while heap:
        area, i = heapq.heappop(heap)
        if removed[i] or area != current[i]:
            continue
        # a vertex never ranks below one that was removed before it
        floor = max(floor, area)
        areas[i] = floor
        removed[i] = True
        before, after = prev[i], nxt[i]
        nxt[before] = after
        prev[after] = before
        for j in (before, after):
            if 0 < j < n - 1 and not removed[j]:
                current[j] = _triangle_area(points[prev[j]], points[j], points[nxt[j]])
                heapq.heappush(heap, (current[j], j))
    return areas


def _rank_interior_vertices(areas: Sequence[Sequence[float]]) -> list[tuple[int, int]]:
    """All interior arc vertices, most significant first, ties broken by position."""
    entries: list[tuple[float, int, int]] = []
    for arc_idx, arc_areas in enumerate(areas):
        for vertex_idx in range(1, len(arc_areas) - 1):
            entries.append((-arc_areas[vertex_idx], arc_idx, vertex_idx))
    entries.sort()
    return [(arc_idx, vertex_idx) for _, arc_idx, vertex_idx in entries]


def _protected_vertices(
    plans: Iterable[_GeometryPlan | None],
    arcs: Sequence[Sequence[Point]],
    rank_of: dict[tuple[int, int], int],
) -> set[tuple[int, int]]:
    """Vertices every ring needs so that it keeps three distinct points."""
    protected: set[tuple[int, int]] = set()
    for plan in plans:
        if plan is None:
            continue
        for rings in plan.polygons:
            for ring in rings:
                if not ring.arcs:
                    continue
                anchors = {arcs[arc_idx][end] for arc_idx, _ in ring.arcs for end in (0, -1)}
                need = 3 - len(anchors)
                if need <= 0:
                    continue
                candidates = sorted(
                    (
                        (arc_idx, vertex_idx)
                        for arc_idx, _ in ring.arcs
                        for vertex_idx in range(1, len(arcs[arc_idx]) - 1)
                    ),
                    key=lambda key: rank_of[key],
                )
                protected.update(candidates[:need])
    return protected


def _rebuild_geometry(plan: _GeometryPlan, arcs: Sequence[Sequence[Point]]) -> Any:
    Polygon, MultiPolygon = _require_shapely_polygon_factories()
    polygons: list[Any] = []
    for rings in plan.polygons:
        coords = [_rebuild_ring(ring, arcs) for ring in rings]
        shell, holes = coords[0], [hole for hole in coords[1:] if len(hole) >= 4]
        if len(shell) < 4:
            continue
        polygons.append(Polygon(shell, holes))

    if plan.kind == "Polygon":
        return polygons[0] if polygons else Polygon()
    return MultiPolygon(polygons)


def _rebuild_ring(ring: _RingPlan, arcs: Sequence[Sequence[Point]]) -> list[Point]:
    if ring.raw is not None:
        return list(ring.raw)
    points: list[Point] = []
    for arc_idx, backwards in ring.arcs:
        arc = list(arcs[arc_idx])
        if backwards:
            arc.reverse()
        points.extend(arc if not points else arc[1:])
    return points


def _open_ring(coords: Iterable[Any]) -> list[Point]:
    points: list[Point] = []
    for coord in coords:
        point = _xy(coord)
        if not points or points[-1] != point:
            points.append(point)
    while len(points) > 1 and points[0] == points[-1]:
        points.pop()
    return points


def _xy(coord: Sequence[float]) -> Point:
    return (float(coord[0]), float(coord[1]))


def _triangle_area(a: Point, b: Point, c: Point) -> float:
    return abs((b[0] - a[0]) * (c[1] - a[1]) - (c[0] - a[0]) * (b[1] - a[1])) / 2.0


def _iter_polygons(geometry: Any) -> list[Any]:
    if geometry is None or geometry.is_empty:
        return []
    if geometry.geom_type == "Polygon":
        return [geometry]
    if geometry.geom_type == "MultiPolygon":
        return list(geometry.geoms)
    return []


@lru_cache(maxsize=1)
def _require_shapely_polygon_factories() -> tuple[Any, Any]:
    try:
        from shapely.geometry import MultiPolygon, Polygon
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for geometry simplification") from exc
    return (Polygon, MultiPolygon)
