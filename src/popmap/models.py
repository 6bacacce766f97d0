"""Domain models shared across pipeline modules."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Mapping


PopulationSource = Literal["statistic", "estimate_absent", "estimate_unavailable"]
POP_SOURCE_STATISTIC: PopulationSource = "statistic"
POP_SOURCE_ABSENT: PopulationSource = "estimate_absent"
POP_SOURCE_UNAVAILABLE: PopulationSource = "estimate_unavailable"

StatisticsStatus = Literal["available", "unavailable"]
STATS_AVAILABLE: StatisticsStatus = "available"
STATS_UNAVAILABLE: StatisticsStatus = "unavailable"

PointCategory = Literal["airports", "ports"]
POINT_CATEGORIES: tuple[PointCategory, ...] = ("airports", "ports")


class DataSourceError(RuntimeError):
    """Raised when an upstream dataset cannot be fetched or read."""


@dataclass(frozen=True, slots=True)
class CountryFeature:
    """One country polygon with its population attributes.

    `pop_est` is the baked-in Natural Earth estimate until the statistics join
    replaces it. `log_pop_est` is only populated for features that passed the
    positive-population filter.
    """

    name: str
    iso3: str
    pop_est: float | None
    geometry: Any
    log_pop_est: float | None = None
    pop_source: PopulationSource = POP_SOURCE_ABSENT

    def with_population(self, pop_est: float, pop_source: PopulationSource) -> CountryFeature:
        """Return a copy with a new population and its recomputed log value."""
        return replace(
            self,
            pop_est=pop_est,
            log_pop_est=math.log10(pop_est),
            pop_source=pop_source,
        )

    def with_geometry(self, geometry: Any) -> CountryFeature:
        return replace(self, geometry=geometry)


@dataclass(frozen=True, slots=True)
class StatisticRecord:
    """One per-country value from the statistics provider."""

    iso3: str
    value: float | None


@dataclass(frozen=True, slots=True)
class StatisticsResult:
    """Outcome of one statistics fetch.

    `status` separates "provider unreachable" from "provider answered but has no
    value for a country"; the joiner records the difference per feature.
    """

    status: StatisticsStatus
    indicator: str
    start_year: int
    end_year: int
    records: tuple[StatisticRecord, ...] = ()
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.status == STATS_AVAILABLE

    @classmethod
    def unavailable(
        cls,
        *,
        indicator: str,
        start_year: int,
        end_year: int,
        error: str,
    ) -> StatisticsResult:
        return cls(
            status=STATS_UNAVAILABLE,
            indicator=indicator,
            start_year=start_year,
            end_year=end_year,
            error=error,
        )


@dataclass(frozen=True, slots=True)
class PointFeature:
    """Airport or port location loaded from Natural Earth."""

    name: str
    lon: float
    lat: float
    category: PointCategory


@dataclass(frozen=True, slots=True)
class BuildManifest:
    """Build metadata used for audit trails."""

    generated_at_utc: str
    config_hash_sha256: str
    git_commit: str | None
    steps: Mapping[str, str]
    counts: Mapping[str, int]
    artifacts: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        *,
        config_hash_sha256: str,
        git_commit: str | None,
        steps: Mapping[str, str],
        counts: Mapping[str, int],
        artifacts: Mapping[str, str],
    ) -> BuildManifest:
        now = datetime.now(timezone.utc).isoformat()
        return cls(
            generated_at_utc=now,
            config_hash_sha256=config_hash_sha256,
            git_commit=git_commit,
            steps=steps,
            counts=counts,
            artifacts=artifacts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at_utc": self.generated_at_utc,
            "config_hash_sha256": self.config_hash_sha256,
            "git_commit": self.git_commit,
            "steps": dict(self.steps),
            "counts": dict(self.counts),
            "artifacts": dict(self.artifacts),
        }
