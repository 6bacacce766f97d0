"""Join external population statistics onto country features."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from .models import (
    POP_SOURCE_ABSENT,
    POP_SOURCE_STATISTIC,
    POP_SOURCE_UNAVAILABLE,
    CountryFeature,
    PopulationSource,
    StatisticsResult,
)


_LOGGER = logging.getLogger("popmap.join")


@dataclass(slots=True)
class JoinReport:
    features_in: int = 0
    features_out: int = 0
    from_statistic: int = 0
    from_estimate: int = 0
    dropped: list[str] = field(default_factory=list)
    statistics_available: bool = False

    def to_counts(self) -> dict[str, int]:
        return {
            "features_loaded": self.features_in,
            "features_joined": self.features_out,
            "features_dropped": len(self.dropped),
            "population_from_statistic": self.from_statistic,
            "population_from_estimate": self.from_estimate,
        }


@dataclass(frozen=True, slots=True)
class JoinResult:
    features: tuple[CountryFeature, ...]
    report: JoinReport


def statistic_lookup(statistics: StatisticsResult) -> dict[str, float]:
    """Map ISO3 to its usable value; later records win over earlier ones."""
    lookup: dict[str, float] = {}
    if not statistics.available:
        return lookup
    for record in statistics.records:
        value = _usable_number(record.value)
        if value is not None:
            lookup[record.iso3] = value
    return lookup


def join_statistics(
    features: Sequence[CountryFeature],
    statistics: StatisticsResult,
) -> JoinResult:
    """Override baked-in estimates with statistics and drop non-positive populations.

    The ISO3 match is exact and case-sensitive. Features whose final population
    is missing, non-numeric or not strictly positive are removed without error;
    every surviving feature carries `log_pop_est == log10(pop_est)`.
    """
    lookup = statistic_lookup(statistics)
    fallback_source: PopulationSource = (
        POP_SOURCE_ABSENT if statistics.available else POP_SOURCE_UNAVAILABLE
    )
    report = JoinReport(features_in=len(features), statistics_available=statistics.available)

    joined: list[CountryFeature] = []
    for feature in features:
        if feature.iso3 in lookup:
            pop_est: float | None = lookup[feature.iso3]
            source = POP_SOURCE_STATISTIC
        else:
            pop_est = _usable_number(feature.pop_est)
            source = fallback_source

        if pop_est is None or pop_est <= 0:
            _LOGGER.debug("Dropping %s (%s): population %r", feature.name, feature.iso3, pop_est)
            report.dropped.append(feature.iso3)
            continue

        joined.append(feature.with_population(pop_est, source))
        if source == POP_SOURCE_STATISTIC:
            report.from_statistic += 1
        else:
            report.from_estimate += 1

    report.features_out = len(joined)
    return JoinResult(features=tuple(joined), report=report)


def _usable_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number
