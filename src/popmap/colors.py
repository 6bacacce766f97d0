"""Continuous color scale over log-population values and its legend labels."""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Sequence


@dataclass(frozen=True, slots=True)
class LegendTick:
    value: float
    label: str
    position: float


@dataclass(frozen=True, slots=True)
class ColorScale:
    """Linear value -> color mapping over an ordered palette.

    Values are placed linearly into `[vmin, vmax]`, clipped, and mapped onto
    the palette stops by proportional position; colors between two stops are
    interpolated in RGB. Missing values map to `na_color` unchanged.
    """

    vmin: float
    vmax: float
    palette: tuple[str, ...]
    na_color: str
    _rgb: tuple[tuple[float, float, float], ...]

    def __call__(self, value: Any) -> str:
        position = self.position(value)
        if position is None:
            return self.na_color
        _, to_hex = _require_matplotlib_colors()
        scaled = position * (len(self._rgb) - 1)
        lower = min(int(math.floor(scaled)), len(self._rgb) - 2)
        frac = scaled - lower
        low, high = self._rgb[lower], self._rgb[lower + 1]
        rgb = tuple(a + (b - a) * frac for a, b in zip(low, high))
        return to_hex(rgb)

    def position(self, value: Any) -> float | None:
        """Position of `value` along the palette in [0, 1], or None when missing."""
        number = _finite_or_none(value)
        if number is None:
            return None
        span = self.vmax - self.vmin
        if span <= 0:
            return 0.0
        return min(max((number - self.vmin) / span, 0.0), 1.0)

    @property
    def domain(self) -> tuple[float, float]:
        return (self.vmin, self.vmax)


def build_scale(values: Iterable[Any], palette: Sequence[str], na_color: str) -> ColorScale:
    """Build a continuous scale whose domain is [min, max] of the finite values."""
    if len(palette) < 2:
        raise ValueError("palette needs at least two colors")
    finite = [number for number in (_finite_or_none(v) for v in values) if number is not None]
    if not finite:
        raise ValueError("Cannot build a color scale without finite values")
    to_rgb, _ = _require_matplotlib_colors()
    return ColorScale(
        vmin=min(finite),
        vmax=max(finite),
        palette=tuple(palette),
        na_color=na_color,
        _rgb=tuple(tuple(float(c) for c in to_rgb(color)) for color in palette),
    )


def sample_palette(anchors: Sequence[str], n: int = 30) -> list[str]:
    """Sample `n` evenly spaced colors from the continuous ramp through `anchors`."""
    if n < 2:
        raise ValueError("palette size must be >= 2")
    if len(anchors) < 2:
        raise ValueError("palette ramp needs at least two anchor colors")
    colormap_cls = _require_matplotlib_colormap()
    _, to_hex = _require_matplotlib_colors()
    ramp = colormap_cls.from_list("popmap_ramp", list(anchors), N=256)
    return [to_hex(ramp(i / (n - 1))) for i in range(n)]


def inverse_log_value(value: float) -> int:
    """Undo the log10 transform for display: round(10 ** value)."""
    return int(round(10 ** value))


def inverse_log_label(value: float) -> str:
    """Legend label for a log10 value, e.g. 6 -> '1,000,000'."""
    return f"{inverse_log_value(value):,}"


def legend_ticks(scale: ColorScale, count: int = 6) -> list[LegendTick]:
    """Legend ticks on whole powers of ten inside the scale domain.

    At most `count` ticks are kept, taking every n-th power on wide domains.
    A domain spanning fewer than two powers gets `count` evenly spaced ticks.
    """
    if count < 2:
        raise ValueError("legend needs at least two ticks")
    powers = list(range(math.ceil(scale.vmin), math.floor(scale.vmax) + 1))
    if len(powers) >= 2:
        step = math.ceil(len(powers) / count)
        values = [float(p) for p in powers[::step]]
    else:
        values = [
            scale.vmin + (scale.vmax - scale.vmin) * i / (count - 1) for i in range(count)
        ]
    ticks: list[LegendTick] = []
    for value in values:
        position = scale.position(value)
        ticks.append(
            LegendTick(
                value=value,
                label=inverse_log_label(value),
                position=position if position is not None else 0.0,
            )
        )
    return ticks


def _finite_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


@lru_cache(maxsize=1)
def _require_matplotlib_colors() -> tuple[Any, Any]:
    try:
        from matplotlib.colors import to_hex, to_rgb
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for color handling") from exc
    return (to_rgb, to_hex)


@lru_cache(maxsize=1)
def _require_matplotlib_colormap() -> Any:
    try:
        from matplotlib.colors import LinearSegmentedColormap
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for palette sampling") from exc
    return LinearSegmentedColormap
