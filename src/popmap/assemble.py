"""Folium map assembly: base tiles, choropleth, marker overlays and legend."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from html import escape
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import folium
from branca.element import MacroElement, Template

from .colors import ColorScale, LegendTick
from .config import StyleConfig, ViewConfig
from .models import CountryFeature, PointCategory, PointFeature
from .util import write_text_atomic


_LOGGER = logging.getLogger("popmap.assemble")


@dataclass(frozen=True, slots=True)
class _Overlay:
    layer_name: str
    popup_prefix: str
    icon_class: str


_OVERLAYS: dict[PointCategory, _Overlay] = {
    "airports": _Overlay(layer_name="Airports", popup_prefix="Airport", icon_class="popmap-icon-airports"),
    "ports": _Overlay(layer_name="Ports", popup_prefix="Port", icon_class="popmap-icon-ports"),
}


class PopulationLegend(MacroElement):
    """Leaflet control with a gradient bar and linear-population tick labels."""

    _template = Template(
        """
        {% macro header(this, kwargs) %}
        <style>
          .popmap-legend {
            background: rgba(255, 255, 255, 0.9);
            padding: 8px 10px;
            border-radius: 5px;
            box-shadow: 0 0 15px rgba(0, 0, 0, 0.2);
            font: 12px/1.4 Arial, Helvetica, sans-serif;
            color: #333;
          }
          .popmap-legend .legend-title { font-weight: bold; margin-bottom: 6px; }
          .popmap-legend .legend-body { position: relative; height: 120px; }
          .popmap-legend .legend-bar {
            position: absolute; left: 0; top: 0; width: 18px; height: 100%;
          }
          .popmap-legend .legend-tick {
            position: absolute; left: 24px; transform: translateY(-50%);
            white-space: nowrap;
          }
        </style>
        {% endmacro %}

        {% macro script(this, kwargs) %}
        var {{ this.get_name() }} = L.control({position: {{ this.position|tojson }}});
        {{ this.get_name() }}.onAdd = function (map) {
            var div = L.DomUtil.create("div", "info legend popmap-legend");
            div.innerHTML = {{ this.html|tojson }};
            return div;
        };
        {{ this.get_name() }}.addTo({{ this._parent.get_name() }});
        {% endmacro %}
        """
    )

    def __init__(
        self,
        *,
        title: str,
        palette: Sequence[str],
        ticks: Sequence[LegendTick],
        position: str = "bottomright",
    ) -> None:
        super().__init__()
        self._name = "PopulationLegend"
        self.position = position
        self.html = legend_html(title=title, palette=palette, ticks=ticks)


class MarkerIconStyles(MacroElement):
    """One CSS class per marker category carrying its icon image.

    Markers reference the class through a `DivIcon`, so an embedded icon
    appears once in the page however many markers use it.
    """

    _template = Template(
        """
        {% macro header(this, kwargs) %}
        <style>
        {{ this.css }}
        </style>
        {% endmacro %}
        """
    )

    def __init__(self, images: Mapping[str, str]) -> None:
        super().__init__()
        self._name = "MarkerIconStyles"
        self.css = icon_css(images)


class InvalidateSizeHook(MacroElement):
    """Recompute the map container size once, shortly after the page loads."""

    _template = Template(
        """
        {% macro script(this, kwargs) %}
        setTimeout(function() {
            {{ this._parent.get_name() }}.invalidateSize();
        }, {{ this.delay_ms }});
        {% endmacro %}
        """
    )

    def __init__(self, delay_ms: int) -> None:
        super().__init__()
        self._name = "InvalidateSizeHook"
        self.delay_ms = int(delay_ms)


def legend_html(*, title: str, palette: Sequence[str], ticks: Sequence[LegendTick]) -> str:
    gradient = ", ".join(palette)
    tick_rows = "".join(
        f"<div class='legend-tick' style='top: {tick.position * 100:.2f}%'>"
        f"{escape(tick.label)}</div>"
        for tick in ticks
    )
    return (
        f"<div class='legend-title'>{escape(title)}</div>"
        "<div class='legend-body'>"
        f"<div class='legend-bar' style='background: linear-gradient(to bottom, {gradient})'></div>"
        f"{tick_rows}"
        "</div>"
    )


def icon_css(images: Mapping[str, str]) -> str:
    """CSS rules mapping each class name to its icon URL or data URI."""
    rules: list[str] = []
    for class_name, image in images.items():
        url = image.replace("\"", "%22")
        rules.append(
            f".{class_name} {{ background-image: url(\"{url}\"); "
            "background-size: contain; background-repeat: no-repeat; "
            "background-position: center; }"
        )
    return "\n".join(rules)


def format_population(value: float) -> str:
    return f"{int(round(value)):,}"


def features_to_geojson(features: Sequence[CountryFeature], scale: ColorScale) -> dict[str, Any]:
    """GeoJSON FeatureCollection with fill colors and label text precomputed."""
    mapping = _require_shapely_mapping()
    out: list[dict[str, Any]] = []
    for feature in features:
        pop_est = feature.pop_est if feature.pop_est is not None else 0.0
        population = format_population(pop_est)
        out.append(
            {
                "type": "Feature",
                "geometry": mapping(feature.geometry),
                "properties": {
                    "name": feature.name,
                    "iso3": feature.iso3,
                    "pop_est": pop_est,
                    "log_pop_est": feature.log_pop_est,
                    "pop_source": feature.pop_source,
                    "fill_color": scale(feature.log_pop_est),
                    "label": f"{feature.name}: {population} inhabitants",
                    "popup_html": (
                        f"<b>{escape(feature.name)}</b><br>"
                        f"Population: {population} inhabitants"
                    ),
                },
            }
        )
    return {"type": "FeatureCollection", "features": out}


def build_map(
    features: Sequence[CountryFeature],
    scale: ColorScale,
    points: Mapping[PointCategory, Sequence[PointFeature]],
    *,
    style: StyleConfig,
    view: ViewConfig,
    ticks: Sequence[LegendTick],
    icon_images: Mapping[PointCategory, str] | None = None,
) -> folium.Map:
    """Compose the population map.

    Categories missing from `points`, or present with no points, get no
    overlay layer.
    """
    bounds = view.max_bounds
    fmap = folium.Map(
        location=[view.center_lat, view.center_lon],
        zoom_start=view.zoom_start,
        min_zoom=view.min_zoom,
        max_zoom=view.max_zoom,
        tiles=None,
        world_copy_jump=view.world_copy_jump,
        max_bounds=True,
        min_lat=bounds.south,
        max_lat=bounds.north,
        min_lon=bounds.west,
        max_lon=bounds.east,
    )
    folium.TileLayer(
        tiles=_resolve_tile_provider(view.tiles),
        name=view.tiles,
        no_wrap=True,
        min_zoom=view.min_zoom,
        max_zoom=view.max_zoom,
        control=False,
    ).add_to(fmap)

    _add_choropleth(fmap, features, scale, style)

    icons = dict(icon_images or {})
    icon_sources: dict[PointCategory, str] = {
        "airports": icons.get("airports", style.airport_icon_url),
        "ports": icons.get("ports", style.port_icon_url),
    }
    drawn: dict[str, str] = {}
    for category, overlay in _OVERLAYS.items():
        category_points = points.get(category) or ()
        if not category_points:
            _LOGGER.info("No %s to draw; %s layer omitted", category, overlay.layer_name)
            continue
        _add_marker_layer(fmap, category_points, overlay=overlay, icon_size_px=style.icon_size_px)
        drawn[overlay.icon_class] = icon_sources[category]

    if drawn:
        MarkerIconStyles(drawn).add_to(fmap)

    PopulationLegend(
        title=view.legend_title,
        palette=scale.palette,
        ticks=ticks,
        position=view.legend_position,
    ).add_to(fmap)
    if drawn:
        folium.LayerControl(collapsed=False).add_to(fmap)
    if view.invalidate_size_delay_ms is not None:
        InvalidateSizeHook(view.invalidate_size_delay_ms).add_to(fmap)
    return fmap


def render_html(fmap: folium.Map) -> str:
    return fmap.get_root().render()


def save_map(
    fmap: folium.Map,
    output_path: Path,
    *,
    postprocess: Callable[[str], str] | None = None,
) -> Path:
    """Render the map and write it to `output_path`, replacing any existing file."""
    html = render_html(fmap)
    if postprocess is not None:
        html = postprocess(html)
    write_text_atomic(output_path, html)
    _LOGGER.info("Map written to %s (%d bytes)", output_path, len(html.encode("utf-8")))
    return output_path


def _add_choropleth(
    fmap: folium.Map,
    features: Sequence[CountryFeature],
    scale: ColorScale,
    style: StyleConfig,
) -> None:
    def style_function(feature: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "fillColor": feature["properties"]["fill_color"],
            "fillOpacity": style.fill_opacity,
            "color": style.border_color,
            "weight": style.border_weight,
        }

    def highlight_function(feature: Mapping[str, Any]) -> dict[str, Any]:
        return {"color": style.border_color, "weight": style.highlight_weight}

    folium.GeoJson(
        features_to_geojson(features, scale),
        name="Population",
        style_function=style_function,
        highlight_function=highlight_function,
        smooth_factor=0,
        tooltip=folium.GeoJsonTooltip(fields=["label"], labels=False),
        popup=folium.GeoJsonPopup(fields=["popup_html"], labels=False),
        control=False,
    ).add_to(fmap)


def _add_marker_layer(
    fmap: folium.Map,
    points: Sequence[PointFeature],
    *,
    overlay: _Overlay,
    icon_size_px: int,
) -> None:
    size = (icon_size_px, icon_size_px)
    anchor = (icon_size_px // 2, icon_size_px // 2)
    group = folium.FeatureGroup(name=overlay.layer_name, show=True)
    for point in points:
        folium.Marker(
            location=[point.lat, point.lon],
            icon=folium.DivIcon(
                html="", icon_size=size, icon_anchor=anchor, class_name=overlay.icon_class
            ),
            tooltip=point.name or None,
            popup=folium.Popup(f"<b>{overlay.popup_prefix}:</b> {escape(point.name)}"),
        ).add_to(group)
    group.add_to(fmap)
    _LOGGER.info("Added %d markers to %s layer", len(points), overlay.layer_name)


def _resolve_tile_provider(name: str) -> Any:
    providers = _require_xyzservices_providers()
    try:
        return providers.query_name(name)
    except ValueError as exc:
        raise ValueError(f"Unknown tile provider '{name}'") from exc


def _require_xyzservices_providers() -> Any:
    try:
        from xyzservices import providers
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("xyzservices is required for basemap tiles") from exc
    return providers


def _require_shapely_mapping() -> Any:
    try:
        from shapely.geometry import mapping
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for GeoJSON export") from exc
    return mapping
