from __future__ import annotations

import base64

import pytest
import requests

from popmap.models import DataSourceError
from popmap.selfcontained import AssetFetcher, InlineReport, cache_icon, inline_assets


ASSETS = {
    "https://cdn.example.org/leaflet.js": b"var L = {}; // </script> inside",
    "https://cdn.example.org/css/leaflet.css": b".a { background: url('img/layers.png'); } .b { background: url(data:image/gif;base64,R0l=); }",
    "https://cdn.example.org/css/img/layers.png": b"PNGDATA",
}

PAGE = (
    "<html><head>"
    '<script src="https://cdn.example.org/leaflet.js"></script>'
    '<link rel="stylesheet" href="https://cdn.example.org/css/leaflet.css"/>'
    '<script src="https://cdn.example.org/missing.js"></script>'
    "</head><body></body></html>"
)


def _fetch(url: str) -> bytes:
    try:
        return ASSETS[url]
    except KeyError as exc:
        raise DataSourceError(f"no asset {url}") from exc


def test_inline_assets_embeds_scripts_and_styles():
    report = InlineReport()

    html = inline_assets(PAGE, _fetch, report)

    assert "<script>var L = {}; // <\\/script> inside</script>" in html
    assert "https://cdn.example.org/css/leaflet.css" not in html
    expected = base64.b64encode(b"PNGDATA").decode("ascii")
    assert f'url("data:image/png;base64,{expected}")' in html
    assert "url(data:image/gif;base64,R0l=)" in html
    assert report.inlined == [
        "https://cdn.example.org/leaflet.js",
        "https://cdn.example.org/css/leaflet.css",
    ]


def test_unfetchable_asset_keeps_remote_reference():
    report = InlineReport()

    html = inline_assets(PAGE, _fetch, report)

    assert '<script src="https://cdn.example.org/missing.js"></script>' in html
    assert report.failed == ["https://cdn.example.org/missing.js"]


def test_cache_icon_downloads_once(tmp_path):
    calls: list[str] = []

    def fetch(url: str) -> bytes:
        calls.append(url)
        return b"icon"

    url = "https://cdn.example.org/icons/plane.png"
    first = cache_icon(url, tmp_path, fetch)
    second = cache_icon(url, tmp_path, fetch)

    assert first == second == tmp_path / "icons" / "plane.png"
    assert first.read_bytes() == b"icon"
    assert calls == [url]


class _Response:
    def __init__(self, content: bytes = b"", error: Exception | None = None) -> None:
        self.content = content
        self._error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def raise_for_status(self) -> None:
        if self._error is not None:
            raise self._error


class _Session:
    def __init__(self, response: _Response) -> None:
        self.response = response
        self.calls = 0

    def get(self, url, *, timeout):
        self.calls += 1
        return self.response


def test_asset_fetcher_memoizes_per_url():
    session = _Session(_Response(b"body"))
    fetch = AssetFetcher(session, timeout_s=5)

    assert fetch("https://a.example/x.js") == b"body"
    assert fetch("https://a.example/x.js") == b"body"
    assert session.calls == 1


def test_asset_fetcher_wraps_http_errors():
    fetch = AssetFetcher(_Session(_Response(error=requests.HTTPError("500"))), timeout_s=5)

    with pytest.raises(DataSourceError, match="x.js"):
        fetch("https://a.example/x.js")
