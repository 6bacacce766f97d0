"""Embed remote scripts, stylesheets and icons so the HTML needs no fetch to run."""

from __future__ import annotations

import base64
import logging
import mimetypes
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable
from urllib.parse import urljoin, urlparse

import requests

from .models import DataSourceError


_LOGGER = logging.getLogger("popmap.selfcontained")

_SCRIPT_RE = re.compile(r"<script\s+src=[\"'](https?://[^\"']+)[\"']\s*>\s*</script>", re.IGNORECASE)
_STYLESHEET_RE = re.compile(
    r"<link\s+rel=[\"']stylesheet[\"']\s+href=[\"'](https?://[^\"']+)[\"']\s*/?>",
    re.IGNORECASE,
)
_CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^\"')]+)\1\s*\)")


@dataclass(slots=True)
class InlineReport:
    inlined: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class AssetFetcher:
    """Blocking GET for remote assets, memoized per URL."""

    def __init__(self, session: requests.Session, *, timeout_s: float) -> None:
        self._session = session
        self._timeout_s = timeout_s
        self._cache: dict[str, bytes] = {}

    def __call__(self, url: str) -> bytes:
        if url in self._cache:
            return self._cache[url]
        try:
            with self._session.get(url, timeout=self._timeout_s) as response:
                response.raise_for_status()
                content = response.content
        except requests.RequestException as exc:
            raise DataSourceError(f"Failed fetching asset {url}: {exc}") from exc
        self._cache[url] = content
        return content


def inline_assets(
    html: str,
    fetch: Callable[[str], bytes],
    report: InlineReport | None = None,
) -> str:
    """Replace remote <script> and stylesheet references with inline copies.

    An asset that cannot be fetched keeps its remote reference and is recorded
    in `report.failed`.
    """
    report = report if report is not None else InlineReport()

    def replace_script(match: re.Match[str]) -> str:
        url = match.group(1)
        try:
            body = fetch(url).decode("utf-8")
        except (DataSourceError, UnicodeDecodeError) as exc:
            _LOGGER.warning("Keeping remote script %s: %s", url, exc)
            report.failed.append(url)
            return match.group(0)
        report.inlined.append(url)
        body = body.replace("</script", "<\\/script")
        return f"<script>{body}</script>"

    def replace_stylesheet(match: re.Match[str]) -> str:
        url = match.group(1)
        try:
            css = fetch(url).decode("utf-8")
        except (DataSourceError, UnicodeDecodeError) as exc:
            _LOGGER.warning("Keeping remote stylesheet %s: %s", url, exc)
            report.failed.append(url)
            return match.group(0)
        report.inlined.append(url)
        return f"<style>{embed_css_urls(css, url, fetch, report)}</style>"

    html = _SCRIPT_RE.sub(replace_script, html)
    html = _STYLESHEET_RE.sub(replace_stylesheet, html)
    return html


def embed_css_urls(
    css: str,
    base_url: str,
    fetch: Callable[[str], bytes],
    report: InlineReport,
) -> str:
    """Turn url(...) references inside a stylesheet into data URIs."""

    def replace_url(match: re.Match[str]) -> str:
        ref = match.group(2).strip()
        if ref.startswith(("data:", "#")):
            return match.group(0)
        absolute = urljoin(base_url, ref)
        try:
            payload = fetch(absolute)
        except DataSourceError as exc:
            _LOGGER.warning("Keeping remote stylesheet asset %s: %s", absolute, exc)
            report.failed.append(absolute)
            return f"url(\"{absolute}\")"
        return f"url(\"{to_data_uri(payload, absolute)}\")"

    return _CSS_URL_RE.sub(replace_url, css)


def to_data_uri(payload: bytes, url: str) -> str:
    path = urlparse(url).path
    mime, _ = mimetypes.guess_type(path)
    if mime is None:
        mime = "application/octet-stream"
    return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"


def cache_icon(url: str, cache_dir: Path, fetch: Callable[[str], bytes]) -> Path:
    """Store a remote icon under `cache_dir` so the map can embed it from disk."""
    name = Path(urlparse(url).path).name or "icon.png"
    path = cache_dir / "icons" / name
    if path.exists():
        return path
    payload = fetch(url)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".part")
    try:
        with tmp_path.open("wb") as fh:
            fh.write(payload)
        tmp_path.replace(path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path
