"""World Bank indicator API client."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

from .models import STATS_AVAILABLE, DataSourceError, StatisticRecord, StatisticsResult


_LOGGER = logging.getLogger("popmap.worldbank")

_MAX_PAGES = 100


class WorldBankClient:
    """Fetch one indicator for all countries over a year range."""

    def __init__(
        self,
        *,
        session: requests.Session,
        base_url: str,
        timeout_s: float,
        per_page: int = 1000,
    ) -> None:
        self._session = session
        self.base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._per_page = per_page

    def indicator_url(self, indicator: str) -> str:
        return f"{self.base_url}/country/all/indicator/{indicator}"

    def fetch_indicator(self, indicator: str, start_year: int, end_year: int) -> StatisticsResult:
        """Return every country record for the indicator, oldest year first.

        When the range spans several years the joiner keeps the last usable
        value per country, which is the most recent one.
        """
        url = self.indicator_url(indicator)
        records: list[tuple[str, StatisticRecord]] = []
        page = 1
        pages = 1
        while page <= pages:
            payload = self._get_page(url, start_year=start_year, end_year=end_year, page=page)
            meta, rows = _split_payload(payload)
            pages = min(int(meta.get("pages") or 1), _MAX_PAGES)
            for row in rows:
                parsed = _parse_row(row)
                if parsed is not None:
                    records.append(parsed)
            page += 1

        records.sort(key=lambda item: item[0])
        _LOGGER.info(
            "Fetched %d %s records for %d-%d from the World Bank",
            len(records),
            indicator,
            start_year,
            end_year,
        )
        return StatisticsResult(
            status=STATS_AVAILABLE,
            indicator=indicator,
            start_year=start_year,
            end_year=end_year,
            records=tuple(record for _, record in records),
        )

    def _get_page(self, url: str, *, start_year: int, end_year: int, page: int) -> Any:
        params = {
            "date": f"{start_year}:{end_year}",
            "format": "json",
            "per_page": self._per_page,
            "page": page,
        }
        try:
            with self._session.get(url, params=params, timeout=self._timeout_s) as response:
                response.raise_for_status()
                return response.json()
        except requests.RequestException as exc:
            raise DataSourceError(f"World Bank request failed for {url}: {exc}") from exc
        except ValueError as exc:
            raise DataSourceError(f"World Bank returned invalid JSON for {url}: {exc}") from exc


def _split_payload(payload: Any) -> tuple[Mapping[str, Any], list[Any]]:
    if not isinstance(payload, list) or not payload or not isinstance(payload[0], Mapping):
        raise DataSourceError("Unexpected World Bank payload shape")
    meta = payload[0]
    if "message" in meta:
        raise DataSourceError(f"World Bank API error: {meta['message']}")
    if len(payload) < 2 or payload[1] is None:
        return meta, []
    if not isinstance(payload[1], list):
        raise DataSourceError("Unexpected World Bank record list")
    return meta, payload[1]


def _parse_row(row: Any) -> tuple[str, StatisticRecord] | None:
    if not isinstance(row, Mapping):
        return None
    iso3 = row.get("countryiso3code")
    if not isinstance(iso3, str) or not iso3.strip():
        return None
    value = row.get("value")
    number: float | None
    try:
        number = float(value) if value is not None else None
    except (TypeError, ValueError):
        number = None
    date = str(row.get("date") or "")
    return (date, StatisticRecord(iso3=iso3.strip(), value=number))
