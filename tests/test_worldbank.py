from __future__ import annotations

import pytest
import requests

from popmap.join import statistic_lookup
from popmap.models import DataSourceError
from popmap.worldbank import WorldBankClient


class _FakeResponse:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self._payload = payload
        self._error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def raise_for_status(self) -> None:
        if self._error is not None:
            raise self._error

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _PagedSession:
    def __init__(self, pages: list) -> None:
        self.pages = pages
        self.calls: list[dict] = []

    def get(self, url, *, params, timeout):
        self.calls.append({"url": url, **params})
        return self.pages[params["page"] - 1]


def _client(session) -> WorldBankClient:
    return WorldBankClient(
        session=session,
        base_url="https://api.worldbank.org/v2/",
        timeout_s=5,
        per_page=2,
    )


def _row(iso3, date, value):
    return {"countryiso3code": iso3, "date": date, "value": value}


def test_fetch_follows_pagination_and_orders_by_year():
    session = _PagedSession(
        [
            _FakeResponse([{"page": 1, "pages": 2}, [_row("FRA", "2023", 68.0), _row("FRA", "2022", 67.0)]]),
            _FakeResponse([{"page": 2, "pages": 2}, [_row("NOR", "2023", None), _row("", "2023", 1.0)]]),
        ]
    )

    result = _client(session).fetch_indicator("SP.POP.TOTL", 2022, 2023)

    assert result.available
    assert [(r.iso3, r.value) for r in result.records] == [
        ("FRA", 67.0),
        ("FRA", 68.0),
        ("NOR", None),
    ]
    assert statistic_lookup(result) == {"FRA": 68.0}
    assert session.calls[0]["url"] == (
        "https://api.worldbank.org/v2/country/all/indicator/SP.POP.TOTL"
    )
    assert session.calls[0]["date"] == "2022:2023"
    assert [call["page"] for call in session.calls] == [1, 2]


def test_empty_result_page_yields_no_records():
    session = _PagedSession([_FakeResponse([{"page": 1, "pages": 0}, None])])

    result = _client(session).fetch_indicator("SP.POP.TOTL", 2023, 2023)

    assert result.available
    assert result.records == ()


def test_api_error_message_raises():
    payload = [{"message": [{"id": "120", "value": "Invalid value"}]}]
    session = _PagedSession([_FakeResponse(payload)])

    with pytest.raises(DataSourceError, match="World Bank API error"):
        _client(session).fetch_indicator("NOPE", 2023, 2023)


@pytest.mark.parametrize(
    "response",
    [
        _FakeResponse(error=requests.ConnectionError("offline")),
        _FakeResponse(payload=ValueError("not json")),
        _FakeResponse(payload={"unexpected": True}),
    ],
)
def test_transport_and_payload_failures_raise(response):
    with pytest.raises(DataSourceError):
        _client(_PagedSession([response])).fetch_indicator("SP.POP.TOTL", 2023, 2023)
