"""HttpScreeningProvider against an httpx MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from tradescope.compliance.models import CheckKind, CheckStatus
from tradescope.compliance.provider import (
    HttpScreeningProvider,
    StaticScreeningProvider,
    provider_from_env,
)
from tradescope.errors import UpstreamUnavailable

BASE_URL = "https://screening.example.test/v2/"


def _provider(handler, sleeps=None, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpScreeningProvider(
        BASE_URL,
        "secret",
        client=client,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
        **kwargs,
    )


def test_successful_screen_parses_hits():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "status": "match",
                "hits": [{"listName": "OFAC_SDN", "matchedName": "Shady Freight", "score": 0.95, "reference": "X1"}],
                "listsChecked": ["OFAC_SDN"],
            },
        )

    outcome = _provider(handler).screen(CheckKind.SANCTIONS, "C-SHADY", "Shady Freight")

    assert outcome.status is CheckStatus.MATCH
    assert outcome.hits[0].matched_name == "Shady Freight"
    assert outcome.lists_checked == ("OFAC_SDN",)
    assert str(seen[0].url) == "https://screening.example.test/v2/screen"
    assert json.loads(seen[0].content) == {
        "kind": "SANCTIONS",
        "companyId": "C-SHADY",
        "companyName": "Shady Freight",
    }


def test_default_lists_when_provider_omits_them():
    outcome = _provider(lambda request: httpx.Response(200, json={"status": "CLEAR"})).screen("PEP", "C-ACME")

    assert outcome.status is CheckStatus.CLEAR
    assert outcome.lists_checked == ("PEP_GLOBAL",)


def test_server_errors_are_retried_with_backoff():
    responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json={"status": "CLEAR"})])
    sleeps = []

    outcome = _provider(lambda request: next(responses), sleeps, backoff_sec=0.5).screen(
        CheckKind.SANCTIONS, "C-ACME"
    )

    assert outcome.status is CheckStatus.CLEAR
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_raise_upstream_unavailable():
    sleeps = []

    with pytest.raises(UpstreamUnavailable) as excinfo:
        _provider(lambda request: httpx.Response(500), sleeps, max_attempts=2).screen(CheckKind.SANCTIONS, "C-ACME")

    assert excinfo.value.attempts == 2
    assert excinfo.value.reason == "HTTP 500"
    assert len(sleeps) == 1


def test_transport_errors_are_retried():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamUnavailable) as excinfo:
        _provider(handler, max_attempts=3).screen(CheckKind.SANCTIONS, "C-ACME")

    assert excinfo.value.attempts == 3
    assert "connection refused" in excinfo.value.reason


def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401)

    with pytest.raises(UpstreamUnavailable) as excinfo:
        _provider(handler).screen(CheckKind.SANCTIONS, "C-ACME")

    assert len(calls) == 1
    assert excinfo.value.attempts == 1
    assert excinfo.value.reason == "HTTP 401"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json=["CLEAR"]),
        httpx.Response(200, json={"status": "MAYBE"}),
        httpx.Response(200, json={"status": "CLEAR", "hits": ["x"]}),
        httpx.Response(200, json={"status": "MATCH", "hits": {"listName": "OFAC_SDN"}}),
        httpx.Response(200, json={"status": "MATCH", "hits": [{"listName": "OFAC_SDN", "score": None}]}),
        httpx.Response(200, json={"status": "CLEAR", "listsChecked": "OFAC_SDN"}),
    ],
)
def test_malformed_responses(response):
    with pytest.raises(UpstreamUnavailable) as excinfo:
        _provider(lambda request: response).screen(CheckKind.SANCTIONS, "C-ACME")

    assert excinfo.value.reason == "malformed response"


def test_provider_from_env(monkeypatch):
    monkeypatch.delenv("TS_SCREENING_URL", raising=False)
    assert isinstance(provider_from_env(), StaticScreeningProvider)

    monkeypatch.setenv("TS_SCREENING_URL", "https://screening.example.test")
    monkeypatch.setenv("TS_SCREENING_API_KEY", "k")
    provider = provider_from_env()
    try:
        assert isinstance(provider, HttpScreeningProvider)
        assert provider.base_url == "https://screening.example.test"
    finally:
        provider.close()


def test_static_provider_matches_case_insensitively(watchlist):
    provider = StaticScreeningProvider(watchlist)

    assert provider.screen(CheckKind.SANCTIONS, "c-shady").status is CheckStatus.MATCH
    assert provider.screen(CheckKind.SANCTIONS, "C-X", "almost shady co").status is CheckStatus.REVIEW_REQUIRED
    assert provider.screen(CheckKind.ADVERSE_MEDIA, "C-ACME").lists_checked == ("ADVERSE_MEDIA_NEWS",)
