from __future__ import annotations

import base64
import io
import json
import socket
import urllib.error
import urllib.request

import pytest

from adapters.dapnet_transport import DapnetTransport, classify_status
from core.models import DeliveryOutcome, OutboundCall


class DummyResponse:
    def __init__(self, status: int) -> None:
        self.status = status

    def __enter__(self) -> "DummyResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None


def _call() -> OutboundCall:
    return OutboundCall(recipient_id="1141", text="10:30, One, Grand opening", priority=3, expiration_seconds=86400)


def _transport() -> DapnetTransport:
    return DapnetTransport("https://dapnet.example/api/", "user", "secret", ["all"], timeout=2)


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("https://dapnet.example/api/calls", code, "error", {}, io.BytesIO(b"nope"))


@pytest.mark.parametrize(
    ("status", "outcome"),
    [
        (200, DeliveryOutcome.SUCCESS),
        (201, DeliveryOutcome.SUCCESS),
        (409, DeliveryOutcome.CONFLICT),
        (423, DeliveryOutcome.CONFLICT),
        (429, DeliveryOutcome.RATE_LIMITED),
        (400, DeliveryOutcome.FAILURE),
        (401, DeliveryOutcome.FAILURE),
        (503, DeliveryOutcome.FAILURE),
        (None, DeliveryOutcome.FAILURE),
    ],
)
def test_classify_status(status, outcome) -> None:
    assert classify_status(status) is outcome


def test_deliver_posts_call_with_basic_auth(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(request, timeout):
        captured["request"] = request
        captured["timeout"] = timeout
        return DummyResponse(201)

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    assert _transport().deliver(_call()) is DeliveryOutcome.SUCCESS

    request = captured["request"]
    assert request.full_url == "https://dapnet.example/api/calls"
    assert request.get_method() == "POST"
    assert captured["timeout"] == 2
    expected_auth = "Basic " + base64.b64encode(b"user:secret").decode("ascii")
    assert request.get_header("Authorization") == expected_auth
    body = json.loads(request.data.decode("utf-8"))
    assert body["subscribers"] == ["1141"]
    assert body["transmitter_groups"] == ["all"]
    assert body["data"] == "10:30, One, Grand opening"


@pytest.mark.parametrize(
    ("code", "outcome"),
    [(423, DeliveryOutcome.CONFLICT), (429, DeliveryOutcome.RATE_LIMITED), (500, DeliveryOutcome.FAILURE)],
)
def test_deliver_maps_http_errors(monkeypatch, code, outcome) -> None:
    def fake_urlopen(request, timeout):
        raise _http_error(code)

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    assert _transport().deliver(_call()) is outcome


@pytest.mark.parametrize("error", [urllib.error.URLError("unreachable"), socket.timeout("timed out")])
def test_deliver_maps_network_errors_to_failure(monkeypatch, error) -> None:
    def fake_urlopen(request, timeout):
        raise error

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    assert _transport().deliver(_call()) is DeliveryOutcome.FAILURE


def test_transport_requires_credentials() -> None:
    with pytest.raises(ValueError):
        DapnetTransport("https://dapnet.example/api", "", "secret", ["all"])
    with pytest.raises(ValueError):
        DapnetTransport("", "user", "secret", ["all"])
    with pytest.raises(ValueError):
        DapnetTransport("https://dapnet.example/api", "user", "secret", [])
