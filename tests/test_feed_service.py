"""External metal price feed (HTTP mocked)."""

from decimal import Decimal

import httpx
import pytest

from config import settings
from modules.pricing import feed_service


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("GET", settings.METAL_PRICE_API_URL)
            raise httpx.HTTPStatusError("error", request=request, response=httpx.Response(self.status_code))

    def json(self):
        return self._payload


@pytest.fixture
def feed(monkeypatch):
    monkeypatch.setattr(settings, "METAL_PRICE_API_KEY", "test-key")
    calls = []

    def install(payload, status_code=200):
        def fake_get(url, params=None, timeout=None):
            calls.append({"url": url, "params": params})
            return FakeResponse(payload, status_code)
        monkeypatch.setattr(feed_service.httpx, "get", fake_get)
        return calls
    return install


def test_prices_derived_from_spot(feed):
    calls = feed({"status": "success", "metals": {"gold": 6000, "silver": "80", "platinum": 3100.5}})

    prices = feed_service.fetch_metal_prices()

    assert prices == {
        "GOLD_24K": Decimal("6000.00"),
        "GOLD_22K": Decimal("5500.00"),
        "SILVER_999": Decimal("80.00"),
        "SILVER_925": Decimal("74.00"),
        "PLATINUM": Decimal("3100.50"),
    }
    assert calls[0]["params"]["api_key"] == "test-key"
    assert calls[0]["params"]["unit"] == "g"


def test_wrapped_payload_and_partial_metals(feed):
    feed({"status": "success", "data": {"metals": {"gold": "7200"}}})

    prices = feed_service.fetch_metal_prices()

    assert set(prices) == {"GOLD_24K", "GOLD_22K"}
    assert prices["GOLD_22K"] == Decimal("6600.00")


def test_error_status_rejected(feed):
    feed({"status": "failure", "error_message": "invalid key"})

    with pytest.raises(ValueError):
        feed_service.fetch_metal_prices()


def test_no_usable_prices(feed):
    feed({"status": "success", "metals": {"gold": 0, "copper": 9}})

    with pytest.raises(ValueError):
        feed_service.fetch_metal_prices()


def test_http_error_propagates(feed):
    feed({}, status_code=503)

    with pytest.raises(httpx.HTTPStatusError):
        feed_service.fetch_metal_prices()


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "METAL_PRICE_API_KEY", "")

    with pytest.raises(ValueError):
        feed_service.fetch_metal_prices()
