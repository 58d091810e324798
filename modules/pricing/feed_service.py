"""
Pricing Module - External Price Feed Service
===============================================
Fetches live metal prices from a metals.dev-style API.

The API quotes pure gold, silver and platinum per gram; 22K and 925 rates
are derived from purity.
"""

import logging
from decimal import Decimal
from typing import Dict

import httpx

from common.helpers import round_money, safe_decimal
from config import settings
from modules.pricing.models import MetalType

logger = logging.getLogger("karat.pricing.feed")

GOLD_22K_RATIO = Decimal("22") / Decimal("24")
SILVER_925_RATIO = Decimal("0.925")


def _fetch_spot_prices() -> Dict[str, Decimal]:
    """
    One HTTP call to the feed.

    Returns:
        dict like {"gold": Decimal("6512.40"), "silver": ..., "platinum": ...}

    Raises:
        ValueError: If the response is invalid.
        httpx.HTTPError: On network/HTTP errors.
    """
    if not settings.METAL_PRICE_API_KEY:
        raise ValueError("METAL_PRICE_API_KEY is not configured")

    resp = httpx.get(
        settings.METAL_PRICE_API_URL,
        params={
            "api_key": settings.METAL_PRICE_API_KEY,
            "currency": settings.METAL_PRICE_CURRENCY,
            "unit": "g",
        },
        timeout=settings.METAL_PRICE_TIMEOUT,
    )
    resp.raise_for_status()

    data = resp.json()
    if data.get("status") != "success":
        raise ValueError(f"Metal price API returned status={data.get('status')}: {data.get('error_message')}")
    # some plans wrap the payload in "data"
    metals = data.get("metals") or (data.get("data") or {}).get("metals")
    if not isinstance(metals, dict):
        raise ValueError(f"Metal price API missing 'metals' object: {data}")

    result = {}
    for name in ("gold", "silver", "platinum"):
        price = safe_decimal(metals.get(name))
        if price is not None and price > 0:
            result[name] = price
    return result


def fetch_metal_prices() -> Dict[str, Decimal]:
    """
    Per-gram prices keyed by MetalType value.

    Raises:
        ValueError: If the feed returned no usable price.
        httpx.HTTPError: On network/HTTP errors.
    """
    spot = _fetch_spot_prices()
    prices = {}

    gold = spot.get("gold")
    if gold:
        prices[MetalType.GOLD_24K.value] = round_money(gold)
        prices[MetalType.GOLD_22K.value] = round_money(gold * GOLD_22K_RATIO)

    silver = spot.get("silver")
    if silver:
        prices[MetalType.SILVER_999.value] = round_money(silver)
        prices[MetalType.SILVER_925.value] = round_money(silver * SILVER_925_RATIO)

    platinum = spot.get("platinum")
    if platinum:
        prices[MetalType.PLATINUM.value] = round_money(platinum)

    if not prices:
        raise ValueError("Metal price API returned no usable prices")

    logger.info(f"Fetched {len(prices)} metal price(s): " + ", ".join(f"{k}={v}" for k, v in prices.items()))
    return prices
