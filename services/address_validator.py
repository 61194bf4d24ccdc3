from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from common.config_loader import mask_key
from common.models import AddressComponents, AddressConfidence, AddressValidation

logger = logging.getLogger("booking-engine")

GEOCODING_API_URL = "https://maps.googleapis.com/maps/api/geocode/json"

HIGH_CONFIDENCE_TYPES = {"street_address", "premise"}
MEDIUM_CONFIDENCE_TYPES = {"route", "sublocality", "locality"}
MULTI_UNIT_TYPES = {"premise", "subpremise", "establishment"}
MULTI_UNIT_WORDS = ("apartment", "apt", "suite", "ste", "unit", "building", "bldg", "floor")
MIN_ADDRESS_LENGTH = 5


def extract_components(raw: List[Dict[str, Any]]) -> AddressComponents:
    out: Dict[str, Optional[str]] = {}
    number = route = None
    for comp in raw or []:
        types = comp.get("types") or []
        long_name = comp.get("long_name")
        if "street_number" in types:
            number = long_name
        elif "route" in types:
            route = long_name
        elif "subpremise" in types:
            out["unit"] = long_name
        elif "locality" in types:
            out["city"] = long_name
        elif "sublocality_level_1" in types and not out.get("city"):
            out["city"] = long_name
        elif "administrative_area_level_1" in types:
            out["state"] = comp.get("short_name") or long_name
        elif "postal_code" in types:
            out["zip"] = long_name
        elif "country" in types:
            out["country"] = comp.get("short_name") or long_name
    out["street_number"] = number
    out["street"] = f"{number} {route}" if number and route else route
    return AddressComponents(**out)


def confidence_of(result: Dict[str, Any]) -> AddressConfidence:
    types = set(result.get("types") or [])
    location_type = (result.get("geometry") or {}).get("location_type")
    precise_type = bool(types & HIGH_CONFIDENCE_TYPES)
    if precise_type and location_type == "ROOFTOP":
        return AddressConfidence.HIGH
    if precise_type or types & MEDIUM_CONFIDENCE_TYPES or location_type == "RANGE_INTERPOLATED":
        return AddressConfidence.MEDIUM
    return AddressConfidence.LOW


def needs_unit(result: Dict[str, Any]) -> bool:
    types = set(result.get("types") or [])
    has_unit = any("subpremise" in (c.get("types") or []) for c in result.get("address_components") or [])
    formatted = (result.get("formatted_address") or "").lower()
    words = set(formatted.replace(",", " ").split())
    return (bool(types & MULTI_UNIT_TYPES) and not has_unit) or any(w in words for w in MULTI_UNIT_WORDS)


def normalized_of(c: AddressComponents) -> str:
    parts = [c.street, f"Unit {c.unit}" if c.unit else None, c.city, c.state, c.zip]
    return ", ".join(p for p in parts if p)


class GoogleAddressValidator:
    """
    Address validator backed by the Google Geocoding API.

    validate() never raises: disabled, missing key or too-short input gives a
    skipped result with the raw value; transport or API errors give a failed
    result. The engine then keeps the raw address.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        region: str = "us",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("GOOGLE_MAPS_API_KEY")
        self.region = region
        self.http_client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=3.0))
        logger.info("[Geocoder] initialised (key=%s)", mask_key(self.api_key))

    async def close(self) -> None:
        await self.http_client.aclose()

    async def validate(self, raw_address: str, *, tenant_id: Optional[str] = None, enabled: bool = True) -> AddressValidation:
        raw = (raw_address or "").strip()
        if not enabled:
            return AddressValidation.skipped_result(raw, "disabled")
        if not self.api_key:
            logger.warning("[Geocoder] GOOGLE_MAPS_API_KEY not configured; skipping validation")
            return AddressValidation.skipped_result(raw, "no_api_key")
        if len(raw) < MIN_ADDRESS_LENGTH:
            return AddressValidation.skipped_result(raw, "too_short")

        try:
            resp = await self.http_client.get(
                GEOCODING_API_URL,
                params={"address": raw, "key": self.api_key, "region": self.region},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("[Geocoder] tenant=%s HTTP %s", tenant_id, e.response.status_code)
            return AddressValidation.failed_result(raw, "API_ERROR")
        except (httpx.RequestError, ValueError) as e:
            logger.warning("[Geocoder] tenant=%s request failed: %s", tenant_id, e)
            return AddressValidation.failed_result(raw, "API_ERROR")

        status = data.get("status")
        results = data.get("results") or []
        if status != "OK" or not results:
            logger.info("[Geocoder] tenant=%s no results (status=%s)", tenant_id, status)
            return AddressValidation.failed_result(raw, status or "NO_RESULTS")

        best = results[0]
        components = extract_components(best.get("address_components") or [])
        result = AddressValidation(
            success=True,
            validated=True,
            confidence=confidence_of(best),
            normalized=normalized_of(components) or best.get("formatted_address") or raw,
            formatted_address=best.get("formatted_address") or raw,
            components=components,
            needs_unit=needs_unit(best),
            place_id=best.get("place_id"),
        )
        logger.debug("[Geocoder] tenant=%s confidence=%s needs_unit=%s",
                     tenant_id, result.confidence.value, result.needs_unit)
        return result
