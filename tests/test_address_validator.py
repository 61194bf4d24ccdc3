# tests/test_address_validator.py
import httpx
import pytest

from common.models import AddressConfidence
from services.address_validator import GoogleAddressValidator, confidence_of, needs_unit

pytestmark = pytest.mark.asyncio

METRO_PARKWAY = {
    "status": "OK",
    "results": [{
        "formatted_address": "12155 Metro Pkwy, Fort Myers, FL 33966, USA",
        "types": ["street_address"],
        "geometry": {"location_type": "ROOFTOP"},
        "place_id": "ChIJ-metro",
        "address_components": [
            {"long_name": "12155", "short_name": "12155", "types": ["street_number"]},
            {"long_name": "Metro Parkway", "short_name": "Metro Pkwy", "types": ["route"]},
            {"long_name": "Fort Myers", "short_name": "Fort Myers", "types": ["locality", "political"]},
            {"long_name": "Florida", "short_name": "FL", "types": ["administrative_area_level_1", "political"]},
            {"long_name": "33966", "short_name": "33966", "types": ["postal_code"]},
            {"long_name": "United States", "short_name": "US", "types": ["country", "political"]},
        ],
    }],
}


def geocoder(handler, api_key="test-key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleAddressValidator(api_key, http_client=client)


async def test_rooftop_street_address_is_high_confidence():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=METRO_PARKWAY)

    v = geocoder(handler)
    result = await v.validate("12155 metro parkway fort myers", tenant_id="acme")
    await v.close()

    assert result.success and result.validated
    assert result.confidence == AddressConfidence.HIGH
    assert result.formatted_address == "12155 Metro Pkwy, Fort Myers, FL 33966, USA"
    assert result.components.street == "12155 Metro Parkway"
    assert result.components.city == "Fort Myers"
    assert result.components.state == "FL"
    assert result.normalized == "12155 Metro Parkway, Fort Myers, FL, 33966"
    assert not result.needs_unit
    assert seen[0].url.params["address"] == "12155 metro parkway fort myers"
    assert seen[0].url.params["key"] == "test-key"
    assert seen[0].url.params["region"] == "us"


async def test_missing_key_or_disabled_skips_without_calling():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=METRO_PARKWAY)

    no_key = await geocoder(handler, api_key="").validate("12155 Metro Parkway")
    disabled = await geocoder(handler).validate("12155 Metro Parkway", enabled=False)
    short = await geocoder(handler).validate("12 A")

    assert (no_key.reason, disabled.reason, short.reason) == ("no_api_key", "disabled", "too_short")
    assert all(r.success and r.skipped and not r.validated for r in (no_key, disabled, short))
    assert no_key.formatted_address == "12155 Metro Parkway"
    assert calls == []


async def test_http_error_is_a_failed_result():
    v = geocoder(lambda request: httpx.Response(500, text="boom"))
    result = await v.validate("12155 Metro Parkway")
    assert not result.success
    assert result.reason == "API_ERROR"
    assert result.formatted_address == "12155 Metro Parkway"


async def test_transport_error_is_a_failed_result():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    result = await geocoder(handler).validate("12155 Metro Parkway")
    assert not result.success
    assert result.reason == "API_ERROR"


async def test_zero_results_keeps_the_raw_address():
    v = geocoder(lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []}))
    result = await v.validate("12155 Nowhere Lane")
    assert not result.success
    assert result.reason == "ZERO_RESULTS"
    assert result.normalized == "12155 Nowhere Lane"


async def test_confidence_tiers_and_unit_detection():
    assert confidence_of({"types": ["route"], "geometry": {"location_type": "GEOMETRIC_CENTER"}}) == \
        AddressConfidence.MEDIUM
    assert confidence_of({"types": ["street_address"], "geometry": {"location_type": "RANGE_INTERPOLATED"}}) == \
        AddressConfidence.MEDIUM
    assert confidence_of({"types": ["postal_code"], "geometry": {}}) == AddressConfidence.LOW

    assert needs_unit({"types": ["premise"], "address_components": []})
    assert not needs_unit({"types": ["premise"], "address_components": [{"types": ["subpremise"]}]})
    assert needs_unit({"types": ["street_address"], "formatted_address": "500 Main St Apartment Complex, Austin"})
