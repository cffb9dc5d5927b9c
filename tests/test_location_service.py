"""End-to-end pipeline tests for LocationService against a fake provider."""

import logging
from unittest.mock import MagicMock

import pytest

from conftest import FIXED_NOW, FakeGeoProvider
from cache_store import MemoryCache, SQLiteCache
from geo_provider import GeoProvider, GoogleMapsClient
from location_service import LocationService, create_location_service
from pricing_config import PRICING_MODEL
from quote_errors import (
    AddressNotFound,
    GeoProviderError,
    InvalidProjectSize,
    NoResultAtCoordinates,
    RouteUnavailable,
)
from quote_models import Bounds, Coordinates, PinDropRequest, TravelMetrics
from quote_trace import TraceContext, clear_trace, set_trace
from test_geo_provider import GEOCODE_RESULT


class TestVerifyPropertyLocation:
    def test_reference_scenario(self, service):
        location = service.verify_property_location("123 Oak St, DeLand", project_acres=1)
        estimate = location.pricing_analysis.estimate
        assert estimate.base_price == 2800
        assert estimate.travel_surcharge == 350
        assert estimate.total_estimate == 3150
        assert estimate.confidence == 0.7
        assert location.verified is True
        assert location.property_type == "residential"
        assert location.distance_from_base.distance_km == 25
        assert location.created_at == FIXED_NOW

    def test_zero_acres_makes_no_provider_call(self, service, fake_provider):
        with pytest.raises(InvalidProjectSize):
            service.verify_property_location("123 Oak St, DeLand", project_acres=0)
        assert fake_provider.calls == []

    def test_blank_address(self, service, fake_provider):
        with pytest.raises(AddressNotFound):
            service.verify_property_location("   ")
        assert fake_provider.calls == []

    def test_unknown_address_propagates(self, service):
        with pytest.raises(AddressNotFound):
            service.verify_property_location("1 Nowhere Rd")

    def test_route_failure_propagates(self, service, fake_provider):
        fake_provider.travel_error = RouteUnavailable("no road to the island")
        with pytest.raises(RouteUnavailable):
            service.verify_property_location("123 Oak St")

    def test_travel_routed_to_place_id(self, service, fake_provider):
        service.verify_property_location("123 Oak St")
        assert ("travel_metrics", "place-123") in fake_provider.calls

    def test_repeat_lookup_is_value_equal(self, service):
        first = service.verify_property_location("123 Oak St, DeLand")
        second = service.verify_property_location("123 Oak St, DeLand")
        assert first == second

    def test_stages_traced(self, service):
        ctx = TraceContext(trace_id="t")
        set_trace(ctx)
        try:
            service.verify_property_location("123 Oak St")
        finally:
            clear_trace()
        names = {s.stage_name for s in ctx.stages}
        assert {"resolve", "travel", "features", "pricing"} <= names


class TestCacheHitEquality:
    """A second lookup served from the provider cache yields an equal location."""

    def test_cached_provider(self, fixed_clock):
        client = MagicMock(spec=GoogleMapsClient)
        client.validate_address.return_value = {"verdict": {"addressComplete": True}}
        client.text_search.return_value = [{"place_id": "place-123", "types": ["premise"]}]
        client.geocode_place_id.return_value = GEOCODE_RESULT
        client.distance_matrix.return_value = {
            "status": "OK", "distance": {"value": 25000}, "duration": {"value": 1800},
        }
        provider = GeoProvider(client, PRICING_MODEL.service_base, cache=MemoryCache())
        service = LocationService(provider, clock=fixed_clock)

        first = service.verify_property_location("123 Oak St, DeLand")
        second = service.verify_property_location("123 oak st,  deland")
        assert first == second
        assert client.text_search.call_count == 1
        assert client.distance_matrix.call_count == 1


class TestPinDrop:
    def test_pin_coordinates_kept(self, service):
        pin = PinDropRequest(coordinates=Coordinates(29.1, -81.2))
        location = service.process_pin_drop_location(pin)
        assert location.coordinates == Coordinates(29.1, -81.2)
        assert location.verified is True

    def test_caller_address_wins(self, service, fake_provider):
        pin = PinDropRequest(coordinates=Coordinates(29.1, -81.2), address="Lot 7, Hunting Camp Rd")
        location = service.process_pin_drop_location(pin)
        assert location.address == "Lot 7, Hunting Camp Rd"
        assert ("validate_address", "Lot 7, Hunting Camp Rd") in fake_provider.calls

    def test_invalid_verdict_unverified(self, fixed_clock):
        provider = FakeGeoProvider(verdict="INVALID")
        service = LocationService(provider, clock=fixed_clock)
        location = service.process_pin_drop_location(PinDropRequest(Coordinates(29.1, -81.2)))
        assert location.verified is False

    def test_validation_failure_is_not_terminal(self, service, fake_provider, caplog):
        fake_provider.validate_error = GeoProviderError("validation down")
        with caplog.at_level(logging.WARNING, logger="location_service"):
            location = service.process_pin_drop_location(PinDropRequest(Coordinates(29.1, -81.2)))
        assert location.verified is False
        assert "validation failed" in caplog.text

    def test_travel_routed_to_pin(self, service, fake_provider):
        service.process_pin_drop_location(PinDropRequest(Coordinates(29.1, -81.2)))
        assert ("travel_metrics", Coordinates(29.1, -81.2)) in fake_provider.calls

    def test_bounds_drive_accessibility_and_lot_size(self, service):
        bounds = Bounds(north=29.1005, south=29.1, east=-81.1995, west=-81.2)
        pin = PinDropRequest(Coordinates(29.1, -81.2), bounds=bounds, notes="gate code 1234")
        location = service.process_pin_drop_location(pin)
        assert location.accessibility_score == 6
        assert location.risk_profile.access_risk == "moderate"
        assert location.property_insights.lot_size_sqft == pytest.approx(
            bounds.area_m2() * 10.7639, rel=1e-3,
        )
        assert location.notes == "gate code 1234"

    def test_no_result(self, service):
        with pytest.raises(NoResultAtCoordinates):
            service.process_pin_drop_location(PinDropRequest(Coordinates(0, 0)))

    def test_zero_acres(self, service, fake_provider):
        with pytest.raises(InvalidProjectSize):
            service.process_pin_drop_location(PinDropRequest(Coordinates(29.1, -81.2)), 0)
        assert fake_provider.calls == []


class TestGenerateQuote:
    def test_heavy_five_acres(self, service):
        location = service.verify_property_location("123 Oak St")
        quote = service.generate_location_quote(
            location, 5, overrides={"vegetation_density": "heavy"},
        )
        assert quote.estimate.base_price == 19600
        assert quote.estimate.total_estimate == 19950
        assert quote.location.pricing_analysis.pricing_factors.vegetation_density == "heavy"
        assert quote.service_area_tier.zone_description == "Core Service Area - Premium Response"
        assert quote.service_area_surcharge_amount == 0
        assert quote.transportation.cost == 350

    def test_primary_zone_surcharge_separate(self, fixed_clock):
        provider = FakeGeoProvider(travel=TravelMetrics(meters=45000, duration_seconds=2700))
        service = LocationService(provider, clock=fixed_clock)
        quote = service.quote_address("123 Oak St", 1)
        assert quote.service_area_tier.surcharge_percent == 5
        assert quote.service_area_surcharge_amount == 140
        # 45 min each way: 90 min round trip bills 2 hours
        assert quote.transportation.cost == 700
        assert quote.estimate.total_estimate == 2800 + 700

    def test_accessibility_override(self, service):
        location = service.verify_property_location("123 Oak St")
        quote = service.generate_location_quote(location, 1, {"accessibility_rating": 3})
        assert quote.estimate.difficulty_multiplier == pytest.approx(1.2)
        assert quote.location.risk_profile.access_risk == "high"
        assert quote.service_area_tier.risk_adjustment_percent == 5
        assert "Schedule site visit to confirm equipment access" in quote.recommendations

    def test_bad_override_rejected(self, service):
        location = service.verify_property_location("123 Oak St")
        with pytest.raises(ValueError):
            service.generate_location_quote(location, 1, {"vegetation_density": "jungle"})

    def test_zero_acres(self, service):
        location = service.verify_property_location("123 Oak St")
        with pytest.raises(InvalidProjectSize):
            service.generate_location_quote(location, 0)

    def test_quote_pin_drop(self, service):
        quote = service.quote_pin_drop(PinDropRequest(Coordinates(29.1, -81.2)), 2)
        assert quote.estimate.base_price == 5600
        assert quote.valid_until.date().isoformat() == "2026-02-14"


class TestServiceAreaCheck:
    def test_base_is_within(self, service):
        assert service.is_within_service_area(service.base_coordinates) is True

    def test_far_away_is_outside(self, service):
        assert service.is_within_service_area(Coordinates(25.7617, -80.1918)) is False


class TestFactory:
    def test_no_key_returns_none(self, monkeypatch, caplog):
        monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
        with caplog.at_level(logging.WARNING, logger="location_service"):
            assert create_location_service() is None
        assert "GOOGLE_MAPS_API_KEY" in caplog.text

    def test_builds_with_key(self, monkeypatch):
        monkeypatch.delenv("QUOTE_CACHE_PATH", raising=False)
        monkeypatch.setenv("TRANSPORT_HOURLY_RATE", "400")
        service = create_location_service(api_key="k")
        assert isinstance(service, LocationService)
        assert service.model.transport_hourly_rate == 400
        assert isinstance(service.provider.cache, MemoryCache)

    def test_sqlite_cache_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("QUOTE_CACHE_PATH", str(tmp_path / "geo.db"))
        service = create_location_service(api_key="k")
        assert isinstance(service.provider.cache, SQLiteCache)
