"""Tests for quote assembly, line items and JSON serialization."""

import json
from datetime import timedelta

import pytest

from conftest import FIXED_NOW, make_place
from feature_estimator import SiteFeatures
from pricing_engine import synthesize
from quote_assembly import (
    assemble_location_quote,
    assemble_property_location,
    build_project_analysis,
    build_recommendations,
    location_to_dict,
    quote_line_items,
    quote_to_dict,
)
from quote_models import (
    LocationAnalytics,
    PricingFactors,
    RiskProfile,
    SeasonalFactors,
    ServiceAreaClassification,
    TravelMetrics,
)

TRAVEL = TravelMetrics(meters=45000, duration_seconds=2700)


def _features(density="moderate", seasonal=None, risk=None, segment="standard"):
    factors = PricingFactors(
        vegetation_density=density,
        seasonal_factors=seasonal or SeasonalFactors(),
    )
    return SiteFeatures(
        pricing_factors=factors,
        property_type="residential",
        accessibility_score=7,
        risk_profile=risk or RiskProfile(),
        analytics=LocationAnalytics(market_segment=segment),
    )


def _location(features=None, acres=1):
    features = features or _features()
    estimate = synthesize(features.pricing_factors, TRAVEL.duration_minutes, acres)
    return assemble_property_location(
        make_place(), TRAVEL, features, estimate, created_at=FIXED_NOW,
    ), estimate


def _quote(location, estimate, acres=1):
    classification = ServiceAreaClassification("Primary Service Area - Standard", 5)
    return assemble_location_quote(
        location, classification, True, estimate,
        service_area_surcharge_amount=round(estimate.base_price * 0.05, 2),
        project_acres=acres, now=FIXED_NOW,
    )


class TestAssemblePropertyLocation:
    def test_fields_composed(self):
        location, estimate = _location()
        assert location.place_id == "place-123"
        assert location.pricing_analysis.estimate == estimate
        assert location.analytics.market_segment == "standard"
        assert location.created_at == FIXED_NOW

    def test_missing_enrichment_is_none(self):
        location = assemble_property_location(make_place(), TRAVEL, None, None)
        assert location.pricing_analysis is None
        assert location.risk_profile is None
        assert location.property_type == "residential"
        assert location.accessibility_score == 7

    def test_override_address_and_verified(self):
        location = assemble_property_location(
            make_place(), TRAVEL, None, None, verified=False, address="Lot 7",
        )
        assert location.address == "Lot 7"
        assert location.verified is False


class TestProjectAnalysis:
    @pytest.mark.parametrize("density,acres,days", [
        ("light", 1, 1),
        ("moderate", 4, 2),
        ("heavy", 3, 3),
        ("extreme", 5, 5),
        ("moderate", 0.2, 1),
    ])
    def test_duration(self, density, acres, days):
        location, _ = _location(_features(density=density))
        assert build_project_analysis(location, acres).estimated_duration_days == days

    def test_extreme_equipment(self):
        location, _ = _location(_features(density="extreme"))
        equipment = build_project_analysis(location, 1).equipment_required
        assert equipment == (
            "Forestry Mulcher", "Support Crew", "Heavy-duty Mulcher", "Additional Crew",
        )

    def test_seasonal_notes(self):
        seasonal = SeasonalFactors(wetland_season=True, bird_nesting_season=True)
        location, _ = _location(_features(seasonal=seasonal))
        notes = build_project_analysis(location, 1).seasonal_notes
        assert notes == (
            "Wet season considerations",
            "Bird nesting season restrictions may apply",
        )

    def test_risk_factors_carried(self):
        risk = RiskProfile(access_risk="high", liability_factors=("Difficult equipment access",))
        location, _ = _location(_features(risk=risk))
        assert build_project_analysis(location, 1).risk_factors == ("Difficult equipment access",)


class TestRecommendations:
    def test_none_for_small_standard_job(self):
        location, estimate = _location()
        assert build_recommendations(location, estimate) == ()

    def test_all(self):
        risk = RiskProfile(access_risk="high")
        location, estimate = _location(_features(risk=risk, segment="premium"), acres=5)
        recs = build_recommendations(location, estimate)
        assert recs == (
            "Schedule site visit to confirm equipment access",
            "Consider phasing project to spread costs over time",
            "Premium service tier recommended for this market segment",
        )


class TestAssembleQuote:
    def test_surcharge_and_transport_separate(self):
        location, estimate = _location()
        quote = _quote(location, estimate)
        assert quote.service_area_surcharge_amount == 140
        assert quote.transportation.cost == 700
        assert quote.estimate.total_estimate == 2800 + 700

    def test_valid_for_thirty_days(self):
        location, estimate = _location()
        quote = _quote(location, estimate)
        assert quote.valid_until == FIXED_NOW + timedelta(days=30)
        assert quote.quote_id.startswith("QT-20260115-")

    def test_line_items_contract(self):
        location, estimate = _location()
        items = quote_line_items(_quote(location, estimate))
        assert items == {
            "base_price": 2800,
            "transportation_cost": 700,
            "service_area_surcharge_percent": 5,
            "service_area_surcharge_amount": 140,
            "total_estimate": 3500,
        }


class TestSerialization:
    def test_location_to_dict_is_json(self):
        location, _ = _location()
        d = location_to_dict(location)
        json.dumps(d)
        assert d["distance_from_base"]["distance_km"] == 45
        assert d["distance_from_base"]["distance_miles"] == pytest.approx(28.0)
        assert d["created_at"] == FIXED_NOW.isoformat()
        assert d["components"]["city"] == "DeLand"

    def test_quote_to_dict_is_json(self):
        location, estimate = _location()
        d = quote_to_dict(_quote(location, estimate))
        json.dumps(d)
        assert d["transportation_cost"]["breakdown"] == "1h each way = 2h total @ $350/hr"
        assert d["transportation_cost"]["round_trip_minutes"] == 90
        assert d["service_area_tier"]["zone"] == "Primary Service Area - Standard"
        assert d["line_items"]["total_estimate"] == 3500
        assert d["project_analysis"]["equipment_required"] == ["Forestry Mulcher", "Support Crew"]
