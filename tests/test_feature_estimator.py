"""Tests for site feature estimation and its fallbacks."""

from datetime import datetime, timezone

import pytest

from conftest import make_place
from feature_estimator import (
    DEFAULT_LOT_SIZE_SQFT,
    DefaultFeatureEstimator,
    assess_risk,
    build_analytics,
    build_property_insights,
    calculate_accessibility_score,
    classify_property_type,
    detect_seasonal_factors,
    estimate_market_segment,
    estimate_site_features,
)
from pricing_config import MarketConfig, SeasonalCalendar
from quote_models import Bounds


def _bounds_for_area(side_deg):
    """Square bounds near the equator, ~side_deg * 111 km on a side."""
    return Bounds(north=side_deg, south=0.0, east=side_deg, west=0.0)


MARKET = MarketConfig(
    premium_postal_codes=("32789",),
    premium_city_keywords=("winter park",),
)


class TestClassifyPropertyType:
    @pytest.mark.parametrize("tags,expected", [
        (["premise"], "residential"),
        (["street_address"], "residential"),
        (["establishment"], "commercial"),
        (["point_of_interest", "store"], "commercial"),
        (["route"], "agricultural"),
        (["natural_feature"], "agricultural"),
        (["locality", "political"], "residential"),
        ([], "residential"),
    ])
    def test_table(self, tags, expected):
        assert classify_property_type(tags) == expected

    def test_first_rule_wins(self):
        assert classify_property_type(["route", "premise"]) == "residential"
        assert classify_property_type(["natural_feature", "establishment"]) == "commercial"


class TestSeasonalFactors:
    @pytest.mark.parametrize("month,wetland,nesting", [
        (1, False, False),
        (3, False, True),
        (6, True, True),
        (8, True, True),
        (9, True, False),
        (10, True, False),
        (11, False, False),
    ])
    def test_calendar_windows(self, month, wetland, nesting):
        now = datetime(2026, month, 15, tzinfo=timezone.utc)
        f = detect_seasonal_factors(now, SeasonalCalendar())
        assert f.wetland_season is wetland
        assert f.bird_nesting_season is nesting
        assert f.fire_risk_level == "moderate"

    def test_fire_risk_passed_through(self):
        now = datetime(2026, 4, 1, tzinfo=timezone.utc)
        assert detect_seasonal_factors(now, SeasonalCalendar(), "high").fire_risk_level == "high"


class TestAccessibilityScore:
    def test_no_bounds_is_base(self):
        assert calculate_accessibility_score(None) == 7

    def test_large_lot(self):
        # ~0.002 deg square is ~222m x 222m, about 49,000 m2
        assert calculate_accessibility_score(_bounds_for_area(0.002)) == 8

    def test_small_lot(self):
        # ~0.0005 deg square is ~55m x 55m, about 3,000 m2
        assert calculate_accessibility_score(_bounds_for_area(0.0005)) == 6

    def test_medium_lot(self):
        assert calculate_accessibility_score(_bounds_for_area(0.001)) == 7


class TestAssessRisk:
    def test_good_access(self):
        r = assess_risk(7)
        assert r.access_risk == "low"
        assert r.liability_factors == ()
        assert r.insurance_complexity == "standard"

    def test_moderate_access(self):
        assert assess_risk(5).access_risk == "moderate"

    def test_poor_access_and_remote(self):
        r = assess_risk(3, remote=True)
        assert r.access_risk == "high"
        assert r.equipment_security_risk == "moderate"
        assert r.liability_factors == (
            "Difficult equipment access",
            "Remote location equipment security",
        )
        # Two factors is still standard; complex needs more than two.
        assert r.insurance_complexity == "standard"


class TestMarketSegment:
    def test_postal_code_allow_list(self):
        assert estimate_market_segment("32789", "Orlando", MARKET) == "premium"

    def test_city_keyword_case_insensitive(self):
        assert estimate_market_segment("32700", "Winter Park", MARKET) == "premium"

    def test_standard(self):
        assert estimate_market_segment("32720", "DeLand", MARKET) == "standard"

    def test_missing_components(self):
        assert estimate_market_segment(None, None, MARKET) == "standard"


class TestAnalyticsAndInsights:
    def test_premium_analytics(self):
        a = build_analytics("premium")
        assert a.customer_retention_probability == 0.85
        assert a.price_elasticity == 0.3
        assert a.average_project_size == 3.5
        assert a.competitor_density == 0.6

    def test_standard_analytics(self):
        a = build_analytics("standard")
        assert a.customer_retention_probability == 0.75
        assert a.price_elasticity == 0.6
        assert a.average_project_size == 2.2

    def test_default_lot_size(self):
        i = build_property_insights(None)
        assert i.lot_size_sqft == DEFAULT_LOT_SIZE_SQFT
        assert i.slope.terrain_type == "rolling"
        assert i.vegetation_coverage_pct == 65

    def test_lot_size_from_bounds(self):
        bounds = _bounds_for_area(0.001)
        i = build_property_insights(bounds)
        assert i.lot_size_sqft == pytest.approx(bounds.area_m2() * 10.7639, rel=1e-3)


class TestEstimateSiteFeatures:
    NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)

    def test_default_estimator_no_signal(self):
        features = estimate_site_features(
            DefaultFeatureEstimator(), make_place(), self.NOW, SeasonalCalendar(), MARKET,
        )
        f = features.pricing_factors
        assert f.base_property_type == "residential"
        assert f.vegetation_density == "moderate"
        assert f.terrain_difficulty is None
        assert f.equipment_accessibility is None
        assert f.proximity_to_utilities is None
        assert features.accessibility_score == 7
        assert features.risk_profile.access_risk == "low"
        assert features.analytics.market_segment == "standard"
        assert features.fallbacks == ()

    def test_commercial_tags(self):
        place = make_place(types=("establishment", "point_of_interest"))
        features = estimate_site_features(
            DefaultFeatureEstimator(), place, self.NOW, SeasonalCalendar(), MARKET,
        )
        assert features.property_type == "commercial"
        assert features.pricing_factors.base_property_type == "commercial"

    def test_failing_signal_falls_back(self):
        class BrokenSources(DefaultFeatureEstimator):
            def estimate_vegetation_density(self, coords):
                raise RuntimeError("imagery service down")

            def estimate_competitor_density(self, components):
                raise RuntimeError("directory down")

        features = estimate_site_features(
            BrokenSources(), make_place(), self.NOW, SeasonalCalendar(), MARKET,
        )
        assert features.pricing_factors.vegetation_density == "moderate"
        assert features.analytics is None
        assert "vegetation_density" in features.fallbacks
        assert "analytics" in features.fallbacks

    def test_out_of_range_signal_prices_on_defaults(self):
        class BadAccess(DefaultFeatureEstimator):
            def estimate_equipment_access(self, place):
                return 42

        features = estimate_site_features(
            BadAccess(), make_place(), self.NOW, SeasonalCalendar(), MARKET,
        )
        assert features.pricing_factors.equipment_accessibility is None
        assert "pricing_factors" in features.fallbacks

    def test_remote_location_signal(self):
        class Remote(DefaultFeatureEstimator):
            def is_remote_location(self, coords):
                return True

        features = estimate_site_features(
            Remote(), make_place(), self.NOW, SeasonalCalendar(), MARKET,
        )
        assert features.risk_profile.equipment_security_risk == "moderate"
