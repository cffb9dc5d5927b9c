"""
Property feature estimation: everything we can say about a site before a
crew visits it.

Each sub-estimate is a method on FeatureEstimator so a smarter source
(imagery, parcel data, elevation) can replace one signal without touching
the rest.  DefaultFeatureEstimator returns the no-signal values: ``None``
where the pricing synthesizer should substitute its configured default,
fixed placeholders elsewhere.

estimate_site_features() runs every sub-estimate guarded.  A failure is
logged and replaced by the documented default, so pricing is always
computable.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence, Tuple, TypeVar

from pricing_config import MarketConfig, SeasonalCalendar
from quote_models import (
    AddressComponents,
    Bounds,
    Coordinates,
    LocationAnalytics,
    PricingFactors,
    PropertyInsights,
    ResolvedPlace,
    RiskProfile,
    SeasonalFactors,
    SlopeAnalysis,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SQFT_PER_M2 = 10.7639
DEFAULT_LOT_SIZE_SQFT = 10000.0

# Provider place tags -> property type.  Checked in order; first hit wins.
PROPERTY_TYPE_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("premise", "street_address"), "residential"),
    (("establishment", "point_of_interest"), "commercial"),
    (("route", "natural_feature"), "agricultural"),
)

# Bounds area thresholds for the accessibility score (square meters).
LARGE_LOT_M2 = 40000
SMALL_LOT_M2 = 4000
BASE_ACCESSIBILITY_SCORE = 7


# =============================================================================
# Pure rules
# =============================================================================

def classify_property_type(tags: Sequence[str]) -> str:
    """Map provider place tags to a property type (default residential)."""
    tag_set = set(tags or ())
    for rule_tags, property_type in PROPERTY_TYPE_RULES:
        if tag_set.intersection(rule_tags):
            return property_type
    return "residential"


def detect_seasonal_factors(
    now: datetime,
    calendar: SeasonalCalendar,
    fire_risk_level: Optional[str] = None,
) -> SeasonalFactors:
    month = now.month
    return SeasonalFactors(
        wetland_season=month in calendar.wetland_months,
        bird_nesting_season=month in calendar.bird_nesting_months,
        fire_risk_level=fire_risk_level or calendar.default_fire_risk,
    )


def calculate_accessibility_score(bounds: Optional[Bounds] = None) -> int:
    """1-10 rating of how easily equipment reaches the work area.

    Larger lots leave room to stage and turn a mulcher; tight lots don't.
    """
    score = BASE_ACCESSIBILITY_SCORE
    if bounds is not None:
        area = bounds.area_m2()
        if area > LARGE_LOT_M2:
            score += 1
        elif area < SMALL_LOT_M2:
            score -= 1
    return max(1, min(10, score))


def assess_risk(
    accessibility_score: int,
    remote: bool = False,
    weather_vulnerability: int = 6,
) -> RiskProfile:
    liability = []
    if accessibility_score < 4:
        access_risk = "high"
        liability.append("Difficult equipment access")
    elif accessibility_score < 7:
        access_risk = "moderate"
    else:
        access_risk = "low"

    equipment_risk = "low"
    if remote:
        equipment_risk = "moderate"
        liability.append("Remote location equipment security")

    return RiskProfile(
        access_risk=access_risk,
        equipment_security_risk=equipment_risk,
        weather_vulnerability=weather_vulnerability,
        liability_factors=tuple(liability),
        insurance_complexity="complex" if len(liability) > 2 else "standard",
    )


def estimate_market_segment(
    postal_code: Optional[str],
    city: Optional[str],
    market: MarketConfig,
) -> str:
    if postal_code and postal_code in market.premium_postal_codes:
        return "premium"
    city_lower = (city or "").lower()
    if city_lower and any(kw.lower() in city_lower for kw in market.premium_city_keywords):
        return "premium"
    return "standard"


def build_analytics(segment: str, competitor_density: float = 0.6) -> LocationAnalytics:
    premium = segment == "premium"
    return LocationAnalytics(
        market_segment=segment,
        competitor_density=competitor_density,
        historical_demand="moderate",
        customer_retention_probability=0.85 if premium else 0.75,
        price_elasticity=0.3 if premium else 0.6,
        average_project_size=3.5 if premium else 2.2,
    )


def build_property_insights(bounds: Optional[Bounds] = None) -> PropertyInsights:
    lot_size = DEFAULT_LOT_SIZE_SQFT
    if bounds is not None:
        lot_size = round(bounds.area_m2() * SQFT_PER_M2, 1)
    return PropertyInsights(
        lot_size_sqft=lot_size,
        building_count=1,
        vegetation_coverage_pct=65.0,
        slope=SlopeAnalysis(average_slope=2.5, max_slope=8.0, terrain_type="rolling"),
        water_features=(),
        utility_clearance_needs=False,
    )


# =============================================================================
# Estimator strategy
# =============================================================================

class FeatureEstimator:
    """Strategy interface for site signals.

    Subclasses override the signals they have a real source for.
    """

    def estimate_vegetation_density(self, coords: Coordinates) -> str:
        raise NotImplementedError

    def estimate_terrain_difficulty(self, coords: Coordinates) -> Optional[int]:
        raise NotImplementedError

    def estimate_equipment_access(self, place: ResolvedPlace) -> Optional[int]:
        raise NotImplementedError

    def check_utility_proximity(self, coords: Coordinates) -> Optional[bool]:
        raise NotImplementedError

    def environmental_restrictions(self, components: AddressComponents) -> Tuple[str, ...]:
        raise NotImplementedError

    def assess_fire_risk(self, coords: Coordinates) -> str:
        raise NotImplementedError

    def estimate_competitor_density(self, components: AddressComponents) -> float:
        raise NotImplementedError

    def estimate_weather_vulnerability(self, coords: Coordinates) -> int:
        raise NotImplementedError

    def is_remote_location(self, coords: Coordinates) -> bool:
        raise NotImplementedError


class DefaultFeatureEstimator(FeatureEstimator):
    """No external signal sources; every method returns its fallback."""

    def estimate_vegetation_density(self, coords):
        return "moderate"

    def estimate_terrain_difficulty(self, coords):
        return None

    def estimate_equipment_access(self, place):
        return None

    def check_utility_proximity(self, coords):
        return None

    def environmental_restrictions(self, components):
        return ()

    def assess_fire_risk(self, coords):
        return "moderate"

    def estimate_competitor_density(self, components):
        return 0.6

    def estimate_weather_vulnerability(self, coords):
        return 6

    def is_remote_location(self, coords):
        return False


# =============================================================================
# Bundle
# =============================================================================

@dataclass(frozen=True)
class SiteFeatures:
    pricing_factors: PricingFactors
    property_type: str
    accessibility_score: int
    risk_profile: Optional[RiskProfile] = None
    analytics: Optional[LocationAnalytics] = None
    property_insights: Optional[PropertyInsights] = None
    fallbacks: Tuple[str, ...] = field(default=(), compare=False)


def _guarded(name: str, fn: Callable[[], T], default: T, fallbacks: list) -> T:
    try:
        return fn()
    except Exception as e:
        logger.warning("Feature estimate %s failed, using default: %s", name, e)
        fallbacks.append(name)
        return default


def estimate_site_features(
    estimator: FeatureEstimator,
    place: ResolvedPlace,
    now: datetime,
    calendar: SeasonalCalendar,
    market: MarketConfig,
    bounds: Optional[Bounds] = None,
) -> SiteFeatures:
    """Run every sub-estimate for *place* and bundle the results.

    Enrichment blocks (risk, analytics, insights) are ``None`` when they
    could not be built at all.
    """
    coords = place.coordinates
    components = place.components
    fallbacks: list = []

    property_type = _guarded(
        "property_type", lambda: classify_property_type(place.types), "residential", fallbacks,
    )
    vegetation = _guarded(
        "vegetation_density", lambda: estimator.estimate_vegetation_density(coords),
        "moderate", fallbacks,
    )
    terrain = _guarded(
        "terrain_difficulty", lambda: estimator.estimate_terrain_difficulty(coords),
        None, fallbacks,
    )
    access = _guarded(
        "equipment_access", lambda: estimator.estimate_equipment_access(place),
        None, fallbacks,
    )
    utilities = _guarded(
        "utility_proximity", lambda: estimator.check_utility_proximity(coords),
        None, fallbacks,
    )
    restrictions = _guarded(
        "environmental_restrictions",
        lambda: tuple(estimator.environmental_restrictions(components)),
        (), fallbacks,
    )
    fire_risk = _guarded(
        "fire_risk", lambda: estimator.assess_fire_risk(coords),
        calendar.default_fire_risk, fallbacks,
    )
    seasonal = _guarded(
        "seasonal_factors", lambda: detect_seasonal_factors(now, calendar, fire_risk),
        SeasonalFactors(fire_risk_level=calendar.default_fire_risk), fallbacks,
    )

    try:
        factors = PricingFactors(
            base_property_type=property_type,
            vegetation_density=vegetation,
            terrain_difficulty=terrain,
            equipment_accessibility=access,
            proximity_to_utilities=utilities,
            environmental_restrictions=restrictions,
            seasonal_factors=seasonal,
        )
    except ValueError as e:
        # An estimator produced an out-of-range value; price on defaults.
        logger.warning("Estimated pricing factors rejected, using defaults: %s", e)
        fallbacks.append("pricing_factors")
        factors = PricingFactors(seasonal_factors=seasonal)
        property_type = factors.base_property_type

    accessibility = _guarded(
        "accessibility_score", lambda: calculate_accessibility_score(bounds),
        BASE_ACCESSIBILITY_SCORE, fallbacks,
    )
    remote = _guarded(
        "remote_location", lambda: estimator.is_remote_location(coords), False, fallbacks,
    )
    weather = _guarded(
        "weather_vulnerability", lambda: estimator.estimate_weather_vulnerability(coords),
        6, fallbacks,
    )
    risk = _guarded(
        "risk_profile", lambda: assess_risk(accessibility, remote, weather), None, fallbacks,
    )
    analytics = _guarded(
        "analytics",
        lambda: build_analytics(
            estimate_market_segment(components.postal_code, components.city, market),
            estimator.estimate_competitor_density(components),
        ),
        None, fallbacks,
    )
    insights = _guarded(
        "property_insights", lambda: build_property_insights(bounds), None, fallbacks,
    )

    return SiteFeatures(
        pricing_factors=factors,
        property_type=property_type,
        accessibility_score=accessibility,
        risk_profile=risk,
        analytics=analytics,
        property_insights=insights,
        fallbacks=tuple(fallbacks),
    )
