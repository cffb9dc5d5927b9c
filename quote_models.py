"""
Value objects shared across the quoting pipeline.

Everything here is a frozen dataclass: a new lookup produces a new object
and nothing is mutated after construction.  Sequences are tuples so that
two results built from the same inputs compare equal.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple

from pricing_config import FIRE_RISK_LEVELS, PROPERTY_TYPES, VEGETATION_DENSITIES


def _check_rating(name: str, value: Optional[int]) -> None:
    if value is not None and not 1 <= value <= 10:
        raise ValueError(f"{name} must be between 1 and 10, got {value}")


# =============================================================================
# LOCATION PRIMITIVES
# =============================================================================

@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def __post_init__(self):
        if not -90 <= self.lat <= 90:
            raise ValueError(f"Latitude out of range: {self.lat}")
        if not -180 <= self.lng <= 180:
            raise ValueError(f"Longitude out of range: {self.lng}")

    def as_param(self) -> str:
        """Render as the "lat,lng" string Google endpoints expect."""
        return f"{self.lat},{self.lng}"


@dataclass(frozen=True)
class Bounds:
    """Property bounds as drawn on the map (LatLngBoundsLiteral)."""
    north: float
    south: float
    east: float
    west: float

    def area_m2(self) -> float:
        """Approximate enclosed area in square meters (~111 km per degree)."""
        lat_diff = self.north - self.south
        lng_diff = self.east - self.west
        avg_lat = (self.north + self.south) / 2
        lat_m = lat_diff * 111000
        lng_m = lng_diff * 111000 * math.cos(math.radians(avg_lat))
        return abs(lat_m * lng_m)


@dataclass(frozen=True)
class AddressComponents:
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    county: Optional[str] = None
    country: Optional[str] = None


@dataclass(frozen=True)
class ResolvedPlace:
    """Normalized location record produced by the geo provider."""
    place_id: str
    formatted_address: str
    coordinates: Coordinates
    components: AddressComponents = field(default_factory=AddressComponents)
    types: Tuple[str, ...] = ()
    verified: bool = False
    verdict: str = "UNCONFIRMED"    # VALID | INVALID | UNCONFIRMED


@dataclass(frozen=True)
class TravelMetrics:
    """Driving distance/time as reported by the routing provider."""
    meters: float
    duration_seconds: float

    @property
    def distance_km(self) -> float:
        return self.meters / 1000

    @property
    def duration_minutes(self) -> float:
        return self.duration_seconds / 60


@dataclass(frozen=True)
class PinDropRequest:
    coordinates: Coordinates
    address: Optional[str] = None
    bounds: Optional[Bounds] = None
    notes: Optional[str] = None


# =============================================================================
# PRICING
# =============================================================================

@dataclass(frozen=True)
class SeasonalFactors:
    wetland_season: bool = False
    bird_nesting_season: bool = False
    fire_risk_level: str = "moderate"

    def __post_init__(self):
        if self.fire_risk_level not in FIRE_RISK_LEVELS:
            raise ValueError(f"Unknown fire risk level: {self.fire_risk_level!r}")


@dataclass(frozen=True)
class PricingFactors:
    """Inputs to the pricing synthesizer.

    Optional fields are ``None`` when no signal was available; the
    synthesizer substitutes the configured defaults and the estimate's
    confidence reflects how many signals were present.
    """
    base_property_type: str = "residential"
    vegetation_density: str = "moderate"
    terrain_difficulty: Optional[int] = None
    equipment_accessibility: Optional[int] = None
    proximity_to_utilities: Optional[bool] = None
    environmental_restrictions: Tuple[str, ...] = ()
    seasonal_factors: SeasonalFactors = field(default_factory=SeasonalFactors)

    def __post_init__(self):
        if self.base_property_type not in PROPERTY_TYPES:
            raise ValueError(f"Unknown property type: {self.base_property_type!r}")
        if self.vegetation_density not in VEGETATION_DENSITIES:
            raise ValueError(f"Unknown vegetation density: {self.vegetation_density!r}")
        _check_rating("terrain_difficulty", self.terrain_difficulty)
        _check_rating("equipment_accessibility", self.equipment_accessibility)


@dataclass(frozen=True)
class TransportationCost:
    one_way_minutes: float
    round_trip_minutes: float
    billable_hours: int
    hourly_rate: float
    cost: float
    description: str = ""


@dataclass(frozen=True)
class PricingDetails:
    price_per_acre: float
    acres: float
    vegetation_multiplier: float
    difficulty_multiplier: float
    environmental_adjustment: float
    final_price_per_acre: float


@dataclass(frozen=True)
class PriceEstimate:
    base_price: float
    travel_surcharge: float
    difficulty_multiplier: float
    total_estimate: float
    confidence: float
    details: Optional[PricingDetails] = None
    transportation: Optional[TransportationCost] = None


@dataclass(frozen=True)
class PricingAnalysis:
    pricing_factors: PricingFactors
    estimate: PriceEstimate


# =============================================================================
# ENRICHMENT
# =============================================================================

@dataclass(frozen=True)
class LocationAnalytics:
    market_segment: str = "standard"          # premium | standard | budget
    competitor_density: float = 0.5
    historical_demand: str = "moderate"       # low | moderate | high
    customer_retention_probability: float = 0.75
    price_elasticity: float = 0.5
    average_project_size: float = 2.5         # acres


@dataclass(frozen=True)
class RiskProfile:
    access_risk: str = "low"                  # low | moderate | high
    equipment_security_risk: str = "low"
    weather_vulnerability: int = 5            # 1-10
    liability_factors: Tuple[str, ...] = ()
    insurance_complexity: str = "standard"    # standard | complex


@dataclass(frozen=True)
class SlopeAnalysis:
    average_slope: float
    max_slope: float
    terrain_type: str                         # flat | rolling | steep | mountainous


@dataclass(frozen=True)
class PropertyInsights:
    lot_size_sqft: float
    building_count: int
    vegetation_coverage_pct: float
    slope: SlopeAnalysis
    water_features: Tuple[str, ...] = ()
    utility_clearance_needs: bool = False


# =============================================================================
# ASSEMBLED RESULTS
# =============================================================================

@dataclass(frozen=True)
class ServiceAreaClassification:
    zone_description: str
    surcharge_percent: float
    risk_adjustment_percent: float = 0.0
    within_zones: bool = True

    @property
    def total_percent(self) -> float:
        return self.surcharge_percent + self.risk_adjustment_percent


@dataclass(frozen=True)
class PropertyLocation:
    place_id: str
    address: str
    coordinates: Coordinates
    components: AddressComponents
    verified: bool
    distance_from_base: TravelMetrics
    property_type: str = "residential"
    accessibility_score: int = 7
    pricing_analysis: Optional[PricingAnalysis] = None
    analytics: Optional[LocationAnalytics] = None
    risk_profile: Optional[RiskProfile] = None
    property_insights: Optional[PropertyInsights] = None
    notes: Optional[str] = None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False,
    )


@dataclass(frozen=True)
class ProjectAnalysis:
    estimated_duration_days: int
    equipment_required: Tuple[str, ...]
    seasonal_notes: Tuple[str, ...]
    risk_factors: Tuple[str, ...]


@dataclass(frozen=True)
class LocationQuote:
    quote_id: str
    location: PropertyLocation
    estimate: PriceEstimate
    is_within_service_area: bool
    service_area_tier: ServiceAreaClassification
    service_area_surcharge_amount: float
    transportation: TransportationCost
    project_analysis: ProjectAnalysis
    recommendations: Tuple[str, ...]
    valid_until: datetime
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False,
    )
