"""
Pricing model configuration for location-based quoting.

Owns every numeric constant that affects a quote: per-acre rates,
vegetation multipliers, difficulty slopes, environmental adjustments,
transportation rate, service-area zones, seasonal calendar and the
premium-market allow-list.

Frozen dataclasses provide type checking and IDE support.  The surrounding
application overrides the region-specific pieces (base location, premium
postal codes, hourly rate) through environment variables; see
``model_from_env()``.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple


PROPERTY_TYPES = ("residential", "commercial", "agricultural", "industrial")
VEGETATION_DENSITIES = ("light", "moderate", "heavy", "extreme")
FIRE_RISK_LEVELS = ("low", "moderate", "high")


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class ServiceBase:
    """Fixed yard the crews and equipment leave from."""
    lat: float
    lng: float
    address: str = ""


@dataclass(frozen=True)
class ServiceAreaZone:
    """One distance band of the service area.

    Covers ``[min_distance_km, max_distance_km)``.
    """
    min_distance_km: float
    max_distance_km: float
    surcharge_percent: float
    description: str


@dataclass(frozen=True)
class SeasonalCalendar:
    """Region-specific calendar windows (1-based months, inclusive)."""
    wetland_months: Tuple[int, ...] = (6, 7, 8, 9, 10)        # June-October
    bird_nesting_months: Tuple[int, ...] = (3, 4, 5, 6, 7, 8)  # March-August
    default_fire_risk: str = "moderate"


@dataclass(frozen=True)
class MarketConfig:
    """Premium-market allow-list.

    Encodes local market knowledge, so it is expected to change without a
    code release.
    """
    premium_postal_codes: Tuple[str, ...] = ()
    premium_city_keywords: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RiskSurcharges:
    """Extra service-area surcharge points driven by the risk profile."""
    outside_area_percent: float = 30.0
    outside_high_access_risk_percent: float = 10.0
    in_zone_high_access_risk_percent: float = 5.0
    in_zone_high_equipment_risk_percent: float = 3.0
    in_zone_weather_percent: float = 2.0
    weather_vulnerability_threshold: int = 7


@dataclass(frozen=True)
class PricingModel:
    """Top-level container for all quoting parameters.

    A single module-level instance (PRICING_MODEL) is the reference.
    Bump `version` on every change that alters quote outputs.
    """
    version: str
    base_price_per_acre: Dict[str, float]
    vegetation_multipliers: Dict[str, float]
    accessibility_step: float            # per point of equipment access below the reference
    accessibility_reference: int         # access rating that carries no surcharge
    terrain_step: float                  # per point of terrain difficulty away from neutral
    terrain_neutral: int
    default_terrain_difficulty: int      # used when no terrain signal is available
    default_equipment_accessibility: int  # used when no access signal is available
    environmental_restriction_adjustment: float
    wetland_season_adjustment: float
    bird_nesting_adjustment: float
    high_fire_risk_adjustment: float
    base_confidence: float
    confidence_step: float
    max_confidence: float
    transport_hourly_rate: float
    service_base: ServiceBase
    service_radius_km: float
    zones: Tuple[ServiceAreaZone, ...]
    risk_surcharges: RiskSurcharges = field(default_factory=RiskSurcharges)
    calendar: SeasonalCalendar = field(default_factory=SeasonalCalendar)
    market: MarketConfig = field(default_factory=MarketConfig)
    quote_valid_days: int = 30


# =============================================================================
# PRICING_MODEL: reference values
# =============================================================================

_REFERENCE_ZONES = (
    ServiceAreaZone(0, 30, 0, "Core Service Area - Premium Response"),
    ServiceAreaZone(30, 60, 5, "Primary Service Area - Standard"),
    ServiceAreaZone(60, 100, 15, "Extended Service Area - Travel Premium"),
    ServiceAreaZone(100, 150, 25, "Maximum Service Area - High Travel Cost"),
)

# Winter Park, Windermere and neighbouring high-end Central Florida ZIPs.
_REFERENCE_MARKET = MarketConfig(
    premium_postal_codes=("32789", "32792", "34787", "34761", "32819"),
    premium_city_keywords=("winter park", "windermere", "bay hill", "isleworth"),
)

PRICING_MODEL = PricingModel(
    version="1.0.0",
    base_price_per_acre={
        "residential": 2800.0,
        "commercial": 2500.0,
        "agricultural": 1800.0,
        "industrial": 3200.0,
    },
    vegetation_multipliers={
        "light": 0.8,
        "moderate": 1.0,
        "heavy": 1.4,
        "extreme": 1.9,
    },
    accessibility_step=0.05,
    accessibility_reference=7,
    terrain_step=0.03,
    terrain_neutral=5,
    default_terrain_difficulty=5,
    default_equipment_accessibility=7,
    environmental_restriction_adjustment=0.10,
    wetland_season_adjustment=0.15,
    bird_nesting_adjustment=0.10,
    high_fire_risk_adjustment=0.20,
    base_confidence=0.7,
    confidence_step=0.05,
    max_confidence=0.95,
    transport_hourly_rate=350.0,
    service_base=ServiceBase(
        lat=29.0216,
        lng=-81.0770,
        address="3634 Watermelon Lane, New Smyrna Beach, FL 32168",
    ),
    service_radius_km=150.0,
    zones=_REFERENCE_ZONES,
    market=_REFERENCE_MARKET,
)


# =============================================================================
# Environment overrides
# =============================================================================

def _split_env_list(raw: Optional[str]) -> Tuple[str, ...]:
    """Parse a comma-separated env value into a tuple of trimmed entries."""
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def market_config_from_env(default: MarketConfig = _REFERENCE_MARKET) -> MarketConfig:
    """Build the premium-market allow-list from PREMIUM_POSTAL_CODES /
    PREMIUM_CITY_KEYWORDS.  Unset variables keep the reference lists."""
    codes = os.environ.get("PREMIUM_POSTAL_CODES")
    cities = os.environ.get("PREMIUM_CITY_KEYWORDS")
    return MarketConfig(
        premium_postal_codes=(
            _split_env_list(codes) if codes is not None else default.premium_postal_codes
        ),
        premium_city_keywords=(
            tuple(c.lower() for c in _split_env_list(cities))
            if cities is not None else default.premium_city_keywords
        ),
    )


def model_from_env(base: PricingModel = PRICING_MODEL) -> PricingModel:
    """Return *base* with the region-specific values taken from the environment.

    Recognised variables: SERVICE_BASE_LAT, SERVICE_BASE_LNG,
    SERVICE_BASE_ADDRESS, TRANSPORT_HOURLY_RATE, PREMIUM_POSTAL_CODES,
    PREMIUM_CITY_KEYWORDS.  Malformed numbers raise ValueError so a bad
    deploy fails at startup rather than mispricing quotes.
    """
    service_base = base.service_base
    lat = os.environ.get("SERVICE_BASE_LAT")
    lng = os.environ.get("SERVICE_BASE_LNG")
    if lat is not None and lng is not None:
        service_base = ServiceBase(
            lat=float(lat),
            lng=float(lng),
            address=os.environ.get("SERVICE_BASE_ADDRESS", ""),
        )

    hourly_rate = base.transport_hourly_rate
    raw_rate = os.environ.get("TRANSPORT_HOURLY_RATE")
    if raw_rate:
        hourly_rate = float(raw_rate)

    return replace(
        base,
        service_base=service_base,
        transport_hourly_rate=hourly_rate,
        market=market_config_from_env(base.market),
    )
