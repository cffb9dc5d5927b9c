"""
Quote assembly: compose provider, estimator, pricing and service-area
results into PropertyLocation / LocationQuote, plus the JSON shapes the
HTTP adapter and document generator consume.

The service-area surcharge (percentage of base price) and the hourly
transportation cost are separate line items; neither is folded into the
other.
"""

import logging
import math
import uuid
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from feature_estimator import SiteFeatures
from quote_models import (
    LocationQuote,
    PriceEstimate,
    PricingAnalysis,
    ProjectAnalysis,
    PropertyLocation,
    ResolvedPlace,
    ServiceAreaClassification,
    TransportationCost,
    TravelMetrics,
)

logger = logging.getLogger(__name__)

MILES_PER_METER = 0.000621371

# Crew-days per acre scale with density.
DURATION_DAYS_PER_ACRE = 0.5
DENSITY_DURATION_FACTORS = {
    "light": 0.8,
    "moderate": 1.0,
    "heavy": 1.5,
    "extreme": 2.0,
}

BASE_EQUIPMENT = ("Forestry Mulcher", "Support Crew")
EXTREME_DENSITY_EQUIPMENT = ("Heavy-duty Mulcher", "Additional Crew")

PHASING_THRESHOLD = 10000


# =============================================================================
# PropertyLocation
# =============================================================================

def assemble_property_location(
    place: ResolvedPlace,
    travel: TravelMetrics,
    features: Optional[SiteFeatures],
    estimate: Optional[PriceEstimate],
    verified: Optional[bool] = None,
    address: Optional[str] = None,
    notes: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> PropertyLocation:
    """Compose a PropertyLocation.  Missing enrichment stays ``None``."""
    pricing = None
    if features is not None and estimate is not None:
        pricing = PricingAnalysis(pricing_factors=features.pricing_factors, estimate=estimate)

    kwargs: Dict[str, Any] = {}
    if created_at is not None:
        kwargs["created_at"] = created_at

    return PropertyLocation(
        place_id=place.place_id,
        address=address or place.formatted_address,
        coordinates=place.coordinates,
        components=place.components,
        verified=place.verified if verified is None else verified,
        distance_from_base=travel,
        property_type=features.property_type if features else "residential",
        accessibility_score=features.accessibility_score if features else 7,
        pricing_analysis=pricing,
        analytics=features.analytics if features else None,
        risk_profile=features.risk_profile if features else None,
        property_insights=features.property_insights if features else None,
        notes=notes,
        **kwargs,
    )


# =============================================================================
# LocationQuote
# =============================================================================

def build_project_analysis(location: PropertyLocation, project_acres: float) -> ProjectAnalysis:
    density = "moderate"
    seasonal_notes: List[str] = []
    if location.pricing_analysis is not None:
        factors = location.pricing_analysis.pricing_factors
        density = factors.vegetation_density
        if factors.seasonal_factors.wetland_season:
            seasonal_notes.append("Wet season considerations")
        if factors.seasonal_factors.bird_nesting_season:
            seasonal_notes.append("Bird nesting season restrictions may apply")

    days = math.ceil(project_acres * DURATION_DAYS_PER_ACRE * DENSITY_DURATION_FACTORS[density])
    equipment = BASE_EQUIPMENT
    if density == "extreme":
        equipment = equipment + EXTREME_DENSITY_EQUIPMENT

    risk_factors: Tuple[str, ...] = ()
    if location.risk_profile is not None:
        risk_factors = location.risk_profile.liability_factors

    return ProjectAnalysis(
        estimated_duration_days=max(1, days),
        equipment_required=equipment,
        seasonal_notes=tuple(seasonal_notes),
        risk_factors=risk_factors,
    )


def build_recommendations(location: PropertyLocation, estimate: PriceEstimate) -> Tuple[str, ...]:
    recs = []
    if location.risk_profile is not None and location.risk_profile.access_risk == "high":
        recs.append("Schedule site visit to confirm equipment access")
    if estimate.total_estimate > PHASING_THRESHOLD:
        recs.append("Consider phasing project to spread costs over time")
    if location.analytics is not None and location.analytics.market_segment == "premium":
        recs.append("Premium service tier recommended for this market segment")
    return tuple(recs)


def new_quote_id(now: datetime) -> str:
    return f"QT-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def assemble_location_quote(
    location: PropertyLocation,
    classification: ServiceAreaClassification,
    within_service_area: bool,
    estimate: PriceEstimate,
    service_area_surcharge_amount: float,
    project_acres: float,
    now: datetime,
    valid_days: int = 30,
    quote_id: Optional[str] = None,
) -> LocationQuote:
    transportation = estimate.transportation
    if transportation is None:
        # Estimates built without travel data carry no transportation line.
        transportation = TransportationCost(0, 0, 0, 0, 0.0, "")

    return LocationQuote(
        quote_id=quote_id or new_quote_id(now),
        location=location,
        estimate=estimate,
        is_within_service_area=within_service_area,
        service_area_tier=classification,
        service_area_surcharge_amount=service_area_surcharge_amount,
        transportation=transportation,
        project_analysis=build_project_analysis(location, project_acres),
        recommendations=build_recommendations(location, estimate),
        valid_until=now + timedelta(days=valid_days),
        created_at=now,
    )


def quote_line_items(quote: LocationQuote) -> Dict[str, float]:
    """Line items for the quote document.  Keys are a stable contract."""
    return {
        "base_price": quote.estimate.base_price,
        "transportation_cost": quote.transportation.cost,
        "service_area_surcharge_percent": quote.service_area_tier.surcharge_percent,
        "service_area_surcharge_amount": quote.service_area_surcharge_amount,
        "total_estimate": quote.estimate.total_estimate,
    }


# =============================================================================
# Serialization
# =============================================================================

def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, tuple):
        return [_jsonable(v) for v in value]
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def location_to_dict(location: PropertyLocation) -> Dict[str, Any]:
    d = _jsonable(asdict(location))
    d["distance_from_base"] = {
        "meters": location.distance_from_base.meters,
        "duration_seconds": location.distance_from_base.duration_seconds,
        "distance_km": round(location.distance_from_base.distance_km, 2),
        "distance_miles": round(location.distance_from_base.meters * MILES_PER_METER, 1),
        "duration_minutes": round(location.distance_from_base.duration_minutes, 1),
    }
    return d


def quote_to_dict(quote: LocationQuote) -> Dict[str, Any]:
    travel = quote.location.distance_from_base
    return {
        "quote_id": quote.quote_id,
        "location": location_to_dict(quote.location),
        "estimate": _jsonable(asdict(quote.estimate)),
        "is_within_service_area": quote.is_within_service_area,
        "service_area_tier": {
            "zone": quote.service_area_tier.zone_description,
            "surcharge_percent": quote.service_area_tier.surcharge_percent,
            "risk_adjustment_percent": quote.service_area_tier.risk_adjustment_percent,
            "within_zones": quote.service_area_tier.within_zones,
        },
        "service_area_surcharge_amount": quote.service_area_surcharge_amount,
        "transportation_cost": {
            "distance_km": round(travel.distance_km, 2),
            "distance_miles": round(travel.meters * MILES_PER_METER, 1),
            "duration_minutes": round(travel.duration_minutes, 1),
            "round_trip_minutes": round(quote.transportation.round_trip_minutes, 1),
            "cost": quote.transportation.cost,
            "breakdown": quote.transportation.description,
        },
        "project_analysis": _jsonable(asdict(quote.project_analysis)),
        "recommendations": list(quote.recommendations),
        "line_items": quote_line_items(quote),
        "valid_until": quote.valid_until.isoformat(),
        "created_at": quote.created_at.isoformat(),
    }
