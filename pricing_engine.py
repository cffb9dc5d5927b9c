"""
Pricing synthesizer.

Turns PricingFactors + travel time + project size into a PriceEstimate.
Pure: no I/O, every constant comes from the PricingModel passed in (the
module-level PRICING_MODEL by default), so two calls with the same inputs
always produce the same estimate.
"""

import logging
import math
from typing import Optional

from pricing_config import PRICING_MODEL, PricingModel
from quote_errors import InvalidProjectSize
from quote_models import PriceEstimate, PricingDetails, PricingFactors, TransportationCost

logger = logging.getLogger(__name__)

# Smallest billable base price.  Prices round to cents, so without a floor a
# sliver of an acre would price at 0.
MIN_BASE_PRICE = 0.01


def validate_project_size(project_acres: float) -> float:
    if project_acres is None or not project_acres > 0 or math.isinf(project_acres):
        raise InvalidProjectSize(
            f"Project size must be a positive number of acres, got {project_acres!r}"
        )
    return float(project_acres)


def calculate_transportation_cost(
    one_way_minutes: float,
    hourly_rate: Optional[float] = None,
    model: PricingModel = PRICING_MODEL,
) -> TransportationCost:
    """Bill the crew's round trip in whole hours.

    Any positive travel time bills at least one hour; zero travel is free.
    """
    if one_way_minutes < 0:
        raise ValueError(f"Travel time cannot be negative: {one_way_minutes}")
    rate = model.transport_hourly_rate if hourly_rate is None else hourly_rate

    round_trip = one_way_minutes * 2
    hours = math.ceil(round_trip / 60)
    one_way_hours = math.ceil(one_way_minutes / 60)
    return TransportationCost(
        one_way_minutes=one_way_minutes,
        round_trip_minutes=round_trip,
        billable_hours=hours,
        hourly_rate=rate,
        cost=hours * rate,
        description=f"{one_way_hours}h each way = {hours}h total @ ${rate:,.0f}/hr",
    )


def estimate_confidence(factors: PricingFactors, model: PricingModel = PRICING_MODEL) -> float:
    """0.7 base plus 0.05 per independent signal, capped at 0.95."""
    signals = sum([
        factors.proximity_to_utilities is not None,
        len(factors.environmental_restrictions) > 0,
        factors.terrain_difficulty is not None,
        factors.equipment_accessibility is not None,
    ])
    return round(min(model.max_confidence, model.base_confidence + model.confidence_step * signals), 4)


def difficulty_multiplier(factors: PricingFactors, model: PricingModel = PRICING_MODEL) -> float:
    """1 + max(0, reference - access) * step + (terrain - 5) * 0.03.

    The access term is measured from model.accessibility_reference (7 in the
    reference model), not from 10: an average site with access 7 carries no
    surcharge, so the access term ranges 0..0.30 rather than 0..0.45.
    """
    equipment = factors.equipment_accessibility
    if equipment is None:
        equipment = model.default_equipment_accessibility
    terrain = factors.terrain_difficulty
    if terrain is None:
        terrain = model.default_terrain_difficulty

    access_adj = max(0, model.accessibility_reference - equipment) * model.accessibility_step
    terrain_adj = (terrain - model.terrain_neutral) * model.terrain_step
    return 1.0 + access_adj + terrain_adj


def environmental_adjustment(factors: PricingFactors, model: PricingModel = PRICING_MODEL) -> float:
    adj = 1.0
    if factors.environmental_restrictions:
        adj += model.environmental_restriction_adjustment
    seasonal = factors.seasonal_factors
    if seasonal.wetland_season:
        adj += model.wetland_season_adjustment
    if seasonal.bird_nesting_season:
        adj += model.bird_nesting_adjustment
    if seasonal.fire_risk_level == "high":
        adj += model.high_fire_risk_adjustment
    return adj


def synthesize(
    factors: PricingFactors,
    one_way_minutes: float,
    project_acres: float,
    model: PricingModel = PRICING_MODEL,
) -> PriceEstimate:
    """Price a project.

    total_estimate is exactly base_price + travel_surcharge; the
    service-area surcharge is a separate line item applied at quote time.
    """
    acres = validate_project_size(project_acres)

    per_acre = model.base_price_per_acre[factors.base_property_type]
    vegetation = model.vegetation_multipliers[factors.vegetation_density]
    difficulty = difficulty_multiplier(factors, model)
    environmental = environmental_adjustment(factors, model)

    base_price = max(
        MIN_BASE_PRICE,
        round(per_acre * acres * vegetation * environmental * difficulty, 2),
    )
    transportation = calculate_transportation_cost(one_way_minutes, model=model)
    travel_surcharge = transportation.cost

    estimate = PriceEstimate(
        base_price=base_price,
        travel_surcharge=travel_surcharge,
        difficulty_multiplier=round(difficulty, 4),
        total_estimate=base_price + travel_surcharge,
        confidence=estimate_confidence(factors, model),
        details=PricingDetails(
            price_per_acre=per_acre,
            acres=acres,
            vegetation_multiplier=vegetation,
            difficulty_multiplier=round(difficulty, 4),
            environmental_adjustment=round(environmental, 4),
            final_price_per_acre=round(base_price / acres, 2),
        ),
        transportation=transportation,
    )
    logger.debug(
        "Priced %.2f acres %s/%s: base=%.2f travel=%.2f conf=%.2f",
        acres, factors.base_property_type, factors.vegetation_density,
        base_price, travel_surcharge, estimate.confidence,
    )
    return estimate
