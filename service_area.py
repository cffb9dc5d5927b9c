"""
Service-area policy: distance bands from the base yard and the percentage
surcharge each one carries.
"""

import logging
import math
from typing import Optional, Sequence

from pricing_config import PRICING_MODEL, PricingModel, RiskSurcharges, ServiceAreaZone
from quote_models import Coordinates, RiskProfile, ServiceAreaClassification

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
OUTSIDE_SERVICE_AREA = "Outside Service Area"


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in kilometers."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


class ServiceAreaPolicy:
    """Classifies a driving distance into a service zone.

    Zones cover ``[min, max)`` and must start at 0, ascend and touch
    without gaps or overlaps.  Note the asymmetry at the edge: a site at
    exactly ``radius_km`` is within the service area but past the last
    zone, so it is priced at the outside rate.
    """

    def __init__(
        self,
        zones: Sequence[ServiceAreaZone],
        radius_km: float,
        risk_surcharges: Optional[RiskSurcharges] = None,
    ):
        self.zones = tuple(zones)
        self.radius_km = radius_km
        self.risk = risk_surcharges or RiskSurcharges()
        self._validate()

    @classmethod
    def from_model(cls, model: PricingModel = PRICING_MODEL) -> "ServiceAreaPolicy":
        return cls(model.zones, model.service_radius_km, model.risk_surcharges)

    def _validate(self):
        if not self.zones:
            raise ValueError("At least one service zone is required")
        expected_min = 0.0
        for zone in self.zones:
            if zone.min_distance_km != expected_min:
                raise ValueError(
                    f"Service zones must be contiguous from 0 km; "
                    f"{zone.description!r} starts at {zone.min_distance_km}, expected {expected_min}"
                )
            if zone.max_distance_km <= zone.min_distance_km:
                raise ValueError(f"Service zone {zone.description!r} is empty")
            expected_min = zone.max_distance_km

    def classify(
        self,
        distance_km: float,
        risk_profile: Optional[RiskProfile] = None,
    ) -> ServiceAreaClassification:
        if distance_km < 0:
            raise ValueError(f"Distance cannot be negative: {distance_km}")

        for zone in self.zones:
            if zone.min_distance_km <= distance_km < zone.max_distance_km:
                return ServiceAreaClassification(
                    zone_description=zone.description,
                    surcharge_percent=zone.surcharge_percent,
                    risk_adjustment_percent=self._in_zone_risk(risk_profile),
                    within_zones=True,
                )

        risk_adj = 0.0
        if risk_profile is not None and risk_profile.access_risk == "high":
            risk_adj = self.risk.outside_high_access_risk_percent
        return ServiceAreaClassification(
            zone_description=OUTSIDE_SERVICE_AREA,
            surcharge_percent=self.risk.outside_area_percent,
            risk_adjustment_percent=risk_adj,
            within_zones=False,
        )

    def _in_zone_risk(self, risk_profile: Optional[RiskProfile]) -> float:
        if risk_profile is None:
            return 0.0
        adj = 0.0
        if risk_profile.access_risk == "high":
            adj += self.risk.in_zone_high_access_risk_percent
        if risk_profile.equipment_security_risk == "high":
            adj += self.risk.in_zone_high_equipment_risk_percent
        if risk_profile.weather_vulnerability > self.risk.weather_vulnerability_threshold:
            adj += self.risk.in_zone_weather_percent
        return adj

    def is_within_service_area(self, distance_km: float) -> bool:
        return distance_km <= self.radius_km

    @staticmethod
    def surcharge_amount(
        base_price: float,
        classification: ServiceAreaClassification,
        include_risk: bool = False,
    ) -> float:
        percent = classification.surcharge_percent
        if include_risk:
            percent += classification.risk_adjustment_percent
        return round(base_price * percent / 100, 2)
