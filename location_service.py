"""
Location service: address or map pin in, priced PropertyLocation /
LocationQuote out.

One LocationService is constructed per process (or per request) with its
collaborators passed in; there is no module-level instance.  Use
create_location_service() to build one from the environment.

Stages (each timed on the active trace):
    resolve       address -> place (or pin -> place via reverse geocode)
    travel        driving distance/time from the base yard    } concurrent
    features      site signals from the FeatureEstimator     }
    pricing       PricingFactors -> PriceEstimate
    service_area  distance -> zone + surcharge (quotes only)
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from cache_store import MemoryCache, QuoteCache, SQLiteCache
from feature_estimator import (
    DefaultFeatureEstimator,
    FeatureEstimator,
    SiteFeatures,
    assess_risk,
    estimate_site_features,
)
from geo_provider import GeoProvider, GoogleMapsClient
from pricing_config import PRICING_MODEL, PricingModel, model_from_env
from pricing_engine import synthesize, validate_project_size
from quote_assembly import assemble_location_quote, assemble_property_location
from quote_errors import AddressNotFound, GeoProviderError
from quote_models import (
    Coordinates,
    LocationQuote,
    PinDropRequest,
    PricingFactors,
    PropertyLocation,
    ResolvedPlace,
    TravelMetrics,
)
from quote_trace import get_trace, timed_stage
from service_area import ServiceAreaPolicy, haversine_km

logger = logging.getLogger(__name__)

# Caller-editable pricing inputs on generate_location_quote().
OVERRIDABLE_FACTORS = (
    "base_property_type",
    "vegetation_density",
    "equipment_accessibility",
    "terrain_difficulty",
    "environmental_restrictions",
)


class LocationService:
    """Pipeline coordinator.  Stateless apart from its collaborators."""

    def __init__(
        self,
        provider: GeoProvider,
        estimator: Optional[FeatureEstimator] = None,
        model: PricingModel = PRICING_MODEL,
        policy: Optional[ServiceAreaPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_workers: int = 2,
    ):
        self.provider = provider
        self.estimator = estimator or DefaultFeatureEstimator()
        self.model = model
        self.policy = policy or ServiceAreaPolicy.from_model(model)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_workers = max_workers

    @property
    def base_coordinates(self) -> Coordinates:
        return Coordinates(lat=self.model.service_base.lat, lng=self.model.service_base.lng)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def verify_property_location(
        self,
        address: str,
        project_acres: float = 1.0,
    ) -> PropertyLocation:
        """Resolve, enrich and price a typed address.

        Raises InvalidProjectSize before any provider call, then the typed
        GeoProviderError subclasses from resolution and routing.
        """
        acres = validate_project_size(project_acres)
        if not address or not address.strip():
            raise AddressNotFound("An address is required")

        with timed_stage("resolve"):
            place = self.provider.resolve_address(address)

        return self._build_location(place, acres, travel_destination=place.place_id)

    def process_pin_drop_location(
        self,
        request: PinDropRequest,
        project_acres: float = 1.0,
    ) -> PropertyLocation:
        """Resolve, enrich and price a dropped map pin.

        A caller-supplied address replaces the reverse-geocoded one.
        Address validation only decides ``verified``; a validation failure
        leaves the pin unverified instead of failing the request.
        """
        acres = validate_project_size(project_acres)

        with timed_stage("resolve"):
            place = self.provider.reverse_geocode(request.coordinates)
            # Pricing and travel are anchored to where the pin was dropped,
            # not the centroid of the nearest geocoded address.
            place = replace(place, coordinates=request.coordinates)
            address = (request.address or "").strip() or place.formatted_address
            verified = self._validate_pin_address(address)

        return self._build_location(
            place,
            acres,
            travel_destination=request.coordinates,
            bounds=request.bounds,
            address=address,
            verified=verified,
            notes=request.notes,
        )

    def generate_location_quote(
        self,
        location: PropertyLocation,
        project_acres: float = 1.0,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> LocationQuote:
        """Re-price *location* for a project size and build the quote.

        *overrides* may set any of OVERRIDABLE_FACTORS (plus
        ``accessibility_rating`` as an alias for equipment_accessibility),
        e.g. after a customer describes the site.
        """
        acres = validate_project_size(project_acres)
        factors = self._apply_overrides(location, overrides or {})
        now = self.clock()

        risk = location.risk_profile
        if overrides and overrides.get("accessibility_rating") is not None:
            risk = assess_risk(
                int(overrides["accessibility_rating"]),
                remote=risk is not None and risk.equipment_security_risk != "low",
                weather_vulnerability=risk.weather_vulnerability if risk else 6,
            )
            location = replace(location, accessibility_score=int(overrides["accessibility_rating"]),
                               risk_profile=risk)

        with timed_stage("pricing"):
            estimate = synthesize(
                factors, location.distance_from_base.duration_minutes, acres, self.model,
            )

        with timed_stage("service_area"):
            distance_km = location.distance_from_base.distance_km
            classification = self.policy.classify(distance_km, risk)
            within = self.policy.is_within_service_area(distance_km)
            surcharge = self.policy.surcharge_amount(estimate.base_price, classification)

        location = replace(
            location,
            pricing_analysis=replace(
                location.pricing_analysis, pricing_factors=factors, estimate=estimate,
            ) if location.pricing_analysis else None,
        )
        quote = assemble_location_quote(
            location,
            classification,
            within,
            estimate,
            surcharge,
            acres,
            now,
            valid_days=self.model.quote_valid_days,
        )
        logger.info(
            "Quote %s: %.2f acres, total=%.2f zone=%s surcharge=%.2f",
            quote.quote_id, acres, estimate.total_estimate,
            classification.zone_description, surcharge,
        )
        return quote

    def quote_address(self, address: str, project_acres: float = 1.0,
                      overrides: Optional[Dict[str, Any]] = None) -> LocationQuote:
        location = self.verify_property_location(address, project_acres)
        return self.generate_location_quote(location, project_acres, overrides)

    def quote_pin_drop(self, request: PinDropRequest, project_acres: float = 1.0,
                       overrides: Optional[Dict[str, Any]] = None) -> LocationQuote:
        location = self.process_pin_drop_location(request, project_acres)
        return self.generate_location_quote(location, project_acres, overrides)

    def is_within_service_area(self, coords: Coordinates) -> bool:
        """Straight-line check from the base yard; no provider call."""
        return self.policy.is_within_service_area(haversine_km(self.base_coordinates, coords))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_pin_address(self, address: str) -> bool:
        try:
            verdict, _ = self.provider.validate_address(address)
        except GeoProviderError as e:
            logger.warning("Address validation failed for pin drop, leaving unverified: %s", e)
            return False
        return verdict != "INVALID"

    def _build_location(
        self,
        place: ResolvedPlace,
        acres: float,
        travel_destination,
        bounds=None,
        address: Optional[str] = None,
        verified: Optional[bool] = None,
        notes: Optional[str] = None,
    ) -> PropertyLocation:
        now = self.clock()
        travel, features = self._travel_and_features(place, travel_destination, bounds, now)

        with timed_stage("pricing"):
            estimate = synthesize(
                features.pricing_factors, travel.duration_minutes, acres, self.model,
            )

        return assemble_property_location(
            place,
            travel,
            features,
            estimate,
            verified=verified,
            address=address,
            notes=notes,
            created_at=now,
        )

    def _travel_and_features(
        self, place: ResolvedPlace, destination, bounds, now: datetime,
    ) -> Tuple[TravelMetrics, SiteFeatures]:
        """Routing and feature estimation are independent; run them together.

        Worker threads don't inherit the thread-local trace, so it is
        handed to each stage explicitly.  A routing error propagates.
        """
        parent_trace = get_trace()

        def _travel():
            with timed_stage("travel", parent_trace):
                return self.provider.travel_metrics(self.base_coordinates, destination)

        def _features():
            with timed_stage("features", parent_trace):
                return estimate_site_features(
                    self.estimator, place, now,
                    self.model.calendar, self.model.market, bounds=bounds,
                )

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            travel_future = pool.submit(_travel)
            features_future = pool.submit(_features)
            features = features_future.result()
            travel = travel_future.result()
        return travel, features

    def _apply_overrides(self, location: PropertyLocation, overrides: Dict[str, Any]) -> PricingFactors:
        if location.pricing_analysis is not None:
            factors = location.pricing_analysis.pricing_factors
        else:
            factors = PricingFactors(base_property_type=location.property_type)

        changes: Dict[str, Any] = {}
        for name in OVERRIDABLE_FACTORS:
            if overrides.get(name) is not None:
                changes[name] = overrides[name]
        if overrides.get("accessibility_rating") is not None:
            changes["equipment_accessibility"] = int(overrides["accessibility_rating"])
        if "environmental_restrictions" in changes:
            changes["environmental_restrictions"] = tuple(changes["environmental_restrictions"])
        if not changes:
            return factors
        # replace() re-runs validation, so bad overrides raise ValueError.
        return replace(factors, **changes)


# =============================================================================
# Factory
# =============================================================================

def build_cache_from_env() -> QuoteCache:
    path = os.environ.get("QUOTE_CACHE_PATH")
    if path:
        return SQLiteCache(path)
    return MemoryCache()


def create_location_service(
    api_key: Optional[str] = None,
    cache: Optional[QuoteCache] = None,
    estimator: Optional[FeatureEstimator] = None,
) -> Optional[LocationService]:
    """Build a LocationService from the environment.

    Returns None (with a warning) when no Google Maps API key is
    configured, so callers can degrade instead of crashing at import.
    """
    api_key = api_key or os.environ.get("GOOGLE_MAPS_API_KEY")
    if not api_key:
        logger.warning("GOOGLE_MAPS_API_KEY not set; location quoting disabled")
        return None

    model = model_from_env()
    provider = GeoProvider(
        GoogleMapsClient(api_key),
        model.service_base,
        cache=cache if cache is not None else build_cache_from_env(),
    )
    return LocationService(provider, estimator=estimator, model=model)
