"""
Geo provider adapter: Google Geocoding, Places, Distance Matrix and
Address Validation.

GoogleMapsClient is a thin HTTP wrapper: one method per endpoint, every
request timed on the active trace and in the health monitor, with a single
retry for transient failures.  GeoProvider turns raw responses into
normalized ResolvedPlace / TravelMetrics records, raises the typed errors
callers branch on, and caches results for a day.

Requirements:
- Google Maps API key with Geocoding, Places, Distance Matrix and
  Address Validation enabled.
"""

import json
import logging
import time
from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

import requests

from cache_store import DEFAULT_TTL_SECONDS, NullCache, QuoteCache, cache_key, normalize_input
from health_monitor import record_call
from pricing_config import ServiceBase
from quote_errors import (
    AddressInvalid,
    AddressNotFound,
    GeoProviderError,
    NoResultAtCoordinates,
    ProviderTimeout,
    RouteUnavailable,
)
from quote_models import AddressComponents, Coordinates, ResolvedPlace, TravelMetrics
from quote_trace import get_trace

logger = logging.getLogger(__name__)

# Google statuses that mean "nothing matched" rather than "the call failed".
_EMPTY_STATUSES = ("ZERO_RESULTS", "NOT_FOUND")

# HTTP statuses worth one more attempt.
_RETRYABLE_HTTP = (429, 500, 502, 503, 504)


class _TransientProviderError(Exception):
    """Internal: a failure the retry loop may repeat."""


# =============================================================================
# HTTP CLIENT
# =============================================================================

class GoogleMapsClient:
    """Client for the Google Maps web service APIs."""

    # Per-call timeout in seconds.  Quotes are interactive (address typed,
    # pin dropped), so a hung provider must fail fast.
    DEFAULT_TIMEOUT = 5
    MAX_RETRIES = 1
    RETRY_BACKOFF = [0.5]  # seconds

    VALIDATION_URL = "https://addressvalidation.googleapis.com/v1:validateAddress"

    def __init__(self, api_key: str, timeout: Optional[float] = None):
        self.api_key = api_key
        self.base_url = "https://maps.googleapis.com/maps/api"
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.session = requests.Session()
        self.session.trust_env = False

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _traced_get(self, endpoint_name: str, url: str, params: dict) -> dict:
        """GET with retry, trace recording and health tracking."""
        return self._request("GET", "google_maps", endpoint_name, url, params=params)

    def _traced_post(self, endpoint_name: str, url: str, payload: dict) -> dict:
        return self._request(
            "POST", "address_validation", endpoint_name, url,
            params={"key": self.api_key}, json=payload,
        )

    def _request(self, method: str, service: str, endpoint_name: str, url: str, **kwargs) -> dict:
        last_exc: Optional[Exception] = None
        for attempt in range(1 + self.MAX_RETRIES):
            try:
                return self._do_request(
                    method, service, endpoint_name, url, retried=attempt > 0, **kwargs
                )
            except (_TransientProviderError, requests.exceptions.RequestException) as e:
                last_exc = e
                if attempt < self.MAX_RETRIES:
                    logger.warning(
                        "%s %s failed (attempt %d/%d): %s; retrying",
                        service, endpoint_name, attempt + 1, 1 + self.MAX_RETRIES, e,
                    )
                    time.sleep(self.RETRY_BACKOFF[attempt])

        if isinstance(last_exc, requests.exceptions.Timeout):
            raise ProviderTimeout(
                f"{endpoint_name} timed out after {self.timeout}s"
            ) from last_exc
        raise GeoProviderError(f"{endpoint_name} request failed: {last_exc}") from last_exc

    def _do_request(
        self, method: str, service: str, endpoint_name: str, url: str,
        retried: bool = False, **kwargs,
    ) -> dict:
        t0 = time.monotonic()
        trace = get_trace()
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            elapsed_ms = int((time.monotonic() - t0) * 1000)
            status = "timeout" if isinstance(e, requests.exceptions.Timeout) else "exception"
            if trace:
                trace.record_call(service, endpoint_name, elapsed_ms, 0, status, retried)
            self._record_health(service, endpoint_name, False, elapsed_ms, status)
            raise

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        try:
            data = response.json()
        except ValueError:
            data = {}
        provider_status = data.get("status", "") if isinstance(data, dict) else ""

        if trace:
            trace.record_call(
                service, endpoint_name, elapsed_ms, response.status_code,
                provider_status, retried,
            )

        if response.status_code in _RETRYABLE_HTTP or provider_status == "UNKNOWN_ERROR":
            self._record_health(
                service, endpoint_name, False, elapsed_ms, f"HTTP {response.status_code}",
            )
            raise _TransientProviderError(
                f"HTTP {response.status_code} {provider_status}".strip()
            )
        if response.status_code >= 400:
            self._record_health(
                service, endpoint_name, False, elapsed_ms, f"HTTP {response.status_code}",
            )
            message = ""
            if isinstance(data, dict):
                message = (data.get("error") or {}).get("message", "") or data.get("error_message", "")
            raise GeoProviderError(
                f"{endpoint_name} failed: HTTP {response.status_code} {message}".strip()
            )

        self._record_health(service, endpoint_name, True, elapsed_ms)
        return data

    @staticmethod
    def _record_health(
        service: str, endpoint_name: str, success: bool, latency_ms: int,
        error: Optional[str] = None,
    ):
        try:
            record_call(service, success, latency_ms, error, endpoint=endpoint_name)
        except Exception:
            logger.debug("Health tracking failed", exc_info=True)

    @staticmethod
    def _check_status(endpoint_name: str, data: dict) -> str:
        """Raise for hard provider errors; return the status otherwise."""
        status = data.get("status", "")
        if status == "OK" or status in _EMPTY_STATUSES:
            return status
        raise GeoProviderError(
            f"{endpoint_name} failed: {status} {data.get('error_message', '')}".strip()
        )

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def geocode_place_id(self, place_id: str) -> Optional[Dict]:
        """Geocode a place id.  Returns the first result, or None."""
        url = f"{self.base_url}/geocode/json"
        params = {"place_id": place_id, "key": self.api_key}
        data = self._traced_get("geocode", url, params)
        self._check_status("Geocoding", data)
        results = data.get("results") or []
        return results[0] if results else None

    def reverse_geocode(self, lat: float, lng: float) -> List[Dict]:
        url = f"{self.base_url}/geocode/json"
        params = {"latlng": f"{lat},{lng}", "key": self.api_key}
        data = self._traced_get("reverse_geocode", url, params)
        self._check_status("Reverse geocoding", data)
        return data.get("results") or []

    def text_search(
        self,
        query: str,
        lat: float,
        lng: float,
        radius_meters: int = 150000,
    ) -> List[Dict]:
        """Places text search biased toward (lat, lng)."""
        url = f"{self.base_url}/place/textsearch/json"
        params = {
            "query": query,
            "location": f"{lat},{lng}",
            "radius": radius_meters,
            "key": self.api_key,
        }
        data = self._traced_get("text_search", url, params)
        self._check_status("Places search", data)
        return data.get("results") or []

    def distance_matrix(self, origin: str, destination: str) -> Dict:
        """Driving distance/time for one origin/destination pair.

        Returns the single matrix element (with its own ``status``).
        """
        url = f"{self.base_url}/distancematrix/json"
        params = {
            "origins": origin,
            "destinations": destination,
            "mode": "driving",
            "units": "metric",
            "key": self.api_key,
        }
        data = self._traced_get("distance_matrix", url, params)
        if data.get("status") != "OK":
            raise GeoProviderError(
                f"Distance Matrix failed: {data.get('status')} {data.get('error_message', '')}".strip()
            )
        try:
            return data["rows"][0]["elements"][0]
        except (KeyError, IndexError):
            return {"status": "NOT_FOUND"}

    def validate_address(self, address: str, region_code: str = "US") -> Dict:
        """Raw Address Validation ``result`` object (may be empty)."""
        payload = {"address": {"addressLines": [address], "regionCode": region_code}}
        data = self._traced_post("validate_address", self.VALIDATION_URL, payload)
        return data.get("result") or {}


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def parse_address_components(raw_components: List[Dict]) -> AddressComponents:
    """Map Google address_components onto AddressComponents."""
    street_parts = []
    fields: Dict[str, str] = {}
    for component in raw_components or []:
        types = component.get("types", [])
        if "street_number" in types or "route" in types:
            street_parts.append(component.get("long_name", ""))
        if "locality" in types:
            fields["city"] = component.get("long_name")
        if "administrative_area_level_1" in types:
            fields["state"] = component.get("short_name")
        if "postal_code" in types:
            fields["postal_code"] = component.get("long_name")
        if "administrative_area_level_2" in types:
            fields["county"] = component.get("long_name")
        if "country" in types:
            fields["country"] = component.get("short_name")

    street = " ".join(p for p in street_parts if p).strip() or None
    return AddressComponents(street=street, **fields)


def validation_verdict(result: Dict) -> str:
    """Collapse an Address Validation result into VALID / INVALID / UNCONFIRMED.

    VALID: complete address with no unconfirmed components.
    INVALID: the provider could not place the address at any useful
    granularity.  Everything else is ambiguous.
    """
    verdict = result.get("verdict") or {}
    complete = verdict.get("addressComplete")
    # Some proxies already return the collapsed string form.
    if isinstance(complete, str) and complete in ("VALID", "INVALID", "UNCONFIRMED"):
        return complete
    granularity = verdict.get("validationGranularity", "")
    if complete is True and not verdict.get("hasUnconfirmedComponents"):
        return "VALID"
    if result and not complete and granularity in ("OTHER", "GRANULARITY_UNSPECIFIED"):
        return "INVALID"
    return "UNCONFIRMED"


def _place_from_geocode(result: Dict, types: Optional[List[str]] = None) -> ResolvedPlace:
    location = result["geometry"]["location"]
    return ResolvedPlace(
        place_id=result.get("place_id", ""),
        formatted_address=result.get("formatted_address", ""),
        coordinates=Coordinates(lat=location["lat"], lng=location["lng"]),
        components=parse_address_components(result.get("address_components", [])),
        types=tuple(types if types is not None else result.get("types", [])),
    )


def _place_to_json(place: ResolvedPlace) -> str:
    return json.dumps(asdict(place))


def _place_from_json(raw: str) -> ResolvedPlace:
    data = json.loads(raw)
    return ResolvedPlace(
        place_id=data["place_id"],
        formatted_address=data["formatted_address"],
        coordinates=Coordinates(**data["coordinates"]),
        components=AddressComponents(**data["components"]),
        types=tuple(data.get("types", [])),
        verified=data.get("verified", False),
        verdict=data.get("verdict", "UNCONFIRMED"),
    )


def _metrics_to_json(metrics: TravelMetrics) -> str:
    return json.dumps({"meters": metrics.meters, "duration_seconds": metrics.duration_seconds})


def _metrics_from_json(raw: str) -> TravelMetrics:
    data = json.loads(raw)
    return TravelMetrics(meters=data["meters"], duration_seconds=data["duration_seconds"])


# =============================================================================
# ADAPTER
# =============================================================================

class GeoProvider:
    """Address resolution, reverse geocoding and travel metrics.

    All three lookups are idempotent and cached by (operation, normalized
    input, UTC day) for ``cache_ttl`` seconds.
    """

    SEARCH_RADIUS_M = 150000

    def __init__(
        self,
        client: GoogleMapsClient,
        base: ServiceBase,
        cache: Optional[QuoteCache] = None,
        cache_ttl: int = DEFAULT_TTL_SECONDS,
        today: Optional[Callable[[], date]] = None,
    ):
        self.client = client
        self.base = base
        self.cache = cache if cache is not None else NullCache()
        self.cache_ttl = cache_ttl
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    # ------------------------------------------------------------------
    # Caching
    # ------------------------------------------------------------------

    def _cached(self, operation: str, normalized: str, load, to_json, from_json):
        key = cache_key(operation, normalized, self._today())
        raw = self._cache_get(key)
        if raw is not None:
            try:
                value = from_json(raw)
            except (ValueError, KeyError, TypeError):
                logger.warning("Corrupted %s cache entry, refetching", operation)
            else:
                trace = get_trace()
                if trace:
                    trace.record_call("cache", operation, 0, 200, "cache_hit")
                return value

        value = load()
        try:
            self.cache.set(key, to_json(value), self.cache_ttl)
        except Exception:
            logger.warning("Failed to cache %s result", operation, exc_info=True)
        return value

    def _cache_get(self, key: str) -> Optional[str]:
        try:
            return self.cache.get(key)
        except Exception:
            logger.warning("Cache read failed, falling through to provider", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def validate_address(self, text: str) -> Tuple[str, Optional[str]]:
        """Return (verdict, normalized_address) for free-text *text*."""
        result = self.client.validate_address(text)
        normalized = (result.get("address") or {}).get("formattedAddress")
        return validation_verdict(result), normalized

    def resolve_address(self, text: str) -> ResolvedPlace:
        """Free-text address → best matching place.

        Raises AddressInvalid when validation rejects the address outright
        and AddressNotFound when the search returns nothing.
        """
        normalized = normalize_input(text)
        if not normalized:
            raise AddressNotFound("An address is required")
        return self._cached(
            "resolve_address", normalized,
            lambda: self._resolve_address(text),
            _place_to_json, _place_from_json,
        )

    def _resolve_address(self, text: str) -> ResolvedPlace:
        verdict, normalized_address = self.validate_address(text)
        if verdict == "INVALID":
            raise AddressInvalid(f"Address validation failed: {text}")

        matches = self.client.text_search(
            normalized_address or text, self.base.lat, self.base.lng,
            radius_meters=self.SEARCH_RADIUS_M,
        )
        if not matches:
            raise AddressNotFound(f"No matching places found for: {text}")

        best = matches[0]
        result = self.client.geocode_place_id(best["place_id"])
        if result is None:
            raise AddressNotFound(f"Could not geocode best match for: {text}")

        place = _place_from_geocode(result, types=best.get("types", []))
        return ResolvedPlace(
            place_id=best["place_id"],
            formatted_address=place.formatted_address,
            coordinates=place.coordinates,
            components=place.components,
            types=place.types,
            verified=verdict == "VALID",
            verdict=verdict,
        )

    def reverse_geocode(self, coords: Coordinates) -> ResolvedPlace:
        return self._cached(
            "reverse_geocode", f"{coords.lat:.6f},{coords.lng:.6f}",
            lambda: self._reverse_geocode(coords),
            _place_to_json, _place_from_json,
        )

    def _reverse_geocode(self, coords: Coordinates) -> ResolvedPlace:
        results = self.client.reverse_geocode(coords.lat, coords.lng)
        if not results:
            raise NoResultAtCoordinates(
                f"No address found at {coords.lat:.5f}, {coords.lng:.5f}"
            )
        return _place_from_geocode(results[0])

    def travel_metrics(
        self,
        origin: Coordinates,
        destination: Union[Coordinates, str],
    ) -> TravelMetrics:
        """Driving distance/time from *origin* to a point or place id."""
        if isinstance(destination, Coordinates):
            dest_param = destination.as_param()
        else:
            dest_param = f"place_id:{destination}"
        normalized = f"{origin.as_param()}->{dest_param}"
        return self._cached(
            "travel_metrics", normalized,
            lambda: self._travel_metrics(origin.as_param(), dest_param),
            _metrics_to_json, _metrics_from_json,
        )

    def _travel_metrics(self, origin: str, destination: str) -> TravelMetrics:
        element = self.client.distance_matrix(origin, destination)
        if element.get("status") != "OK":
            raise RouteUnavailable(
                f"No driving route to {destination}: {element.get('status', 'no data')}"
            )
        return TravelMetrics(
            meters=float(element["distance"]["value"]),
            duration_seconds=float(element["duration"]["value"]),
        )
