"""Shared fixtures for the quoting test suite.

Provides a fake geo provider (no network), a fixed clock, a LocationService
wired to both, and a Flask test client that uses that service.
"""

import os
from datetime import datetime, timezone

import pytest

# Ensure Google Maps key is present (app warns and /healthz degrades without it)
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "fake-key-for-tests")

from app import app, limiter  # noqa: E402
from location_service import LocationService  # noqa: E402
from pricing_config import PRICING_MODEL  # noqa: E402
from quote_errors import AddressNotFound, NoResultAtCoordinates  # noqa: E402
from quote_models import (  # noqa: E402
    AddressComponents,
    Coordinates,
    ResolvedPlace,
    TravelMetrics,
)

# Mid-January: outside the wetland and bird-nesting windows.
FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_place(
    place_id="place-123",
    address="123 Oak St, DeLand, FL 32720, USA",
    lat=29.03,
    lng=-81.30,
    types=("street_address",),
    verified=True,
    postal_code="32720",
    city="DeLand",
):
    return ResolvedPlace(
        place_id=place_id,
        formatted_address=address,
        coordinates=Coordinates(lat=lat, lng=lng),
        components=AddressComponents(
            street="123 Oak St",
            city=city,
            state="FL",
            postal_code=postal_code,
            county="Volusia County",
            country="US",
        ),
        types=tuple(types),
        verified=verified,
        verdict="VALID" if verified else "UNCONFIRMED",
    )


class FakeGeoProvider:
    """In-memory stand-in for GeoProvider.

    Knows one address and one pin; records every call in ``calls``.
    """

    def __init__(self, place=None, travel=None, verdict="VALID"):
        self.place = place or make_place()
        self.travel = travel or TravelMetrics(meters=25000, duration_seconds=1800)
        self.verdict = verdict
        self.calls = []
        self.validate_error = None
        self.travel_error = None

    def resolve_address(self, text):
        self.calls.append(("resolve_address", text))
        if "nowhere" in text.lower():
            raise AddressNotFound(f"No matching places found for: {text}")
        return self.place

    def reverse_geocode(self, coords):
        self.calls.append(("reverse_geocode", coords))
        if coords.lat == 0 and coords.lng == 0:
            raise NoResultAtCoordinates("No address found at 0, 0")
        return self.place

    def validate_address(self, text):
        self.calls.append(("validate_address", text))
        if self.validate_error is not None:
            raise self.validate_error
        return self.verdict, text

    def travel_metrics(self, origin, destination):
        self.calls.append(("travel_metrics", destination))
        if self.travel_error is not None:
            raise self.travel_error
        return self.travel


@pytest.fixture()
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture()
def fake_provider():
    return FakeGeoProvider()


@pytest.fixture()
def service(fake_provider, fixed_clock):
    return LocationService(fake_provider, model=PRICING_MODEL, clock=fixed_clock)


@pytest.fixture()
def client(service):
    """Flask test client backed by the fake-provider service."""
    app.config["TESTING"] = True
    limiter.enabled = False
    app.config["LOCATION_SERVICE"] = service
    with app.test_client() as c:
        yield c
    app.config["LOCATION_SERVICE"] = None
