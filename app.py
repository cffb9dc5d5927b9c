import os
import logging
import uuid

from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from health_monitor import get_status as get_provider_health
from location_service import create_location_service
from pricing_config import PRICING_MODEL
from quote_assembly import location_to_dict, quote_to_dict
from quote_errors import (
    AddressInvalid,
    AddressNotFound,
    InvalidProjectSize,
    NoResultAtCoordinates,
    ProviderTimeout,
    QuoteError,
    RouteUnavailable,
)
from quote_models import Bounds, Coordinates, PinDropRequest
from quote_trace import TraceContext, set_trace, clear_trace

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            # Unknown address, no route, provider timeout, bad acreage
            if exc_type is not None and issubclass(exc_type, QuoteError):
                sentry_sdk.add_breadcrumb(
                    category="quote",
                    message=f"{exc_value.code}: {msg}",
                    level="warning",
                )
                return None
            if exc_type is not None and issubclass(exc_type, requests.exceptions.RequestException):
                sentry_sdk.add_breadcrumb(
                    category="google_maps",
                    message=msg,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RELEASE_SHA"),
        environment=os.environ.get("DEPLOY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)

# Behind a reverse proxy: rewrite remote_addr to the real client IP so
# Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting. Every quote costs several billed Google calls.
# In-memory storage is per-process.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_QUOTE = os.environ.get("RATE_LIMIT_QUOTE", "20/hour")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

if not os.environ.get("GOOGLE_MAPS_API_KEY"):
    logger.warning(
        "GOOGLE_MAPS_API_KEY is not set. "
        "Location endpoints will return 503 until it is configured. "
        "For local development, copy .env.example to .env and add your key."
    )


def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

def _get_location_service():
    """The process's LocationService, built on first use.

    Tests (or an embedding app) may preload app.config["LOCATION_SERVICE"].
    """
    service = app.config.get("LOCATION_SERVICE")
    if service is None:
        service = create_location_service()
        app.config["LOCATION_SERVICE"] = service
    return service


def _available_location_service():
    """The LocationService, or None when it is unconfigured or misconfigured."""
    try:
        return _get_location_service()
    except ValueError as e:
        # Malformed SERVICE_BASE_* / TRANSPORT_HOURLY_RATE
        logger.error("Location service misconfigured: %s", e)
        return None


def _check_service_config():
    """
    Validate required service configuration.
    Returns (is_ok, missing_keys) tuple.
    """
    missing = []
    if app.config.get("LOCATION_SERVICE") is None and not os.environ.get("GOOGLE_MAPS_API_KEY"):
        missing.append("GOOGLE_MAPS_API_KEY")
    return (len(missing) == 0, missing)


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------

def _parse_coordinates(raw):
    if not isinstance(raw, dict):
        raise ValueError("coordinates must be an object with lat and lng")
    try:
        return Coordinates(lat=float(raw["lat"]), lng=float(raw["lng"]))
    except (KeyError, TypeError):
        raise ValueError("coordinates must include numeric lat and lng")


def _parse_bounds(raw):
    if raw is None:
        return None
    try:
        return Bounds(
            north=float(raw["north"]),
            south=float(raw["south"]),
            east=float(raw["east"]),
            west=float(raw["west"]),
        )
    except (KeyError, TypeError):
        raise ValueError("property_bounds must include north, south, east and west")


def _parse_acres(raw, default=1.0):
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise InvalidProjectSize(f"acreage must be a number, got {raw!r}")


def _pin_drop_from(data):
    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValueError("notes must be a string")
    if notes is not None and len(notes) > 500:
        raise ValueError("notes must be 500 characters or fewer")
    return PinDropRequest(
        coordinates=_parse_coordinates(data.get("coordinates")),
        address=data.get("address"),
        bounds=_parse_bounds(data.get("property_bounds")),
        notes=notes,
    )


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def error_status(exc):
    """HTTP status for a pipeline exception."""
    if isinstance(exc, InvalidProjectSize):
        return 400
    if isinstance(exc, (AddressNotFound, NoResultAtCoordinates)):
        return 404
    if isinstance(exc, (AddressInvalid, RouteUnavailable)):
        return 422
    if isinstance(exc, ProviderTimeout):
        return 504
    if isinstance(exc, QuoteError):
        return 502
    if isinstance(exc, ValueError):
        return 400
    return 500


def _run_traced(handler):
    """Run *handler* under a request trace and map errors to JSON responses."""
    request_id = getattr(g, "request_id", "unknown")
    service = _available_location_service()
    if service is None:
        return jsonify({
            "success": False,
            "error": "Location services unavailable",
            "request_id": request_id,
        }), 503

    trace_ctx = TraceContext(trace_id=request_id)
    trace_ctx.model_version = PRICING_MODEL.version
    set_trace(trace_ctx)
    try:
        data = handler(service)
        return jsonify({"success": True, "data": data, "request_id": request_id})
    except (QuoteError, ValueError) as e:
        status = error_status(e)
        logger.info("[%s] %s -> %d: %s", request_id, request.path, status, e)
        body = {"success": False, "error": str(e), "request_id": request_id}
        if isinstance(e, QuoteError):
            body["code"] = e.code
        return jsonify(body), status
    except Exception:
        logger.exception("[%s] Unexpected error on %s", request_id, request.path)
        return jsonify({
            "success": False,
            "error": "Internal error",
            "request_id": request_id,
        }), 500
    finally:
        trace_ctx.log_summary()
        clear_trace()


def _service_zone(service, location):
    classification = service.policy.classify(
        location.distance_from_base.distance_km, location.risk_profile,
    )
    return {
        "zone": classification.zone_description,
        "surcharge_percent": classification.surcharge_percent,
        "risk_adjustment_percent": classification.risk_adjustment_percent,
    }


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/api/location/validate", methods=["POST"])
@limiter.limit(RATE_LIMIT_QUOTE)
def validate_address():
    """Verify a typed address and return the enriched location.

    Accepts JSON: {"address": "...", "acreage": 1.0}
    """
    data = request.get_json(silent=True) or {}

    def handler(service):
        address = (data.get("address") or "").strip()
        if len(address) > 200:
            raise ValueError("address must be 200 characters or fewer")
        location = service.verify_property_location(address, _parse_acres(data.get("acreage")))
        result = location_to_dict(location)
        result["is_within_service_area"] = service.policy.is_within_service_area(
            location.distance_from_base.distance_km
        )
        result["service_zone"] = _service_zone(service, location)
        return result

    return _run_traced(handler)


@app.route("/api/location/validate", methods=["PUT"])
@limiter.limit(RATE_LIMIT_QUOTE)
def validate_pin_drop():
    """Resolve a dropped map pin.

    Accepts JSON: {"coordinates": {"lat": .., "lng": ..}, "address"?, "property_bounds"?, "notes"?}
    """
    data = request.get_json(silent=True) or {}

    def handler(service):
        pin = _pin_drop_from(data)
        location = service.process_pin_drop_location(pin, _parse_acres(data.get("acreage")))
        result = location_to_dict(location)
        result["is_within_service_area"] = service.is_within_service_area(pin.coordinates)
        result["service_zone"] = _service_zone(service, location)
        return result

    return _run_traced(handler)


@app.route("/api/location/validate", methods=["GET"])
def service_area_check():
    """Straight-line service-area check; no provider calls."""
    try:
        coords = Coordinates(lat=float(request.args["lat"]), lng=float(request.args["lng"]))
    except (KeyError, ValueError):
        return jsonify({
            "success": False,
            "error": "Valid lat and lng parameters required",
        }), 400

    service = _available_location_service()
    if service is None:
        return jsonify({"success": False, "error": "Service unavailable"}), 503

    within = service.is_within_service_area(coords)
    return jsonify({
        "success": True,
        "data": {
            "coordinates": {"lat": coords.lat, "lng": coords.lng},
            "is_within_service_area": within,
            "message": (
                "Location is within our service area" if within
                else "Location is outside our service area but we may still provide service"
            ),
        },
    })


@app.route("/api/location/pricing", methods=["POST"])
@limiter.limit(RATE_LIMIT_QUOTE)
def pricing_estimate():
    """Price a pin-dropped property.

    Accepts JSON: {"coordinates": {...}, "acreage": 2.5, "property_type"?,
    "vegetation_density"?, "address"?, "property_bounds"?}
    """
    data = request.get_json(silent=True) or {}

    def handler(service):
        acres = _parse_acres(data.get("acreage"), default=None)
        if acres is None:
            raise InvalidProjectSize("acreage is required")
        quote = service.quote_pin_drop(
            _pin_drop_from(data),
            acres,
            overrides={
                "base_property_type": data.get("property_type"),
                "vegetation_density": data.get("vegetation_density"),
            },
        )
        result = quote_to_dict(quote)
        return {
            "estimate": result["estimate"],
            "line_items": result["line_items"],
            "transportation_cost": result["transportation_cost"],
            "service_area_tier": result["service_area_tier"],
            "is_within_service_area": result["is_within_service_area"],
            "location": result["location"],
        }

    return _run_traced(handler)


@app.route("/api/location/quote", methods=["POST"])
@limiter.limit(RATE_LIMIT_QUOTE)
def location_quote():
    """Full quote for an address or a map pin.

    Accepts JSON::

        {
          "address": "..." | "coordinates": {"lat": .., "lng": ..},
          "project_details": {"acreage": 3, "estimated_tree_density": "heavy",
                              "accessibility_rating": 5},
          "property_info": {"type": "residential", "environmental_restrictions": []}
        }
    """
    data = request.get_json(silent=True) or {}

    def handler(service):
        project = data.get("project_details") or {}
        prop = data.get("property_info") or {}
        acres = _parse_acres(project.get("acreage"))
        overrides = {
            "base_property_type": prop.get("type"),
            "vegetation_density": project.get("estimated_tree_density"),
            "accessibility_rating": project.get("accessibility_rating"),
            "environmental_restrictions": prop.get("environmental_restrictions"),
        }
        if data.get("address"):
            quote = service.quote_address(data["address"], acres, overrides)
        elif data.get("coordinates"):
            quote = service.quote_pin_drop(
                PinDropRequest(coordinates=_parse_coordinates(data["coordinates"])),
                acres,
                overrides,
            )
        else:
            raise ValueError("Either address or coordinates must be provided")
        return quote_to_dict(quote)

    return _run_traced(handler)


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    config_ok, missing = _check_service_config()
    return jsonify({
        "status": "ok" if config_ok else "degraded",
        "missing_keys": missing,
        "model_version": PRICING_MODEL.version,
        "providers": get_provider_health(),
    }), 200 if config_ok else 503


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "success": False,
        "error": "Too many requests. Please wait and try again.",
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"success": False, "error": "Not found"}), 404


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
