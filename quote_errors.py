"""
Typed failures for the quoting pipeline.

Provider failures (address resolution, routing, timeouts) are terminal for a
quote request.  Each error carries a stable ``code`` so the HTTP adapter and
any UI can branch without string matching.
"""


class QuoteError(Exception):
    """Base class for every failure surfaced to a quote caller."""

    code = "QUOTE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidProjectSize(QuoteError, ValueError):
    """Acreage was zero or negative.  Raised before any provider call."""

    code = "INVALID_PROJECT_SIZE"


class GeoProviderError(QuoteError):
    """The geocoding / routing provider failed or returned an error status."""

    code = "PROVIDER_ERROR"


class AddressNotFound(GeoProviderError):
    code = "ADDRESS_NOT_FOUND"


class AddressInvalid(GeoProviderError):
    code = "ADDRESS_INVALID"


class NoResultAtCoordinates(GeoProviderError):
    code = "NO_RESULT_AT_COORDINATES"


class RouteUnavailable(GeoProviderError):
    code = "ROUTE_UNAVAILABLE"


class ProviderTimeout(GeoProviderError):
    code = "PROVIDER_TIMEOUT"
