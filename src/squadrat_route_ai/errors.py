"""Exception hierarchy shared by the grid, optimizer and routing modules."""

from enum import Enum


class SquadratRouteError(Exception):
    """Base class for all errors raised by this package."""


class InvalidGeometry(SquadratRouteError, ValueError):
    """Raised for degenerate rings, zero-extent grids or unreadable bounds."""


class NoReferenceRegionFound(SquadratRouteError):
    """Raised when no polygon qualifies as the reference region."""


class NoRoadsInCell(SquadratRouteError):
    """Raised when no usable road geometry crosses a cell."""


class ExternalServiceTransportError(SquadratRouteError):
    """Timeout, HTTP failure or rate limit talking to an external service."""


class CoverageError(SquadratRouteError):
    """The routing service reported a waypoint outside its data area."""


class RoutingExhausted(SquadratRouteError):
    """Every routing fallback tier failed."""


class ErrorKind(Enum):
    COVERAGE = "coverage"
    TRANSPORT = "transport"
    NO_ROUTE = "no_route"
    INVALID_REQUEST = "invalid_request"
