"""Client for a BRouter-compatible routing service.

Service failures are returned as :class:`RoutingOutcome` values tagged with
an :class:`ErrorKind` instead of being raised, so callers can choose a
fallback by failure category.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests

from .errors import (
    CoverageError,
    ErrorKind,
    ExternalServiceTransportError,
    SquadratRouteError,
)
from .geometry import LatLon

logger = logging.getLogger(__name__)

DEFAULT_BROUTER_URL = "https://brouter.de/brouter"
COVERAGE_MARKERS = ("not mapped in existing datafile", "not mapped")


@dataclass
class RoutingOutcome:
    profile: str
    geojson: Optional[Dict[str, Any]] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error_kind is None and self.geojson is not None

    def to_exception(self) -> SquadratRouteError:
        """Exception matching the failure category, for chaining."""
        if self.error_kind is ErrorKind.COVERAGE:
            return CoverageError(self.message)
        if self.error_kind is ErrorKind.TRANSPORT:
            return ExternalServiceTransportError(self.message)
        return SquadratRouteError(self.message)


@dataclass
class ParsedRoute:
    coordinates: List[Dict[str, float]]
    distance_km: float
    elevation_gain_m: int
    time_min: int
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def is_coverage_message(text: str) -> bool:
    return any(marker in text for marker in COVERAGE_MARKERS)


def format_lonlats(waypoints: Sequence[LatLon]) -> str:
    return "|".join(f"{lon},{lat}" for lat, lon in waypoints)


def call_brouter(
    waypoints: Sequence[LatLon],
    profile: str,
    api_url: str = DEFAULT_BROUTER_URL,
    *,
    retries: int = 1,
    retry_delay_s: float = 2.0,
    timeout_s: float = 60.0,
) -> RoutingOutcome:
    """Request a route through ``waypoints`` (``(lat, lon)`` pairs).

    Transport failures are retried ``retries`` times with a linearly growing
    delay; coverage and no-route answers are returned immediately.
    """
    if len(waypoints) < 2:
        return RoutingOutcome(
            profile,
            error_kind=ErrorKind.INVALID_REQUEST,
            message="need at least 2 waypoints for routing",
        )

    params = {
        "lonlats": format_lonlats(waypoints),
        "profile": profile,
        "alternativeidx": 0,
        "format": "geojson",
    }
    logger.info("Calling BRouter with %d waypoints, profile=%s", len(waypoints), profile)

    outcome = RoutingOutcome(profile)
    for attempt in range(1, retries + 2):
        outcome.attempts = attempt
        try:
            resp = requests.get(api_url, params=params, timeout=timeout_s)
        except requests.RequestException as e:
            outcome.error_kind = ErrorKind.TRANSPORT
            outcome.message = f"BRouter request failed: {e}"
        else:
            if not resp.ok:
                text = resp.text or ""
                outcome.message = f"BRouter API error: {resp.status_code} {text.strip()}".strip()
                if is_coverage_message(text):
                    outcome.error_kind = ErrorKind.COVERAGE
                    return outcome
                outcome.error_kind = ErrorKind.TRANSPORT
            else:
                try:
                    data = resp.json()
                except ValueError as e:
                    outcome.error_kind = ErrorKind.TRANSPORT
                    outcome.message = f"BRouter returned invalid JSON: {e}"
                else:
                    if not data.get("features"):
                        outcome.error_kind = ErrorKind.NO_ROUTE
                        outcome.message = "BRouter returned no route"
                        return outcome
                    outcome.error_kind = None
                    outcome.message = ""
                    outcome.geojson = data
                    return outcome

        if attempt <= retries:
            delay = retry_delay_s * attempt
            logger.warning("%s (attempt %d), retrying in %.1fs", outcome.message, attempt, delay)
            time.sleep(delay)
    return outcome


def parse_brouter_response(geojson: Dict[str, Any]) -> ParsedRoute:
    """Extract coordinates and aggregate statistics from a BRouter answer."""
    features = geojson.get("features") or []
    if not features:
        raise ValueError("Invalid GeoJSON: no features")
    feature = features[0]
    props = feature.get("properties") or {}
    coords = []
    for c in feature["geometry"]["coordinates"]:
        elevation = float(c[2]) if len(c) > 2 and c[2] is not None else 0.0
        coords.append({"lat": float(c[1]), "lon": float(c[0]), "elevation": elevation})

    gain = 0.0
    for prev, cur in zip(coords, coords[1:]):
        diff = cur["elevation"] - prev["elevation"]
        if diff > 0:
            gain += diff

    distance_m = float(props.get("track-length") or 0)
    time_s = float(props.get("total-time") or 0)
    return ParsedRoute(
        coordinates=coords,
        distance_km=distance_m / 1000.0,
        elevation_gain_m=int(round(gain)),
        time_min=int(round(time_s / 60.0)),
        raw=geojson,
    )
