"""Fallback tiers used when the routing service rejects a waypoint list."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .brouter_api import RoutingOutcome
from .errors import ErrorKind, RoutingExhausted
from .geometry import LatLon, haversine_km

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS_KM = (0.5, 1.0, 1.5)
DEFAULT_MAX_INTERMEDIATE = 8

PROFILE_FALLBACKS: Dict[str, List[str]] = {
    "trekking": ["fastbike", "trekking-ignore-cr", "trekking-noferries"],
    "gravel": ["trekking", "fastbike"],
    "fastbike": ["trekking", "fastbike-lowtraffic"],
}

RouteCall = Callable[[Sequence[LatLon], str], RoutingOutcome]


def simplify_waypoints(waypoints: Sequence[LatLon], min_distance_km: float = 0.5) -> List[LatLon]:
    """Drop intermediate points closer than ``min_distance_km`` to the last kept one.

    The first and last point are always kept.
    """
    if len(waypoints) <= 2:
        return list(waypoints)
    kept = [waypoints[0]]
    for p in waypoints[1:-1]:
        if haversine_km(kept[-1], p) >= min_distance_km:
            kept.append(p)
    kept.append(waypoints[-1])
    return kept


class SimplificationStrategy:
    """Iterate increasingly aggressive simplifications of one waypoint list."""

    LEVEL_NAMES = ("level-1", "level-2-aggressive", "level-3-very-aggressive")

    def __init__(self, waypoints: Sequence[LatLon], thresholds_km: Sequence[float] = DEFAULT_THRESHOLDS_KM):
        self.original = list(waypoints)
        self.thresholds = sorted(thresholds_km)
        self.current_level = -1

    def has_more_levels(self) -> bool:
        return self.current_level < len(self.thresholds) - 1

    def next_level(self) -> Tuple[int, str, List[LatLon]]:
        self.current_level += 1
        threshold = self.thresholds[self.current_level]
        name = (
            self.LEVEL_NAMES[self.current_level]
            if self.current_level < len(self.LEVEL_NAMES)
            else f"level-{self.current_level + 1}"
        )
        return self.current_level, name, simplify_waypoints(self.original, threshold)

    def __iter__(self) -> Iterator[Tuple[int, str, List[LatLon]]]:
        while self.has_more_levels():
            yield self.next_level()


def profiles_to_try(profile: str) -> List[str]:
    return [profile] + [p for p in PROFILE_FALLBACKS.get(profile, []) if p != profile]


def create_minimal_waypoints(
    waypoints: Sequence[LatLon], max_intermediate: int = DEFAULT_MAX_INTERMEDIATE
) -> List[LatLon]:
    """Start, end and at most ``max_intermediate`` evenly spaced points between."""
    if len(waypoints) <= 3:
        return list(waypoints)
    inner = len(waypoints) - 2
    step = math.ceil(inner / min(max_intermediate, inner))
    minimal = [waypoints[0]]
    minimal.extend(waypoints[k] for k in range(step, len(waypoints) - 1, step))
    minimal.append(waypoints[-1])
    return minimal


@dataclass
class SubmissionResult:
    outcome: RoutingOutcome
    waypoints: List[LatLon]
    tier: str
    profile: str
    simplified: bool = False
    minimal: bool = False


def try_profiles(
    waypoints: Sequence[LatLon], profiles: Sequence[str], call: RouteCall
) -> RoutingOutcome:
    """First successful outcome across ``profiles``.

    Coverage and invalid-request failures stop the search since another
    profile cannot fix them.
    """
    if not profiles:
        raise ValueError("no routing profile to try")
    outcome: Optional[RoutingOutcome] = None
    for profile in profiles:
        outcome = call(waypoints, profile)
        if outcome.ok:
            return outcome
        logger.warning("Profile %s failed: %s", profile, outcome.message)
        if outcome.error_kind in (ErrorKind.COVERAGE, ErrorKind.INVALID_REQUEST):
            break
    return outcome


def submit_with_fallbacks(
    waypoints: Sequence[LatLon],
    profile: str,
    call: RouteCall,
    *,
    thresholds_km: Sequence[float] = DEFAULT_THRESHOLDS_KM,
    max_intermediate: int = DEFAULT_MAX_INTERMEDIATE,
) -> SubmissionResult:
    """Run the routing tiers in order until one succeeds.

    Tiers: requested profile with profile fallbacks, simplification (only
    after a coverage error), minimal skeleton.  Raises
    :class:`RoutingExhausted` naming the last tier and error otherwise.
    """
    points = list(waypoints)

    outcome = try_profiles(points, profiles_to_try(profile), call)
    tier = "profile"
    if outcome.ok:
        if outcome.profile != profile:
            logger.warning(
                "Routing succeeded with fallback profile %s (requested %s)", outcome.profile, profile
            )
        return SubmissionResult(outcome, points, tier, outcome.profile)
    last = outcome

    if outcome.error_kind is ErrorKind.COVERAGE:
        for level, name, simplified in SimplificationStrategy(points, thresholds_km):
            tier = f"simplify:{name}"
            logger.info(
                "Coverage error, simplification %s: %d -> %d waypoints", name, len(points), len(simplified)
            )
            outcome = call(simplified, profile)
            if outcome.ok:
                logger.info("Routing succeeded after simplification %s", name)
                return SubmissionResult(outcome, simplified, tier, profile, simplified=True)
            last = outcome

    if len(points) > 3:
        tier = "minimal"
        minimal = create_minimal_waypoints(points, max_intermediate)
        logger.warning("Minimal route attempt: %d -> %d waypoints", len(points), len(minimal))
        outcome = call(minimal, profile)
        if outcome.ok:
            return SubmissionResult(outcome, minimal, tier, profile, simplified=True, minimal=True)
        last = outcome

    logger.error("All routing strategies exhausted, last tier %s: %s", tier, last.message)
    raise RoutingExhausted(
        f"routing failed in tier {tier!r}: {last.message}"
    ) from last.to_exception()
