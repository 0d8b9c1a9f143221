"""Normalized cell/area bounds.

Cells travel between the optimizer, the road fetcher and the router in a
handful of shapes: ``[[south, west], [north, east]]`` arrays, objects carrying
a nested ``bounds`` value, ``{minLat, maxLat, minLon, maxLon}`` mappings and
plain ``{south, north, east, west}`` mappings.  :class:`CellBounds` is the one
internal representation; :meth:`CellBounds.from_any` converts every accepted
shape and rejects anything else with :class:`InvalidGeometry`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .errors import InvalidGeometry

# ~11 m at mid latitudes
COORD_TOLERANCE = 0.0001


@dataclass(frozen=True)
class CellBounds:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_any(cls, value: Any) -> "CellBounds":
        if isinstance(value, CellBounds):
            return value
        if isinstance(value, (list, tuple)):
            try:
                (south, west), (north, east) = value
            except (TypeError, ValueError) as e:
                raise InvalidGeometry(f"bounds array must be [[s, w], [n, e]]: {value!r}") from e
            return cls(float(south), float(west), float(north), float(east))
        if isinstance(value, Mapping):
            if "bounds" in value:
                return cls.from_any(value["bounds"])
            if "minLat" in value or "maxLat" in value:
                return cls._from_mapping(
                    value,
                    ("minLat", "south"),
                    ("minLon", "west"),
                    ("maxLat", "north"),
                    ("maxLon", "east"),
                )
            return cls._from_mapping(
                value, ("south",), ("west",), ("north",), ("east",)
            )
        nested = getattr(value, "bounds", None)
        if nested is not None:
            return cls.from_any(nested)
        raise InvalidGeometry(f"unrecognized bounds value: {value!r}")

    @classmethod
    def _from_mapping(cls, value: Mapping, *keys: Tuple[str, ...]) -> "CellBounds":
        out: List[float] = []
        for alternatives in keys:
            for k in alternatives:
                if value.get(k) is not None:
                    out.append(float(value[k]))
                    break
            else:
                raise InvalidGeometry(f"bounds mapping is missing {alternatives[0]!r}")
        return cls(*out)

    def to_array(self) -> List[List[float]]:
        return [[self.south, self.west], [self.north, self.east]]

    def to_min_max(self) -> Dict[str, float]:
        return {
            "minLat": self.south,
            "maxLat": self.north,
            "minLon": self.west,
            "maxLon": self.east,
        }

    def to_dict(self) -> Dict[str, float]:
        return {
            "south": self.south,
            "west": self.west,
            "north": self.north,
            "east": self.east,
        }

    @property
    def center(self) -> Tuple[float, float]:
        """``(lat, lon)`` of the rectangle center."""
        return ((self.south + self.north) / 2.0, (self.west + self.east) / 2.0)

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    def expand(self, margin: float) -> "CellBounds":
        return CellBounds(
            self.south - margin,
            self.west - margin,
            self.north + margin,
            self.east + margin,
        )

    def to_box(self):
        """Return a shapely polygon in ``(lon, lat)`` axis order."""
        from shapely.geometry import box

        return box(self.west, self.south, self.east, self.north)

    @staticmethod
    def combine(bounds: Iterable[Any]) -> "CellBounds":
        """Return the smallest bounds covering every item in ``bounds``."""
        items = [CellBounds.from_any(b) for b in bounds]
        if not items:
            raise ValueError("Cannot combine an empty bounds list")
        return CellBounds(
            min(b.south for b in items),
            min(b.west for b in items),
            max(b.north for b in items),
            max(b.east for b in items),
        )


def coords_match(a: float, b: float, tolerance: float = COORD_TOLERANCE) -> bool:
    return abs(a - b) < tolerance


def points_match(
    p1: Tuple[float, float],
    p2: Tuple[float, float],
    tolerance: float = COORD_TOLERANCE,
) -> bool:
    """Compare two ``(lat, lon)`` points within ``tolerance`` degrees."""
    return coords_match(p1[0], p2[0], tolerance) and coords_match(p1[1], p2[1], tolerance)
