from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

MAX_LONGITUDE = 180.0
MAX_LATITUDE = 90.0


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(min(value, maximum), minimum)


def _wrap_longitude(value: float) -> float:
    """Wrap a longitude in degrees into [-180, 180]."""

    if -MAX_LONGITUDE <= value <= MAX_LONGITUDE:
        return value
    wrapped = (value + MAX_LONGITUDE) % 360.0 - MAX_LONGITUDE
    if wrapped == -MAX_LONGITUDE and value > 0:
        return MAX_LONGITUDE
    return wrapped


@dataclass(frozen=True)
class Rectangle:
    """Geographic (or native) bounds expressed as west, south, east, north.

    A geographic rectangle whose ``east`` is smaller than its ``west`` crosses
    the antimeridian.
    """

    west: float
    south: float
    east: float
    north: float

    @classmethod
    def max_value(cls) -> "Rectangle":
        return cls(-MAX_LONGITUDE, -MAX_LATITUDE, MAX_LONGITUDE, MAX_LATITUDE)

    @property
    def width(self) -> float:
        east = self.east
        if east < self.west:
            east += 360.0
        return east - self.west

    @property
    def height(self) -> float:
        return self.north - self.south

    @property
    def center(self) -> Tuple[float, float]:
        longitude = _wrap_longitude(self.west + self.width / 2.0)
        return longitude, (self.south + self.north) / 2.0

    def contains(self, longitude: float, latitude: float) -> bool:
        west = self.west
        east = self.east
        if east < west:
            east += 360.0
            if longitude < 0.0:
                longitude += 360.0
        return west <= longitude <= east and self.south <= latitude <= self.north

    def clamped(self) -> "Rectangle":
        """Return a copy limited to the valid longitude and latitude range."""

        return Rectangle(
            _clamp(self.west, -MAX_LONGITUDE, MAX_LONGITUDE),
            _clamp(self.south, -MAX_LATITUDE, MAX_LATITUDE),
            _clamp(self.east, -MAX_LONGITUDE, MAX_LONGITUDE),
            _clamp(self.north, -MAX_LATITUDE, MAX_LATITUDE),
        )

    def intersection(self, other: "Rectangle") -> "Rectangle | None":
        """Compute the overlap with ``other`` or ``None`` when they do not overlap.

        Rectangles that merely share an edge do not intersect.
        """

        self_east = self.east
        self_west = self.west
        other_east = other.east
        other_west = other.west

        if self_east < self_west and other_east > 0.0:
            self_east += 360.0
        elif other_east < other_west and self_east > 0.0:
            other_east += 360.0

        if self_east < self_west and other_west < 0.0:
            other_west += 360.0
        elif other_east < other_west and self_west < 0.0:
            self_west += 360.0

        west = _wrap_longitude(max(self_west, other_west))
        east = _wrap_longitude(min(self_east, other_east))

        if (self.west < self.east or other.west < other.east) and east <= west:
            return None

        south = max(self.south, other.south)
        north = min(self.north, other.north)
        if south >= north:
            return None

        return Rectangle(west, south, east, north)

    def to_bbox(self) -> str:
        return f"{self.west},{self.south},{self.east},{self.north}"
