"""Spatial reference normalization and reprojection between the supported projections.

Servers report spatial references as numeric WKIDs. Only two projections are
supported: plain geographic longitude/latitude and the spherical
web-mercator projection used by most tile pyramids.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Tuple

from .errors import UnsupportedSpatialReference
from .geometry import Rectangle

WGS84_SEMI_MAJOR_AXIS = 6378137.0
# Latitude at which the mercator square closes: atan(sinh(pi)).
MERCATOR_MAXIMUM_LATITUDE = math.degrees(math.atan(math.sinh(math.pi)))
MERCATOR_MAXIMUM_EXTENT = math.pi * WGS84_SEMI_MAJOR_AXIS

GEOGRAPHIC_WKID = 4326
WEB_MERCATOR_WKID = 3857


class Projection(str, Enum):
    """Projections a tiling scheme can be laid out in."""

    GEOGRAPHIC = "geographic"
    WEB_MERCATOR = "web_mercator"


_TILE_WKIDS = {
    102100: Projection.WEB_MERCATOR,
    102113: Projection.WEB_MERCATOR,
    4326: Projection.GEOGRAPHIC,
}

_POINT_WKIDS = {
    4326: Projection.GEOGRAPHIC,
    4283: Projection.GEOGRAPHIC,
    102100: Projection.WEB_MERCATOR,
    900913: Projection.WEB_MERCATOR,
    3857: Projection.WEB_MERCATOR,
}


def projection_for_wkid(wkid: object, section: str = "Tile") -> Projection:
    """Resolve a capability document WKID or raise ``UnsupportedSpatialReference``."""

    projection = _TILE_WKIDS.get(wkid) if isinstance(wkid, int) else None
    if projection is None:
        raise UnsupportedSpatialReference(
            f"{section} spatial reference WKID {wkid} is not supported.", wkid
        )
    return projection


def projection_for_point_wkid(wkid: object | None) -> Projection | None:
    """Resolve the spatial reference of a picked geometry; ``None`` when unknown."""

    if not wkid:
        return Projection.GEOGRAPHIC
    if not isinstance(wkid, int):
        return None
    return _POINT_WKIDS.get(wkid)


def spatial_reference_code(projection: Projection) -> int:
    if projection is Projection.GEOGRAPHIC:
        return GEOGRAPHIC_WKID
    return WEB_MERCATOR_WKID


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(min(value, maximum), minimum)


def to_native(projection: Projection, longitude: float, latitude: float) -> Tuple[float, float]:
    """Project geographic degrees into ``projection``'s native coordinates."""

    if projection is Projection.GEOGRAPHIC:
        return longitude, latitude

    latitude = _clamp(latitude, -MERCATOR_MAXIMUM_LATITUDE, MERCATOR_MAXIMUM_LATITUDE)
    longitude = _clamp(longitude, -180.0, 180.0)
    sin_latitude = math.sin(math.radians(latitude))
    x = math.radians(longitude) * WGS84_SEMI_MAJOR_AXIS
    y = 0.5 * math.log((1.0 + sin_latitude) / (1.0 - sin_latitude)) * WGS84_SEMI_MAJOR_AXIS
    return x, y


def to_geographic(projection: Projection, x: float, y: float) -> Tuple[float, float]:
    """Inverse of :func:`to_native`."""

    if projection is Projection.GEOGRAPHIC:
        return x, y

    x = _clamp(x, -MERCATOR_MAXIMUM_EXTENT, MERCATOR_MAXIMUM_EXTENT)
    y = _clamp(y, -MERCATOR_MAXIMUM_EXTENT, MERCATOR_MAXIMUM_EXTENT)
    longitude = math.degrees(x / WGS84_SEMI_MAJOR_AXIS)
    latitude = math.degrees(math.pi / 2.0 - 2.0 * math.atan(math.exp(-y / WGS84_SEMI_MAJOR_AXIS)))
    return longitude, latitude


def native_rectangle_to_geographic(projection: Projection, rectangle: Rectangle) -> Rectangle:
    """Convert a native extent to geographic bounds, clamped to the valid range."""

    if projection is Projection.GEOGRAPHIC:
        return rectangle.clamped()

    west, south = to_geographic(projection, rectangle.west, rectangle.south)
    east, north = to_geographic(projection, rectangle.east, rectangle.north)
    return Rectangle(west, south, east, north)
