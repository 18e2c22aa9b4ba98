from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .geometry import Rectangle
from .projection import (
    MERCATOR_MAXIMUM_EXTENT,
    MERCATOR_MAXIMUM_LATITUDE,
    Projection,
    to_geographic,
    to_native,
)


@dataclass(frozen=True)
class TilingScheme:
    """Quad-tree subdivision of a projection's rectangle.

    Tile ``(0, 0)`` is the north-west tile of every level and each level
    doubles the number of tiles along both axes.
    """

    projection: Projection
    rectangle: Rectangle
    level_zero_tiles_x: int
    level_zero_tiles_y: int

    @classmethod
    def geographic(cls, *, tiles_x: int = 2, tiles_y: int = 1) -> "TilingScheme":
        return cls(Projection.GEOGRAPHIC, Rectangle.max_value(), tiles_x, tiles_y)

    @classmethod
    def web_mercator(cls, *, tiles_x: int = 1, tiles_y: int = 1) -> "TilingScheme":
        rectangle = Rectangle(
            -180.0, -MERCATOR_MAXIMUM_LATITUDE, 180.0, MERCATOR_MAXIMUM_LATITUDE
        )
        return cls(Projection.WEB_MERCATOR, rectangle, tiles_x, tiles_y)

    def number_of_x_tiles_at_level(self, level: int) -> int:
        return self.level_zero_tiles_x << level

    def number_of_y_tiles_at_level(self, level: int) -> int:
        return self.level_zero_tiles_y << level

    @property
    def native_rectangle(self) -> Rectangle:
        if self.projection is Projection.WEB_MERCATOR:
            return Rectangle(
                -MERCATOR_MAXIMUM_EXTENT,
                -MERCATOR_MAXIMUM_EXTENT,
                MERCATOR_MAXIMUM_EXTENT,
                MERCATOR_MAXIMUM_EXTENT,
            )
        return self.rectangle

    def tile_xy_to_native_rectangle(self, x: int, y: int, level: int) -> Rectangle:
        native = self.native_rectangle
        tile_width = native.width / self.number_of_x_tiles_at_level(level)
        tile_height = native.height / self.number_of_y_tiles_at_level(level)

        west = native.west + x * tile_width
        east = native.west + (x + 1) * tile_width
        north = native.north - y * tile_height
        south = native.north - (y + 1) * tile_height
        return Rectangle(west, south, east, north)

    def tile_xy_to_rectangle(self, x: int, y: int, level: int) -> Rectangle:
        native = self.tile_xy_to_native_rectangle(x, y, level)
        if self.projection is Projection.GEOGRAPHIC:
            return native
        west, south = to_geographic(self.projection, native.west, native.south)
        east, north = to_geographic(self.projection, native.east, native.north)
        return Rectangle(west, south, east, north)

    def position_to_tile_xy(
        self, longitude: float, latitude: float, level: int
    ) -> Tuple[int, int] | None:
        """Locate the tile containing a geographic position at ``level``."""

        if not self.rectangle.contains(longitude, latitude):
            return None

        x_tiles = self.number_of_x_tiles_at_level(level)
        y_tiles = self.number_of_y_tiles_at_level(level)
        native = self.native_rectangle
        tile_width = native.width / x_tiles
        tile_height = native.height / y_tiles

        native_x, native_y = to_native(self.projection, longitude, latitude)
        x = int((native_x - native.west) / tile_width)
        y = int((native.north - native_y) / tile_height)
        return min(max(x, 0), x_tiles - 1), min(max(y, 0), y_tiles - 1)
