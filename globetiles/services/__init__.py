"""Service utilities exposed by the ``globetiles.services`` package."""

from .addressing import build_request, quadkey_to_tile_xy, tile_xy_to_quadkey
from .provider import ImageryProvider, MapStyle
from .transport import EMPTY_TILE

__all__ = [
    "EMPTY_TILE",
    "ImageryProvider",
    "MapStyle",
    "build_request",
    "quadkey_to_tile_xy",
    "tile_xy_to_quadkey",
]
