"""Turn tile coordinates into request descriptors, and back.

``build_request`` is a pure function of the committed configuration and the
tile coordinate; it is safe to call from any number of in-flight tile
requests.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Tuple

import httpx

from ..projection import spatial_reference_code
from .config import DynamicExport, PrecachedTiles, ProviderConfig, QuadKeyTiles
from .transport import TileRequest, expand_template

logger = logging.getLogger(__name__)

_TILE_PATH_PATTERN = re.compile(r"tile/(?P<level>\d+)/(?P<y>\d+)/(?P<x>\d+)/?$")


@dataclass(frozen=True)
class TileAddress:
    x: int
    y: int
    level: int


def tile_xy_to_quadkey(x: int, y: int, level: int) -> str:
    """Encode a tile as one digit per bit position, from ``level`` down to 0."""

    digits = []
    for bit in range(level, -1, -1):
        mask = 1 << bit
        digit = 0
        if x & mask:
            digit |= 1
        if y & mask:
            digit |= 2
        digits.append(str(digit))
    return "".join(digits)


def quadkey_to_tile_xy(quadkey: str) -> Tuple[int, int, int]:
    """Decode a quadkey produced by :func:`tile_xy_to_quadkey`."""

    if not quadkey or any(character not in "0123" for character in quadkey):
        raise ValueError(f"invalid quadkey {quadkey!r}")

    x = 0
    y = 0
    level = len(quadkey) - 1
    for bit in range(level, -1, -1):
        mask = 1 << bit
        digit = int(quadkey[level - bit])
        if digit & 1:
            x |= mask
        if digit & 2:
            y |= mask
    return x, y, level


def build_request(config: ProviderConfig, x: int, y: int, level: int) -> TileRequest:
    addressing = config.addressing

    if isinstance(addressing, PrecachedTiles):
        request = config.endpoint.derive(f"tile/{level}/{y}/{x}")
    elif isinstance(addressing, DynamicExport):
        request = _build_export_request(config, addressing, x, y, level)
    elif isinstance(addressing, QuadKeyTiles):
        request = _build_quadkey_request(config, addressing, x, y, level)
    else:
        raise TypeError(f"Unsupported addressing variant: {addressing!r}")

    logger.debug("Tile %s/%s/%s -> %s", level, x, y, request.url)
    return request


def _build_export_request(
    config: ProviderConfig, addressing: DynamicExport, x: int, y: int, level: int
) -> TileRequest:
    native_rectangle = config.tiling_scheme.tile_xy_to_native_rectangle(x, y, level)
    code = spatial_reference_code(config.tiling_scheme.projection)

    query = {
        "bbox": native_rectangle.to_bbox(),
        "size": f"{config.tile_width},{config.tile_height}",
        "format": addressing.image_format,
        "transparent": True,
        "f": "image",
        "bboxSR": code,
        "imageSR": code,
    }
    if config.layers:
        query["layers"] = f"show:{config.layers}"

    return config.endpoint.derive("export", query)


def _build_quadkey_request(
    config: ProviderConfig, addressing: QuadKeyTiles, x: int, y: int, level: int
) -> TileRequest:
    if not addressing.subdomains:
        raise ValueError("quadkey addressing requires at least one subdomain")

    subdomain = addressing.subdomains[(x + y + level) % len(addressing.subdomains)]
    url = expand_template(
        addressing.url_template,
        {
            "quadkey": tile_xy_to_quadkey(x, y, level),
            "subdomain": subdomain,
            "culture": addressing.culture,
        },
    )
    # n=z asks the server for an empty body instead of a placeholder image.
    return config.endpoint.derive(url, {"n": "z"})


def parse_tile_request(config: ProviderConfig, request: TileRequest) -> TileAddress:
    """Recover the tile coordinate a descriptor from :func:`build_request` addresses."""

    addressing = config.addressing

    if isinstance(addressing, PrecachedTiles):
        match = _TILE_PATH_PATTERN.search(httpx.URL(request.url).path)
        if match is None:
            raise ValueError(f"not a tile request: {request.url}")
        return TileAddress(int(match["x"]), int(match["y"]), int(match["level"]))

    if isinstance(addressing, QuadKeyTiles):
        return _parse_quadkey_request(addressing, request)

    if isinstance(addressing, DynamicExport):
        return _parse_export_request(config, request)

    raise TypeError(f"Unsupported addressing variant: {addressing!r}")


def _parse_quadkey_request(addressing: QuadKeyTiles, request: TileRequest) -> TileAddress:
    prefix, marker, suffix = addressing.url_template.partition("{quadkey}")
    if not marker:
        raise ValueError("url template has no {quadkey} placeholder")

    # Every other placeholder may expand to anything without a path separator.
    def _pattern(part: str) -> str:
        pieces = re.split(r"(\{\w+\})", part)
        return "".join(
            "[^/]*?" if piece.startswith("{") and piece.endswith("}") else re.escape(piece)
            for piece in pieces
        )

    pattern = re.compile(f"^{_pattern(prefix)}(?P<quadkey>[0-3]+){_pattern(suffix)}$")
    match = pattern.match(request.url)
    if match is None:
        raise ValueError(f"not a quadkey tile request: {request.url}")
    x, y, level = quadkey_to_tile_xy(match["quadkey"])
    return TileAddress(x, y, level)


def _parse_export_request(config: ProviderConfig, request: TileRequest) -> TileAddress:
    try:
        west, south, east, north = (float(value) for value in request.params["bbox"].split(","))
    except (KeyError, ValueError) as exc:
        raise ValueError(f"not an export request: {request.url}") from exc

    scheme = config.tiling_scheme
    native = scheme.native_rectangle
    tiles_across = native.width / (east - west)
    level = int(round(math.log2(tiles_across / scheme.level_zero_tiles_x)))

    tile_width = native.width / scheme.number_of_x_tiles_at_level(level)
    tile_height = native.height / scheme.number_of_y_tiles_at_level(level)
    center_x = (west + east) / 2.0
    center_y = (south + north) / 2.0
    x = int((center_x - native.west) // tile_width)
    y = int((native.north - center_y) // tile_height)
    return TileAddress(x, y, level)
