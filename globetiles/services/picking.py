from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

import httpx

from ..errors import ImageryProviderError, classify_failure
from ..projection import (
    projection_for_point_wkid,
    spatial_reference_code,
    to_geographic,
    to_native,
)
from ..settings import pick_tolerance
from .config import ProviderConfig
from .transport import TileRequest, fetch_json, request_timeout
from .usage import record_request

logger = logging.getLogger(__name__)

POINT_GEOMETRY = "esriGeometryPoint"
DISPLAY_DPI = 96


@dataclass(frozen=True)
class GeographicPosition:
    longitude: float
    latitude: float
    height: float = 0.0


@dataclass
class PickResult:
    """A feature returned by an identify query."""

    name: str | None
    properties: Dict[str, Any] = field(default_factory=dict)
    position: GeographicPosition | None = None
    data: Mapping[str, Any] = field(default_factory=dict)
    description: str | None = None


def describe_properties(properties: Mapping[str, Any]) -> str:
    """Render feature attributes as a two column HTML table."""

    rows = []
    for key, value in properties.items():
        if value is None:
            continue
        rows.append(
            f"<tr><th>{html.escape(str(key))}</th><td>{html.escape(str(value))}</td></tr>"
        )
    return f"<table><tbody>{''.join(rows)}</tbody></table>"


def build_identify_request(
    config: ProviderConfig,
    x: int,
    y: int,
    level: int,
    longitude: float,
    latitude: float,
    *,
    tolerance: int | None = None,
) -> TileRequest:
    projection = config.tiling_scheme.projection
    rectangle = config.tiling_scheme.tile_xy_to_native_rectangle(x, y, level)
    horizontal, vertical = to_native(projection, longitude, latitude)

    layers = "visible"
    if config.layers:
        layers += f":{config.layers}"

    query = {
        "f": "json",
        "tolerance": pick_tolerance() if tolerance is None else tolerance,
        "geometryType": POINT_GEOMETRY,
        "geometry": f"{horizontal},{vertical}",
        "mapExtent": rectangle.to_bbox(),
        "imageDisplay": f"{config.tile_width},{config.tile_height},{DISPLAY_DPI}",
        "sr": spatial_reference_code(projection),
        "layers": layers,
    }
    return config.endpoint.derive("identify", query)


def _feature_position(feature: Mapping[str, Any]) -> GeographicPosition | None:
    geometry = feature.get("geometry")
    if feature.get("geometryType") != POINT_GEOMETRY or not geometry:
        return None

    wkid = (geometry.get("spatialReference") or {}).get("wkid")
    projection = projection_for_point_wkid(wkid)
    if projection is None:
        logger.debug("Leaving picked point without a position; WKID %s is not supported", wkid)
        return None

    try:
        longitude, latitude = to_geographic(projection, float(geometry["x"]), float(geometry["y"]))
    except (KeyError, TypeError, ValueError):
        return None
    height = geometry.get("z")
    return GeographicPosition(longitude, latitude, float(height) if height is not None else 0.0)


def parse_identify_results(payload: Mapping[str, Any]) -> List[PickResult]:
    results: List[PickResult] = []
    for feature in payload.get("results") or ():
        properties = dict(feature.get("attributes") or {})
        results.append(
            PickResult(
                name=feature.get("value"),
                properties=properties,
                position=_feature_position(feature),
                data=feature,
                description=describe_properties(properties),
            )
        )
    return results


async def pick(
    config: ProviderConfig,
    x: int,
    y: int,
    level: int,
    longitude: float,
    latitude: float,
    *,
    enabled: bool = True,
    client: httpx.AsyncClient | None = None,
) -> List[PickResult] | None:
    """Identify features at a point; ``None`` when picking is disabled."""

    if not enabled:
        return None

    request = build_identify_request(config, x, y, level, longitude, latitude)
    try:
        if client is not None:
            payload = await fetch_json(client, request)
        else:
            async with httpx.AsyncClient(timeout=request_timeout()) as owned_client:
                payload = await fetch_json(owned_client, request)
    except ImageryProviderError as exc:
        logger.warning("Identify request to %s failed: %s", request.url, exc)
        raise
    except ValueError as exc:
        raise classify_failure(exc) from exc

    record_request(request.url)
    if not isinstance(payload, Mapping):
        return []
    return parse_identify_results(payload)
