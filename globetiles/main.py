from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, List

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlmodel import Session

from . import __version__
from .database import get_session, init_db
from .errors import ImageryProviderError, TransportFailure
from .models import ApiUsageStat
from .services.provider import ImageryProvider, MapStyle
from .services.transport import EMPTY_TILE
from .services.usage import usage_snapshot

app = FastAPI(title="Globe Tile Bootstrap", version=__version__)

logger = logging.getLogger(__name__)


class MapServerProviderRequest(BaseModel):
    url: str
    token: str | None = None
    use_precached_tiles: bool = True
    layers: str | None = None
    enable_pick_features: bool = True


class QuadKeyProviderRequest(BaseModel):
    url: str
    key: str
    map_style: MapStyle = MapStyle.AERIAL
    culture: str = ""
    tile_protocol: str | None = None


class CreateProviderRequest(BaseModel):
    map_server: MapServerProviderRequest | None = None
    quadkey_service: QuadKeyProviderRequest | None = None


_providers: Dict[str, ImageryProvider] = {}
_provider_lock = asyncio.Lock()


async def register_provider(provider: ImageryProvider, provider_id: str | None = None) -> str:
    provider_id = provider_id or uuid.uuid4().hex
    async with _provider_lock:
        _providers[provider_id] = provider
    return provider_id


async def _lookup_provider(provider_id: str) -> ImageryProvider:
    async with _provider_lock:
        provider = _providers.get(provider_id)
    if provider is None:
        raise HTTPException(status_code=404, detail="Unknown provider")
    return provider


def _provider_summary(provider_id: str, provider: ImageryProvider) -> Dict[str, object]:
    rectangle = provider.rectangle
    return {
        "id": provider_id,
        "url": provider.url,
        "addressing_mode": provider.addressing_mode.value,
        "tile_width": provider.tile_width,
        "tile_height": provider.tile_height,
        "minimum_level": provider.minimum_level,
        "maximum_level": provider.maximum_level,
        "projection": provider.tiling_scheme.projection.value,
        "rectangle": {
            "west": rectangle.west,
            "south": rectangle.south,
            "east": rectangle.east,
            "north": rectangle.north,
        },
        "has_alpha_channel": provider.has_alpha_channel,
        "credit": str(provider.credit) if provider.credit else None,
        "layers": provider.layers,
    }


def _check_tile(provider: ImageryProvider, x: int, y: int, level: int) -> None:
    scheme = provider.tiling_scheme
    if level < 0 or (provider.maximum_level is not None and level > provider.maximum_level):
        raise HTTPException(status_code=400, detail=f"Level {level} is outside the provider's range")
    if not (0 <= x < scheme.number_of_x_tiles_at_level(level)):
        raise HTTPException(status_code=400, detail=f"Tile column {x} is outside level {level}")
    if not (0 <= y < scheme.number_of_y_tiles_at_level(level)):
        raise HTTPException(status_code=400, detail=f"Tile row {y} is outside level {level}")


@app.on_event("startup")
def on_startup() -> None:
    init_db()


@app.post("/providers")
async def create_provider(request: CreateProviderRequest) -> Dict[str, object]:
    if (request.map_server is None) == (request.quadkey_service is None):
        raise HTTPException(
            status_code=400,
            detail="Specify exactly one of map_server or quadkey_service",
        )

    try:
        if request.map_server is not None:
            options = request.map_server
            provider = await ImageryProvider.from_map_server(
                options.url,
                token=options.token,
                use_precached_tiles=options.use_precached_tiles,
                layers=options.layers,
                enable_pick_features=options.enable_pick_features,
            )
        else:
            options = request.quadkey_service
            provider = await ImageryProvider.from_quadkey_service(
                options.url,
                options.key,
                map_style=options.map_style,
                culture=options.culture,
                tile_protocol=options.tile_protocol,
            )
    except ImageryProviderError as exc:
        logger.warning("Provider construction failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    await provider.load_tile_discard_policy()
    provider_id = await register_provider(provider)
    logger.info("Registered provider %s for %s", provider_id, provider.url)
    return _provider_summary(provider_id, provider)


@app.get("/providers/{provider_id}")
async def read_provider(provider_id: str) -> Dict[str, object]:
    provider = await _lookup_provider(provider_id)
    return _provider_summary(provider_id, provider)


@app.get("/providers/{provider_id}/tiles/{level}/{x}/{y}/request")
async def read_tile_request(provider_id: str, level: int, x: int, y: int) -> Dict[str, object]:
    provider = await _lookup_provider(provider_id)
    _check_tile(provider, x, y, level)
    request = provider.build_tile_request(x, y, level)
    return {"url": request.url, "params": request.params, "full_url": request.full_url}


@app.get("/providers/{provider_id}/tiles/{level}/{x}/{y}/credits")
async def read_tile_credits(provider_id: str, level: int, x: int, y: int) -> Dict[str, object]:
    provider = await _lookup_provider(provider_id)
    _check_tile(provider, x, y, level)
    credits = [str(credit) for credit in provider.get_tile_credits(x, y, level)]
    return {"credits": credits}


@app.get("/providers/{provider_id}/tiles/{level}/{x}/{y}")
async def read_tile_image(provider_id: str, level: int, x: int, y: int) -> Response:
    provider = await _lookup_provider(provider_id)
    _check_tile(provider, x, y, level)
    try:
        image = await provider.request_image(x, y, level)
    except TransportFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    if image is None:
        raise HTTPException(status_code=503, detail="Tile request deferred")
    if image is EMPTY_TILE:
        return Response(status_code=204)
    return Response(content=image, media_type="application/octet-stream")


@app.get("/providers/{provider_id}/pick")
async def pick_features(
    provider_id: str,
    x: int = Query(...),
    y: int = Query(...),
    level: int = Query(...),
    longitude: float = Query(..., ge=-180.0, le=180.0),
    latitude: float = Query(..., ge=-90.0, le=90.0),
) -> Dict[str, object]:
    provider = await _lookup_provider(provider_id)
    _check_tile(provider, x, y, level)
    try:
        results = await provider.pick_features(x, y, level, longitude, latitude)
    except ImageryProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    if results is None:
        raise HTTPException(status_code=404, detail="Feature picking is disabled for this provider")

    return {
        "features": [
            {
                "name": result.name,
                "properties": result.properties,
                "description": result.description,
                "position": (
                    {
                        "longitude": result.position.longitude,
                        "latitude": result.position.latitude,
                        "height": result.position.height,
                    }
                    if result.position
                    else None
                ),
            }
            for result in results
        ]
    }


@app.get("/usage")
def read_usage(session: Session = Depends(get_session)) -> Dict[str, object]:
    stats: List[ApiUsageStat] = usage_snapshot(session)
    return {
        "usage": [
            {
                "provider": stat.provider,
                "request_count": stat.request_count,
                "last_used_at": stat.last_used_at,
            }
            for stat in stats
        ]
    }
