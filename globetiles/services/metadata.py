"""Discover a server's tiling capabilities and stage them on a ``ProviderBuilder``.

Capability documents are cached process-wide by endpoint so providers built
from the same source share a single fetch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping

import httpx

from ..errors import ErrorEvent, MalformedMetadata, report_error
from ..geometry import Rectangle
from ..projection import (
    MERCATOR_MAXIMUM_EXTENT,
    Projection,
    native_rectangle_to_geographic,
    projection_for_wkid,
)
from ..tiling import TilingScheme
from .attribution import parse_attribution_list
from .builder import ProviderBuilder
from .config import AddressingMode, Credit
from .transport import TileRequest, fetch_jsonp, request_timeout
from .usage import record_request

logger = logging.getLogger(__name__)

MAP_SERVER_CALLBACK_PARAMETER = "callback"
QUADKEY_CALLBACK_PARAMETER = "jsonp"

Document = Dict[str, Any]


class MetadataCache:
    """Capability documents keyed by normalized endpoint.

    Successful documents are kept for the life of the process. Concurrent
    lookups of one key share a single in-flight fetch; a failed fetch is
    forgotten so that a later call can try again.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, Document] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def clear(self) -> None:
        self._documents.clear()
        self._pending.clear()

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Document]]) -> Document:
        document = self._documents.get(key)
        if document is not None:
            logger.debug("Metadata cache hit for %s", key)
            return document

        task = self._pending.get(key)
        if task is None or task.get_loop() is not asyncio.get_running_loop():
            task = asyncio.ensure_future(fetch())
            self._pending[key] = task
            task.add_done_callback(lambda done: self._settle(key, done))

        # Cancelling one caller must not cancel the fetch other callers share.
        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if task.cancelled() or task.exception() is not None:
            return
        self._documents[key] = task.result()


_metadata_cache: MetadataCache | None = None


def get_metadata_cache() -> MetadataCache:
    global _metadata_cache
    if _metadata_cache is None:
        _metadata_cache = MetadataCache()
    return _metadata_cache


def clear_metadata_cache() -> None:
    if _metadata_cache is not None:
        _metadata_cache.clear()


async def fetch_metadata(
    request: TileRequest,
    *,
    callback_parameter: str = MAP_SERVER_CALLBACK_PARAMETER,
    client: httpx.AsyncClient | None = None,
) -> Document:
    """Fetch (or reuse) the capability document behind ``request``."""

    async def _fetch() -> Document:
        logger.info("Requesting metadata from %s", request.url)
        if client is not None:
            data = await fetch_jsonp(client, request, callback_parameter)
        else:
            async with httpx.AsyncClient(timeout=request_timeout()) as owned_client:
                data = await fetch_jsonp(owned_client, request, callback_parameter)
        record_request(request.url)
        if not isinstance(data, dict):
            raise MalformedMetadata("metadata response is not a JSON object")
        return data

    return await get_metadata_cache().get_or_fetch(request.cache_key, _fetch)


def _tiling_scheme_for(projection: Projection) -> TilingScheme:
    if projection is Projection.WEB_MERCATOR:
        return TilingScheme.web_mercator()
    return TilingScheme.geographic()


def apply_map_server_metadata(data: Mapping[str, Any], builder: ProviderBuilder) -> None:
    """Stage a map server's ``?f=json`` description on ``builder``."""

    tile_info = data.get("tileInfo")
    if tile_info is None:
        builder.addressing_mode = AddressingMode.DYNAMIC
    else:
        builder.tile_width = int(tile_info["cols"])
        builder.tile_height = int(tile_info["rows"])

        wkid = (tile_info.get("spatialReference") or {}).get("wkid")
        builder.tiling_scheme = _tiling_scheme_for(projection_for_wkid(wkid, "Tile"))
        builder.maximum_level = len(tile_info["lods"]) - 1

        full_extent = data.get("fullExtent")
        if full_extent is not None:
            extent_wkid = (full_extent.get("spatialReference") or {}).get("wkid")
            if extent_wkid is not None:
                builder.rectangle = _extent_rectangle(full_extent, extent_wkid)
        else:
            builder.rectangle = builder.tiling_scheme.rectangle

        builder.addressing_mode = AddressingMode.PRECACHED

    copyright_text = data.get("copyrightText")
    if copyright_text:
        builder.credit = Credit(str(copyright_text))


def _extent_rectangle(extent: Mapping[str, Any], wkid: object) -> Rectangle:
    projection = projection_for_wkid(wkid, "fullExtent")
    native = Rectangle(
        float(extent["xmin"]),
        float(extent["ymin"]),
        float(extent["xmax"]),
        float(extent["ymax"]),
    )
    if projection is Projection.WEB_MERCATOR:
        native = Rectangle(
            max(native.west, -MERCATOR_MAXIMUM_EXTENT),
            max(native.south, -MERCATOR_MAXIMUM_EXTENT),
            min(native.east, MERCATOR_MAXIMUM_EXTENT),
            min(native.north, MERCATOR_MAXIMUM_EXTENT),
        )
    return native_rectangle_to_geographic(projection, native)


def apply_quadkey_metadata(data: Mapping[str, Any], builder: ProviderBuilder) -> None:
    """Stage a quadkey imagery service's metadata on ``builder``."""

    resource_sets = data.get("resourceSets")
    if not isinstance(resource_sets, list) or len(resource_sets) != 1:
        raise MalformedMetadata("metadata does not specify one resource in resourceSets")

    resources = resource_sets[0].get("resources") or []
    if not resources:
        raise MalformedMetadata("metadata resource set contains no resources")
    resource = resources[0]

    builder.addressing_mode = AddressingMode.QUADKEY
    builder.tile_width = int(resource["imageWidth"])
    builder.tile_height = int(resource["imageHeight"])
    builder.maximum_level = int(resource["zoomMax"]) - 1
    builder.url_template = str(resource["imageUrl"])
    builder.subdomains = tuple(resource.get("imageUrlSubdomains") or ())
    builder.attribution_list = parse_attribution_list(resource.get("imageryProviders"))


async def resolve_metadata(
    request: TileRequest,
    builder: ProviderBuilder,
    apply: Callable[[Mapping[str, Any], ProviderBuilder], None],
    *,
    callback_parameter: str = MAP_SERVER_CALLBACK_PARAMETER,
    error_event: ErrorEvent | None = None,
    client: httpx.AsyncClient | None = None,
) -> ProviderBuilder:
    """Fetch the capability document and stage it on ``builder``.

    Any failure is reported on ``error_event`` and raised; the builder must
    then be discarded.
    """

    try:
        data = await fetch_metadata(request, callback_parameter=callback_parameter, client=client)
        apply(data, builder)
    except Exception as exc:
        raise report_error(error_event, request.url, exc) from exc
    return builder
