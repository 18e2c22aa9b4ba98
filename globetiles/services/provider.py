"""Imagery provider facade used by the rendering engine's imagery layers.

A provider is constructed in two phases: a ``ProviderBuilder`` is seeded with
the caller's options, optionally filled in from the server's metadata, and
committed exactly once. Afterwards everything reads the immutable
``ProviderConfig``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, List

import httpx

from ..errors import ErrorEvent, ImageryProviderError
from ..geometry import Rectangle
from ..settings import default_tile_protocol
from ..tiling import TilingScheme
from .addressing import build_request
from .attribution import AttributionIndex
from .builder import DEFAULT_TILE_SIZE, ProviderBuilder
from .config import AddressingMode, Credit, ProviderConfig, QuadKeyTiles
from .discard import DiscardEmptyTilePolicy
from .metadata import (
    QUADKEY_CALLBACK_PARAMETER,
    apply_map_server_metadata,
    apply_quadkey_metadata,
    resolve_metadata,
)
from .picking import PickResult, pick
from .transport import EMPTY_TILE, Endpoint, TileRequest, fetch_image, request_timeout
from .usage import record_request

logger = logging.getLogger(__name__)

QUADKEY_SERVICE_CREDIT = "Bing Imagery"


class MapStyle(str, Enum):
    """Imagery sets offered by the quadkey imagery service."""

    AERIAL = "Aerial"
    AERIAL_WITH_LABELS = "AerialWithLabels"
    AERIAL_WITH_LABELS_ON_DEMAND = "AerialWithLabelsOnDemand"
    ROAD = "Road"
    ROAD_ON_DEMAND = "RoadOnDemand"
    CANVAS_DARK = "CanvasDark"
    CANVAS_LIGHT = "CanvasLight"
    CANVAS_GRAY = "CanvasGray"
    ORDNANCE_SURVEY = "OrdnanceSurvey"
    COLLINS_BART = "CollinsBart"


def _normalize_tile_protocol(tile_protocol: str | None) -> str:
    if tile_protocol is None:
        return default_tile_protocol()
    # A trailing ':' is accepted for compatibility with "https:" style values.
    if tile_protocol.endswith(":"):
        tile_protocol = tile_protocol[:-1]
    return tile_protocol


class ImageryProvider:
    """Tile imagery source backed by a committed :class:`ProviderConfig`."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        enable_pick_features: bool = True,
        error_event: ErrorEvent | None = None,
        map_style: MapStyle | None = None,
        key: str | None = None,
    ) -> None:
        self._config = config
        self._attribution = AttributionIndex(config.attribution_list)
        self._error_event = error_event or ErrorEvent()
        self._map_style = map_style
        self._key = key
        self.enable_pick_features = enable_pick_features

    # Construction

    @classmethod
    def from_config(cls, builder: ProviderBuilder, **kwargs: Any) -> "ImageryProvider":
        """Commit caller supplied settings without consulting the server."""

        return cls(builder.commit(), **kwargs)

    @classmethod
    async def from_map_server(
        cls,
        url: str,
        *,
        token: str | None = None,
        use_precached_tiles: bool = True,
        tiling_scheme: TilingScheme | None = None,
        rectangle: Rectangle | None = None,
        tile_width: int = DEFAULT_TILE_SIZE,
        tile_height: int = DEFAULT_TILE_SIZE,
        maximum_level: int | None = None,
        layers: str | None = None,
        credit: Credit | str | None = None,
        discard_policy: Any = None,
        enable_pick_features: bool = True,
        error_event: ErrorEvent | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "ImageryProvider":
        """Build a provider for a map server, reading its metadata when tiles may be pre-rendered.

        With ``use_precached_tiles=False`` no metadata is requested and every
        tile is rendered through the export endpoint.
        """

        endpoint = Endpoint.create(url, token=token)
        builder = ProviderBuilder(
            endpoint=endpoint,
            addressing_mode=(
                AddressingMode.PRECACHED if use_precached_tiles else AddressingMode.DYNAMIC
            ),
            tile_width=tile_width,
            tile_height=tile_height,
            tiling_scheme=tiling_scheme or TilingScheme.geographic(),
            rectangle=rectangle,
            maximum_level=maximum_level,
            credit=credit,
            discard_policy=discard_policy,
            layers=layers,
        )
        error_event = error_event or ErrorEvent()

        if use_precached_tiles:
            await resolve_metadata(
                endpoint.derive("", {"f": "json"}),
                builder,
                apply_map_server_metadata,
                error_event=error_event,
                client=client,
            )

        return cls(
            builder.commit(),
            enable_pick_features=enable_pick_features,
            error_event=error_event,
        )

    @classmethod
    async def from_quadkey_service(
        cls,
        url: str,
        key: str,
        *,
        map_style: MapStyle = MapStyle.AERIAL,
        culture: str = "",
        tile_protocol: str | None = None,
        discard_policy: Any = None,
        error_event: ErrorEvent | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "ImageryProvider":
        """Build a provider for a quadkey-addressed imagery service (Bing Maps style)."""

        if not key:
            raise ValueError("A key is required for the quadkey imagery service.")

        map_style = MapStyle(map_style)
        endpoint = Endpoint.create(url)
        metadata_request = endpoint.derive(
            f"REST/v1/Imagery/Metadata/{map_style.value}",
            {
                "incl": "ImageryProviders",
                "key": key,
                "uriScheme": _normalize_tile_protocol(tile_protocol),
            },
        )
        builder = ProviderBuilder(
            endpoint=endpoint,
            addressing_mode=AddressingMode.QUADKEY,
            tiling_scheme=TilingScheme.web_mercator(tiles_x=2, tiles_y=2),
            credit=Credit(QUADKEY_SERVICE_CREDIT, show_on_screen=True),
            discard_policy=discard_policy or DiscardEmptyTilePolicy(),
            culture=culture,
        )
        error_event = error_event or ErrorEvent()

        await resolve_metadata(
            metadata_request,
            builder,
            apply_quadkey_metadata,
            callback_parameter=QUADKEY_CALLBACK_PARAMETER,
            error_event=error_event,
            client=client,
        )

        return cls(
            builder.commit(),
            enable_pick_features=False,
            error_event=error_event,
            map_style=map_style,
            key=key,
        )

    # Read-only accessors

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def url(self) -> str:
        return self._config.endpoint.url

    @property
    def token(self) -> str | None:
        return self._config.endpoint.params.get("token")

    @property
    def key(self) -> str | None:
        return self._key

    @property
    def map_style(self) -> MapStyle | None:
        return self._map_style

    @property
    def culture(self) -> str:
        addressing = self._config.addressing
        return addressing.culture if isinstance(addressing, QuadKeyTiles) else ""

    @property
    def tile_width(self) -> int:
        return self._config.tile_width

    @property
    def tile_height(self) -> int:
        return self._config.tile_height

    @property
    def minimum_level(self) -> int:
        return 0

    @property
    def maximum_level(self) -> int | None:
        return self._config.maximum_level

    @property
    def tiling_scheme(self) -> TilingScheme:
        return self._config.tiling_scheme

    @property
    def rectangle(self) -> Rectangle:
        return self._config.rectangle

    @property
    def credit(self) -> Credit | None:
        return self._config.credit

    @property
    def tile_discard_policy(self) -> Any:
        """Policy deciding which fetched tiles to drop.

        The default missing-tile policy of a pre-rendered pyramid is not ready
        until :meth:`load_tile_discard_policy` has been awaited.
        """

        return self._config.discard_policy

    async def load_tile_discard_policy(self, *, client: httpx.AsyncClient | None = None) -> Any:
        """Fetch whatever the discard policy needs before it can judge tiles."""

        policy = self._config.discard_policy
        load = getattr(policy, "load", None)
        if load is not None:
            await load(client)
        return policy

    @property
    def has_alpha_channel(self) -> bool:
        return self._config.has_alpha_channel

    @property
    def addressing_mode(self) -> AddressingMode:
        return self._config.addressing_mode

    @property
    def using_precached_tiles(self) -> bool:
        return self._config.addressing_mode is AddressingMode.PRECACHED

    @property
    def layers(self) -> str | None:
        return self._config.layers

    @property
    def error_event(self) -> ErrorEvent:
        return self._error_event

    # Tile operations

    def build_tile_request(self, x: int, y: int, level: int) -> TileRequest:
        return build_request(self._config, x, y, level)

    def get_tile_credits(self, x: int, y: int, level: int) -> List[Credit]:
        rectangle = self._config.tiling_scheme.tile_xy_to_rectangle(x, y, level)
        return self._attribution.credits_for(rectangle, level)

    async def request_image(
        self,
        x: int,
        y: int,
        level: int,
        *,
        can_request: Callable[[TileRequest], bool] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> bytes | object | None:
        """Fetch a tile image.

        Returns the encoded image bytes, ``EMPTY_TILE`` when the server sent a
        zero-length body, or ``None`` when ``can_request`` deferred the request.
        """

        request = self.build_tile_request(x, y, level)
        if can_request is not None and not can_request(request):
            logger.debug("Deferred tile %s/%s/%s", level, x, y)
            return None

        try:
            if client is not None:
                image = await fetch_image(client, request)
            else:
                async with httpx.AsyncClient(timeout=request_timeout()) as owned_client:
                    image = await fetch_image(owned_client, request)
        except ImageryProviderError as exc:
            logger.warning("Tile %s/%s/%s request to %s failed: %s", level, x, y, request.url, exc)
            raise

        record_request(request.url)
        if image is EMPTY_TILE:
            logger.debug("Tile %s/%s/%s is empty", level, x, y)
        return image

    async def pick_features(
        self,
        x: int,
        y: int,
        level: int,
        longitude: float,
        latitude: float,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> List[PickResult] | None:
        """Identify features at a geographic point; ``None`` when picking is unavailable."""

        enabled = self.enable_pick_features and not isinstance(self._config.addressing, QuadKeyTiles)
        return await pick(
            self._config,
            x,
            y,
            level,
            longitude,
            latitude,
            enabled=enabled,
            client=client,
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(url='{self.url}', "
            f"mode={self.addressing_mode.value}, tile_size={self.tile_width}x{self.tile_height})"
        )
