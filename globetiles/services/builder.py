from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Tuple

from ..geometry import Rectangle
from ..tiling import TilingScheme
from .addressing import build_request
from .config import (
    Addressing,
    AddressingMode,
    AttributionEntry,
    Credit,
    DynamicExport,
    PrecachedTiles,
    ProviderConfig,
    QuadKeyTiles,
)
from .discard import DiscardMissingTilePolicy
from .transport import Endpoint

logger = logging.getLogger(__name__)

DEFAULT_TILE_SIZE = 256
MISSING_TILE_PIXELS: Tuple[Tuple[int, int], ...] = (
    (0, 0),
    (200, 20),
    (20, 200),
    (80, 110),
    (160, 130),
)


@dataclass
class ProviderBuilder:
    """Staging record for provider settings until the single :meth:`commit`.

    Caller defaults are written first; metadata resolution then overrides
    whatever the server describes.
    """

    endpoint: Endpoint
    addressing_mode: AddressingMode = AddressingMode.PRECACHED
    tile_width: int = DEFAULT_TILE_SIZE
    tile_height: int = DEFAULT_TILE_SIZE
    tiling_scheme: TilingScheme = field(default_factory=TilingScheme.geographic)
    rectangle: Rectangle | None = None
    maximum_level: int | None = None
    credit: Credit | None = None
    discard_policy: Any = None
    layers: str | None = None
    image_format: str = "png32"
    url_template: str | None = None
    subdomains: Tuple[str, ...] = ()
    culture: str = ""
    attribution_list: Tuple[AttributionEntry, ...] = ()
    _committed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if isinstance(self.credit, str):
            self.credit = Credit(self.credit)
        if self.rectangle is None:
            self.rectangle = self.tiling_scheme.rectangle

    @property
    def committed(self) -> bool:
        return self._committed

    def _addressing(self) -> Addressing:
        if self.addressing_mode is AddressingMode.PRECACHED:
            return PrecachedTiles()
        if self.addressing_mode is AddressingMode.DYNAMIC:
            return DynamicExport(image_format=self.image_format)
        if not self.url_template:
            raise ValueError("quadkey addressing requires an image url template")
        return QuadKeyTiles(
            url_template=self.url_template,
            subdomains=tuple(self.subdomains),
            culture=self.culture,
        )

    def commit(self) -> ProviderConfig:
        """Freeze the staged values into a :class:`ProviderConfig`.

        Must be called exactly once. For a pre-rendered pyramid without a
        caller supplied discard policy, a policy recognizing the server's
        "missing tile" placeholder is installed.
        """

        if self._committed:
            raise RuntimeError("ProviderBuilder.commit() may only be called once.")

        config = ProviderConfig(
            addressing=self._addressing(),
            endpoint=self.endpoint,
            tile_width=self.tile_width,
            tile_height=self.tile_height,
            tiling_scheme=self.tiling_scheme,
            rectangle=self.rectangle or self.tiling_scheme.rectangle,
            maximum_level=self.maximum_level,
            credit=self.credit,
            discard_policy=self.discard_policy,
            layers=self.layers,
            attribution_list=tuple(self.attribution_list),
        )

        if config.addressing_mode is AddressingMode.PRECACHED and config.discard_policy is None:
            level = config.maximum_level if config.maximum_level is not None else 0
            missing_tile = build_request(config, 0, 0, level)
            config = replace(
                config,
                discard_policy=DiscardMissingTilePolicy(
                    missing_image_url=missing_tile.full_url,
                    pixels_to_check=MISSING_TILE_PIXELS,
                    disable_check_if_all_pixels_are_transparent=True,
                ),
            )

        self._committed = True
        logger.info(
            "Committed %s provider for %s (%sx%s tiles, maximum level %s)",
            config.addressing_mode.value,
            config.endpoint.url,
            config.tile_width,
            config.tile_height,
            config.maximum_level,
        )
        return config
