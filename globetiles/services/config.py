"""Immutable provider configuration and the addressing variants it carries."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Tuple, Union

from ..geometry import Rectangle
from ..tiling import TilingScheme
from .transport import Endpoint


class AddressingMode(str, Enum):
    """How tile images are requested from a server."""

    PRECACHED = "precached"
    DYNAMIC = "dynamic"
    QUADKEY = "quadkey"


@dataclass(frozen=True)
class PrecachedTiles:
    """Pre-rendered pyramid addressed as ``tile/{level}/{y}/{x}``."""

    mode: ClassVar[AddressingMode] = AddressingMode.PRECACHED
    has_alpha_channel: ClassVar[bool] = True


@dataclass(frozen=True)
class DynamicExport:
    """Server renders a bounding-box export for every tile."""

    mode: ClassVar[AddressingMode] = AddressingMode.DYNAMIC
    has_alpha_channel: ClassVar[bool] = True

    image_format: str = "png32"


@dataclass(frozen=True)
class QuadKeyTiles:
    """Pre-rendered tiles addressed by a quadkey through a URL template."""

    mode: ClassVar[AddressingMode] = AddressingMode.QUADKEY
    has_alpha_channel: ClassVar[bool] = False

    url_template: str
    subdomains: Tuple[str, ...]
    culture: str = ""


Addressing = Union[PrecachedTiles, DynamicExport, QuadKeyTiles]


@dataclass(frozen=True)
class Credit:
    """Attribution text shown for imagery."""

    html: str
    show_on_screen: bool = False

    def __str__(self) -> str:
        return self.html


@dataclass(frozen=True)
class CoverageArea:
    """Where and at which (1-based) zoom levels an attribution applies."""

    zoom_min: int
    zoom_max: int
    bbox: Rectangle

    def __post_init__(self) -> None:
        if self.zoom_min > self.zoom_max:
            raise ValueError(
                f"coverage zoom range is inverted ({self.zoom_min} > {self.zoom_max})"
            )


@dataclass(frozen=True)
class AttributionEntry:
    credit: Credit
    coverage_areas: Tuple[CoverageArea, ...] = ()


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration committed once per provider and read-only afterwards."""

    addressing: Addressing
    endpoint: Endpoint
    tile_width: int
    tile_height: int
    tiling_scheme: TilingScheme
    rectangle: Rectangle
    maximum_level: int | None = None
    credit: Credit | None = None
    discard_policy: Any = None
    layers: str | None = None
    attribution_list: Tuple[AttributionEntry, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.maximum_level is not None and self.maximum_level < 0:
            raise ValueError(f"maximum_level must be >= 0, got {self.maximum_level}")

    @property
    def addressing_mode(self) -> AddressingMode:
        return self.addressing.mode

    @property
    def has_alpha_channel(self) -> bool:
        return self.addressing.has_alpha_channel
