from __future__ import annotations

import io
import logging
from typing import Sequence, Tuple

import httpx
from PIL import Image

from ..errors import ImageryProviderError
from .transport import EMPTY_TILE, TileRequest, fetch_image, request_timeout
from .usage import record_request

logger = logging.getLogger(__name__)

Pixel = Tuple[int, int, int, int]


class DiscardEmptyTilePolicy:
    """Discard exactly the tiles a server answered with a zero-length body."""

    def is_ready(self) -> bool:
        return True

    def should_discard(self, image: object) -> bool:
        return image is EMPTY_TILE


class DiscardMissingTilePolicy:
    """Discard tiles that look like the server's "missing tile" placeholder.

    The placeholder is fetched once from ``missing_image_url`` and the colours
    at ``pixels_to_check`` are remembered. A tile matching all of them is
    discarded. When every sampled pixel of the placeholder is fully transparent
    and ``disable_check_if_all_pixels_are_transparent`` is set, nothing is ever
    discarded.
    """

    def __init__(
        self,
        *,
        missing_image_url: str,
        pixels_to_check: Sequence[Tuple[int, int]],
        disable_check_if_all_pixels_are_transparent: bool = False,
    ) -> None:
        self.missing_image_url = missing_image_url
        self.pixels_to_check: Tuple[Tuple[int, int], ...] = tuple(pixels_to_check)
        self.disable_check_if_all_pixels_are_transparent = (
            disable_check_if_all_pixels_are_transparent
        )
        self._missing_pixels: Tuple[Pixel, ...] | None = None
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    @property
    def missing_image_pixels(self) -> Tuple[Pixel, ...] | None:
        return self._missing_pixels

    async def load(self, client: httpx.AsyncClient | None = None) -> None:
        if self._ready:
            return
        if client is None:
            async with httpx.AsyncClient(timeout=request_timeout()) as owned_client:
                await self._load_with(owned_client)
        else:
            await self._load_with(client)

    async def _load_with(self, client: httpx.AsyncClient) -> None:
        try:
            content = await fetch_image(client, TileRequest(self.missing_image_url))
        except ImageryProviderError as exc:
            logger.warning(
                "Missing tile placeholder %s could not be fetched; discarding disabled: %s",
                self.missing_image_url,
                exc,
            )
            self._missing_pixels = None
            self._ready = True
            return

        record_request(self.missing_image_url)
        if content is EMPTY_TILE:
            self._missing_pixels = None
            self._ready = True
            return

        try:
            pixels = self._sample(content)
        except (OSError, ValueError, IndexError) as exc:
            logger.warning(
                "Missing tile placeholder %s could not be decoded; discarding disabled: %s",
                self.missing_image_url,
                exc,
            )
            pixels = None

        if pixels is not None and self.disable_check_if_all_pixels_are_transparent:
            if all(pixel[3] == 0 for pixel in pixels):
                logger.debug("Missing tile placeholder is fully transparent; discarding disabled.")
                pixels = None

        self._missing_pixels = pixels
        self._ready = True

    def _sample(self, image: bytes | Image.Image) -> Tuple[Pixel, ...]:
        if isinstance(image, (bytes, bytearray)):
            with Image.open(io.BytesIO(image)) as opened:
                rgba = opened.convert("RGBA")
        else:
            rgba = image.convert("RGBA")
        width, height = rgba.size
        sampled = []
        for x, y in self.pixels_to_check:
            if x >= width or y >= height:
                raise IndexError(f"pixel ({x}, {y}) outside a {width}x{height} tile")
            sampled.append(rgba.getpixel((x, y)))
        return tuple(sampled)

    def should_discard(self, image: bytes | Image.Image | object) -> bool:
        if not self._ready:
            raise RuntimeError("should_discard must not be called before the discard policy is ready.")
        # A zero-length response means the server has no tile here.
        if image is EMPTY_TILE:
            return True
        if self._missing_pixels is None:
            return False
        try:
            pixels = self._sample(image)
        except (OSError, ValueError, IndexError, AttributeError, TypeError):
            return False
        return pixels == self._missing_pixels
