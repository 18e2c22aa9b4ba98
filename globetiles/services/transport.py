"""Thin helpers around ``httpx`` for endpoint derivation and JSON/JSONP/image fetches."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

import httpx

from ..errors import TransportFailure, http_error_detail, short_error_detail
from ..settings import request_timeout_seconds

logger = logging.getLogger(__name__)

_JSONP_PATTERN = re.compile(r"^\s*[\w$.]+\s*\((?P<body>.*)\)\s*;?\s*$", re.DOTALL)


class _EmptyTile:
    """Marker for a zero-length tile response, meaning "no tile here"."""

    _instance: "_EmptyTile | None" = None

    def __new__(cls) -> "_EmptyTile":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EMPTY_TILE"


EMPTY_TILE = _EmptyTile()


def request_timeout() -> httpx.Timeout:
    return httpx.Timeout(request_timeout_seconds())


@dataclass(frozen=True)
class Endpoint:
    """A server base URL (always ending in ``/``) plus query parameters sent with every request."""

    url: str
    params: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def create(cls, url: str, **params: str | None) -> "Endpoint":
        """Split ``url`` into a base path and query parameters.

        Parameters already in ``url`` (``...MapServer?token=abc``) are kept,
        explicit keyword parameters take precedence.
        """

        merged: Dict[str, str] = dict(httpx.URL(url).params.items())
        merged.update({key: value for key, value in params.items() if value is not None})

        base = url.split("#", 1)[0].split("?", 1)[0]
        if not base.endswith("/"):
            base = f"{base}/"
        return cls(base, merged)

    def derive(self, path: str = "", params: Mapping[str, Any] | None = None) -> "TileRequest":
        if re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", path):
            url = path
        else:
            url = f"{self.url}{path.lstrip('/')}"
        merged: Dict[str, str] = dict(self.params)
        for key, value in (params or {}).items():
            merged[key] = _format_param(value)
        return TileRequest(url, merged)

    @property
    def cache_key(self) -> str:
        return str(httpx.URL(self.url, params=sorted(self.params.items())))


@dataclass(frozen=True)
class TileRequest:
    """Fully formed request descriptor: target URL and query parameters."""

    url: str
    params: Dict[str, str] = field(default_factory=dict)

    @property
    def full_url(self) -> str:
        if not self.params:
            return self.url
        return str(httpx.URL(self.url).copy_merge_params(self.params))

    @property
    def cache_key(self) -> str:
        return str(httpx.URL(self.url).copy_merge_params(sorted(self.params.items())))


def _format_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def expand_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``{name}`` placeholders, leaving unknown placeholders untouched."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        return values.get(name, match.group(0))

    return re.sub(r"\{(\w+)\}", _replace, template)


def endpoint_host(url: str) -> str:
    try:
        host = httpx.URL(url).host
    except httpx.InvalidURL:
        return url
    return host or url


def unwrap_jsonp(text: str) -> Any:
    """Decode a JSONP (``callback({...})``) or plain JSON body."""

    match = _JSONP_PATTERN.match(text)
    if match and not text.lstrip().startswith(("{", "[")):
        return json.loads(match.group("body"))
    return json.loads(text)


async def fetch_json(client: httpx.AsyncClient, request: TileRequest) -> Any:
    response = await _get(client, request)
    return response.json()


async def fetch_jsonp(
    client: httpx.AsyncClient,
    request: TileRequest,
    callback_parameter: str = "callback",
) -> Any:
    """Fetch a JSONP document, accepting servers that answer with plain JSON."""

    params = dict(request.params)
    params[callback_parameter] = "loadJsonp"
    response = await _get(client, TileRequest(request.url, params))
    return unwrap_jsonp(response.text)


async def fetch_image(client: httpx.AsyncClient, request: TileRequest) -> bytes | _EmptyTile:
    """Fetch tile bytes; a zero-length body is reported as ``EMPTY_TILE``."""

    response = await _get(client, request)
    content = response.content or b""
    if not content:
        return EMPTY_TILE
    if not is_image_response(response):
        content_type = response.headers.get("Content-Type", "unknown")
        raise TransportFailure(
            f"unexpected payload ({content_type}): {short_error_detail(response.text)}",
            response.status_code,
        )
    return content


async def _get(client: httpx.AsyncClient, request: TileRequest) -> httpx.Response:
    try:
        response = await client.get(request.url, params=request.params or None)
    except httpx.RequestError as exc:
        raise TransportFailure(short_error_detail(str(exc) or exc.__class__.__name__)) from exc

    if response.status_code >= 400:
        raise TransportFailure(http_error_detail(response), response.status_code)
    return response


def is_image_response(response: httpx.Response) -> bool:
    content_type = response.headers.get("Content-Type", "")
    return "image" in content_type.lower()
