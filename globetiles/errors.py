"""Failure taxonomy and the error event channel used by imagery providers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, List

import httpx

logger = logging.getLogger(__name__)


class ImageryProviderError(RuntimeError):
    """Base class for failures raised while configuring or querying a provider."""


class UnsupportedSpatialReference(ImageryProviderError):
    """Raised when a server reports a spatial reference outside the supported pair."""

    def __init__(self, message: str, wkid: object | None = None) -> None:
        super().__init__(message)
        self.wkid = wkid


class MalformedMetadata(ImageryProviderError):
    """Raised when a capability document is missing an expected section."""


class TransportFailure(ImageryProviderError):
    """Raised when a metadata, identify or image endpoint cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


_STATUS_DETAILS = {
    401: "unauthorized (check the token or key)",
    403: "forbidden",
    404: "not found",
    429: "too many requests",
}


@dataclass
class ProviderErrorInfo:
    """Payload delivered to error event listeners."""

    message: str
    error: BaseException
    endpoint: str
    times_retried: int = 0


Listener = Callable[[ProviderErrorInfo], None]


class ErrorEvent:
    """Minimal synchronous event that downstream code subscribes to."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            self.remove_listener(listener)

        return _remove

    def remove_listener(self, listener: Listener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    @property
    def number_of_listeners(self) -> int:
        return len(self._listeners)

    def raise_event(self, info: ProviderErrorInfo) -> None:
        for listener in list(self._listeners):
            listener(info)


def short_error_detail(detail: str) -> str:
    detail = detail.strip()
    if len(detail) > 160:
        return f"{detail[:157]}..."
    return detail or "(no detail)"


def http_error_detail(response: httpx.Response) -> str:
    """Summarize an error response from a map server endpoint."""

    status = response.status_code
    known = _STATUS_DETAILS.get(status)

    content_type = response.headers.get("Content-Type", "").lower()
    body_detail = ""
    if "json" in content_type:
        try:
            payload = response.json()
        except (ValueError, json.JSONDecodeError):
            body_detail = response.text
        else:
            body_detail = _json_error_message(payload)
    elif "image" not in content_type:
        body_detail = response.text

    parts = [str(status)]
    if known:
        parts.append(known)
    if body_detail.strip():
        parts.append(short_error_detail(body_detail))
    return " ".join(parts)


def _json_error_message(payload: object) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            payload = error
        for key in ("message", "error", "detail", "description", "error_description"):
            value = payload.get(key) if isinstance(payload, dict) else None
            if isinstance(value, str) and value.strip():
                return value
    return str(payload)


def classify_failure(exc: BaseException) -> ImageryProviderError:
    """Map a low level exception onto the provider failure taxonomy."""

    if isinstance(exc, ImageryProviderError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return TransportFailure(http_error_detail(exc.response), exc.response.status_code)
    if isinstance(exc, httpx.RequestError):
        return TransportFailure(short_error_detail(str(exc) or exc.__class__.__name__))
    if isinstance(exc, (ValueError, KeyError, TypeError, IndexError, AttributeError)):
        return MalformedMetadata(f"malformed response ({exc.__class__.__name__}: {exc})")
    return ImageryProviderError(str(exc))


def report_error(
    event: ErrorEvent | None, endpoint: str, exc: BaseException
) -> ImageryProviderError:
    """Classify ``exc``, announce it on ``event`` and return the error to raise."""

    classified = classify_failure(exc)
    message = f"An error occurred while accessing {endpoint}"
    detail = str(classified)
    if detail:
        message += f": {detail}"

    if isinstance(classified, TransportFailure):
        error: ImageryProviderError = TransportFailure(message, classified.status_code)
    elif isinstance(classified, UnsupportedSpatialReference):
        error = UnsupportedSpatialReference(message, classified.wkid)
    else:
        error = type(classified)(message)

    info = ProviderErrorInfo(message=message, error=error, endpoint=endpoint)
    if event is not None and event.number_of_listeners:
        event.raise_event(info)
    else:
        logger.error("%s", message)
    return error
