import json
import os
from typing import Any, Callable, Dict, List

# Request counters live in memory for the test session.
os.environ.setdefault("GLOBETILES_DATABASE_URL", "sqlite://")

import httpx  # noqa: E402
import pytest  # noqa: E402

from globetiles.services import metadata  # noqa: E402


class DummyResponse:
    def __init__(
        self,
        url: str,
        params: dict | None,
        *,
        status_code: int = 200,
        content: bytes = b"",
        content_type: str = "application/json",
    ):
        self.url = url
        self.params = params or {}
        self.status_code = status_code
        self.content = content
        self.headers = {"Content-Type": content_type}

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text)


class MockHttp:
    """Routes mocked ``httpx.AsyncClient.get`` calls by URL substring."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self._routes: List[tuple[str, Callable[[str, dict], DummyResponse]]] = []

    def add(
        self,
        fragment: str,
        *,
        json_body: Any = None,
        text: str | None = None,
        content: bytes | None = None,
        status_code: int = 200,
        content_type: str | None = None,
    ) -> None:
        if json_body is not None:
            body = json.dumps(json_body).encode("utf-8")
            content_type = content_type or "application/json"
        elif text is not None:
            body = text.encode("utf-8")
            content_type = content_type or "text/plain"
        else:
            body = content or b""
            content_type = content_type or "image/png"

        def _respond(url: str, params: dict) -> DummyResponse:
            return DummyResponse(
                url, params, status_code=status_code, content=body, content_type=content_type
            )

        # Newer routes win so a test can replace an earlier answer.
        self._routes.insert(0, (fragment, _respond))

    def client_class(self):
        mock = self

        class MockAsyncClient:
            def __init__(self, *args, **kwargs):
                pass

            async def __aenter__(self):
                return self

            async def __aexit__(self, exc_type, exc, tb):
                return None

            async def get(self, url: str, params=None, headers=None):
                call = {"url": url, "params": dict(params or {}), "headers": headers or {}}
                mock.calls.append(call)
                for fragment, respond in mock._routes:
                    if fragment in url:
                        return respond(url, call["params"])
                raise httpx.ConnectError(f"no route for {url}")

        return MockAsyncClient


@pytest.fixture(autouse=True)
def _fresh_metadata_cache():
    metadata.clear_metadata_cache()
    yield
    metadata.clear_metadata_cache()


@pytest.fixture
def mock_http(monkeypatch) -> MockHttp:
    mock = MockHttp()
    monkeypatch.setattr(httpx, "AsyncClient", mock.client_class())
    return mock
