import asyncio
import json

import pytest

from globetiles.errors import ErrorEvent, MalformedMetadata, TransportFailure, UnsupportedSpatialReference
from globetiles.geometry import Rectangle
from globetiles.projection import MERCATOR_MAXIMUM_EXTENT, MERCATOR_MAXIMUM_LATITUDE, Projection
from globetiles.services import metadata
from globetiles.services.builder import ProviderBuilder
from globetiles.services.config import AddressingMode, Credit
from globetiles.services.metadata import (
    apply_map_server_metadata,
    apply_quadkey_metadata,
    resolve_metadata,
)
from globetiles.services.transport import Endpoint

MAP_SERVER = "https://example.test/arcgis/rest/services/World/MapServer"


def _builder() -> ProviderBuilder:
    return ProviderBuilder(endpoint=Endpoint.create(MAP_SERVER))


def _tile_info(wkid=102100, levels=20, rows=256, cols=256):
    return {
        "rows": rows,
        "cols": cols,
        "spatialReference": {"wkid": wkid},
        "lods": [{"level": level} for level in range(levels)],
    }


def _mercator_extent():
    return {
        "xmin": -20037508.342789244,
        "ymin": -20037508.342789244,
        "xmax": 20037508.342789244,
        "ymax": 20037508.342789244,
        "spatialReference": {"wkid": 102100},
    }


def test_tiled_mercator_metadata_configures_precached_tiles():
    builder = _builder()

    apply_map_server_metadata(
        {
            "tileInfo": _tile_info(levels=20, rows=512, cols=256),
            "fullExtent": _mercator_extent(),
            "copyrightText": "Sources: Example",
        },
        builder,
    )

    assert builder.addressing_mode is AddressingMode.PRECACHED
    assert builder.tile_width == 256
    assert builder.tile_height == 512
    assert builder.maximum_level == 19
    assert builder.tiling_scheme.projection is Projection.WEB_MERCATOR
    assert builder.credit == Credit("Sources: Example")
    assert builder.rectangle.west == pytest.approx(-180.0)
    assert builder.rectangle.east == pytest.approx(180.0)
    assert builder.rectangle.south == pytest.approx(-MERCATOR_MAXIMUM_LATITUDE)
    assert builder.rectangle.north == pytest.approx(MERCATOR_MAXIMUM_LATITUDE)


def test_mercator_extent_is_clamped_to_projection_square():
    builder = _builder()
    extent = _mercator_extent()
    extent["ymin"] = -3 * MERCATOR_MAXIMUM_EXTENT
    extent["ymax"] = 3 * MERCATOR_MAXIMUM_EXTENT

    apply_map_server_metadata({"tileInfo": _tile_info(), "fullExtent": extent}, builder)

    assert builder.rectangle.south == pytest.approx(-MERCATOR_MAXIMUM_LATITUDE)
    assert builder.rectangle.north == pytest.approx(MERCATOR_MAXIMUM_LATITUDE)


def test_geographic_metadata_without_extent_uses_scheme_rectangle():
    builder = _builder()

    apply_map_server_metadata({"tileInfo": _tile_info(wkid=4326, levels=1)}, builder)

    assert builder.tiling_scheme.projection is Projection.GEOGRAPHIC
    assert builder.maximum_level == 0
    assert builder.rectangle == Rectangle.max_value()
    assert builder.credit is None


def test_geographic_extent_is_kept_in_degrees():
    builder = _builder()
    extent = {"xmin": 160.0, "ymin": -50.0, "xmax": 180.0, "ymax": -30.0, "spatialReference": {"wkid": 4326}}

    apply_map_server_metadata({"tileInfo": _tile_info(wkid=4326), "fullExtent": extent}, builder)

    assert builder.rectangle == Rectangle(160.0, -50.0, 180.0, -30.0)


def test_metadata_without_tile_info_switches_to_export():
    builder = _builder()

    apply_map_server_metadata({"copyrightText": "Dynamic"}, builder)

    assert builder.addressing_mode is AddressingMode.DYNAMIC
    config = builder.commit()
    assert config.discard_policy is None
    assert config.credit == Credit("Dynamic")


def test_unsupported_tile_spatial_reference_is_fatal():
    with pytest.raises(UnsupportedSpatialReference) as excinfo:
        apply_map_server_metadata({"tileInfo": _tile_info(wkid=2193)}, _builder())

    assert str(excinfo.value) == "Tile spatial reference WKID 2193 is not supported."


def test_unsupported_extent_spatial_reference_is_fatal_on_its_own():
    extent = _mercator_extent()
    extent["spatialReference"] = {"wkid": 2193}

    with pytest.raises(UnsupportedSpatialReference) as excinfo:
        apply_map_server_metadata({"tileInfo": _tile_info(wkid=4326), "fullExtent": extent}, _builder())

    assert str(excinfo.value) == "fullExtent spatial reference WKID 2193 is not supported."


def _quadkey_document(**resource_overrides):
    resource = {
        "imageWidth": 256,
        "imageHeight": 256,
        "zoomMax": 21,
        "imageUrl": "http://ecn.{subdomain}.tiles.virtualearth.net/tiles/a{quadkey}.jpeg?g=1",
        "imageUrlSubdomains": ["t0", "t1"],
        "imageryProviders": [
            {
                "attribution": "© Vendor",
                "coverageAreas": [{"zoomMin": 1, "zoomMax": 21, "bbox": [-90, -180, 90, 180]}],
            }
        ],
    }
    resource.update(resource_overrides)
    return {"resourceSets": [{"resources": [resource]}]}


def test_quadkey_metadata_configures_template_and_attribution():
    builder = ProviderBuilder(endpoint=Endpoint.create("https://dev.virtualearth.net"))

    apply_quadkey_metadata(_quadkey_document(), builder)

    assert builder.addressing_mode is AddressingMode.QUADKEY
    assert builder.maximum_level == 20
    assert builder.subdomains == ("t0", "t1")
    assert builder.url_template.endswith("a{quadkey}.jpeg?g=1")
    assert len(builder.attribution_list) == 1
    entry = builder.attribution_list[0]
    assert entry.credit == Credit("© Vendor")
    assert entry.coverage_areas[0].bbox == Rectangle(-180.0, -90.0, 180.0, 90.0)


@pytest.mark.parametrize("resource_sets", [[], [{"resources": []}, {"resources": []}], None])
def test_quadkey_metadata_requires_one_resource_set(resource_sets):
    document = {} if resource_sets is None else {"resourceSets": resource_sets}

    with pytest.raises(MalformedMetadata) as excinfo:
        apply_quadkey_metadata(document, _builder())

    assert "metadata does not specify one resource in resourceSets" in str(excinfo.value)


def test_concurrent_resolutions_share_one_fetch(mock_http):
    mock_http.add("MapServer/", json_body={"tileInfo": _tile_info()})
    request = Endpoint.create(MAP_SERVER).derive("", {"f": "json"})

    async def _resolve_twice():
        return await asyncio.gather(
            resolve_metadata(request, _builder(), apply_map_server_metadata),
            resolve_metadata(request, _builder(), apply_map_server_metadata),
        )

    first, second = asyncio.run(_resolve_twice())

    assert len(mock_http.calls) == 1
    assert mock_http.calls[0]["params"] == {"f": "json", "callback": "loadJsonp"}
    assert first.maximum_level == second.maximum_level == 19

    # Later providers from the same endpoint reuse the cached document.
    asyncio.run(resolve_metadata(request, _builder(), apply_map_server_metadata))
    assert len(mock_http.calls) == 1
    assert request.cache_key in metadata.get_metadata_cache()


def test_jsonp_wrapped_metadata_is_unwrapped(mock_http):
    body = json.dumps({"tileInfo": _tile_info(wkid=4326, levels=3)})
    mock_http.add("MapServer/", text=f"loadJsonp({body});", content_type="text/javascript")
    request = Endpoint.create(MAP_SERVER).derive("", {"f": "json"})

    builder = asyncio.run(resolve_metadata(request, _builder(), apply_map_server_metadata))

    assert builder.maximum_level == 2


def test_failed_fetch_is_reported_and_not_cached(mock_http):
    mock_http.add("MapServer/", json_body={"error": {"message": "Service unavailable"}}, status_code=503)
    request = Endpoint.create(MAP_SERVER).derive("", {"f": "json"})
    event = ErrorEvent()
    received = []
    event.add_listener(received.append)

    with pytest.raises(TransportFailure) as excinfo:
        asyncio.run(resolve_metadata(request, _builder(), apply_map_server_metadata, error_event=event))

    assert excinfo.value.status_code == 503
    assert str(excinfo.value).startswith(f"An error occurred while accessing {MAP_SERVER}/")
    assert "Service unavailable" in str(excinfo.value)
    assert len(received) == 1
    assert received[0].error is excinfo.value
    assert received[0].endpoint == f"{MAP_SERVER}/"

    mock_http.add("MapServer/", json_body={"tileInfo": _tile_info()})
    builder = asyncio.run(resolve_metadata(request, _builder(), apply_map_server_metadata))

    assert builder.addressing_mode is AddressingMode.PRECACHED
    assert len(mock_http.calls) == 2


def test_unsupported_reference_keeps_its_type_when_reported(mock_http):
    mock_http.add("MapServer/", json_body={"tileInfo": _tile_info(wkid=2193)})
    request = Endpoint.create(MAP_SERVER).derive("", {"f": "json"})

    with pytest.raises(UnsupportedSpatialReference) as excinfo:
        asyncio.run(resolve_metadata(request, _builder(), apply_map_server_metadata))

    assert excinfo.value.wkid == 2193
    assert "WKID 2193 is not supported" in str(excinfo.value)


def test_missing_tile_info_fields_are_malformed(mock_http):
    mock_http.add("MapServer/", json_body={"tileInfo": {"rows": 256}})
    request = Endpoint.create(MAP_SERVER).derive("", {"f": "json"})

    with pytest.raises(MalformedMetadata):
        asyncio.run(resolve_metadata(request, _builder(), apply_map_server_metadata))


def test_non_object_document_is_malformed(mock_http):
    mock_http.add("MapServer/", json_body=[1, 2, 3])
    request = Endpoint.create(MAP_SERVER).derive("", {"f": "json"})

    with pytest.raises(MalformedMetadata):
        asyncio.run(resolve_metadata(request, _builder(), apply_map_server_metadata))


class _GatedResponse:
    status_code = 200
    headers = {"Content-Type": "application/json"}

    def __init__(self, body: dict):
        self.text = json.dumps(body)

    def json(self):
        return json.loads(self.text)


class _GatedClient:
    """Answers only after ``release`` is set."""

    def __init__(self, body: dict):
        self.body = body
        self.calls = []
        self.release = asyncio.Event()

    async def get(self, url, params=None):
        self.calls.append({"url": url, "params": dict(params or {})})
        await self.release.wait()
        return _GatedResponse(self.body)


def test_cancelled_caller_leaves_shared_fetch_running():
    request = Endpoint.create(MAP_SERVER).derive("", {"f": "json"})

    async def _resolve_and_cancel_one():
        client = _GatedClient({"tileInfo": _tile_info()})
        first = asyncio.ensure_future(
            resolve_metadata(request, _builder(), apply_map_server_metadata, client=client)
        )
        second = asyncio.ensure_future(
            resolve_metadata(request, _builder(), apply_map_server_metadata, client=client)
        )
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)
        client.release.set()
        results = await asyncio.gather(first, second, return_exceptions=True)
        return client, results

    client, (first, second) = asyncio.run(_resolve_and_cancel_one())

    assert isinstance(first, asyncio.CancelledError)
    assert isinstance(second, ProviderBuilder)
    assert second.maximum_level == 19
    assert len(client.calls) == 1
    assert request.cache_key in metadata.get_metadata_cache()
