from sqlmodel import Session

from globetiles import database
from globetiles.services.usage import record_api_usage, record_request, usage_snapshot


def test_usage_is_counted_per_host(monkeypatch):
    engine = database.build_engine("sqlite://")
    monkeypatch.setattr(database, "engine", engine)

    record_request("https://example.test/arcgis/rest/services/World/MapServer/tile/0/0/0")
    record_request("https://example.test/arcgis/rest/services/World/MapServer/")
    record_api_usage("dev.virtualearth.net", increment=3)
    record_api_usage("ignored.test", increment=0)

    with Session(engine) as session:
        stats = usage_snapshot(session)

    assert [stat.provider for stat in stats] == ["dev.virtualearth.net", "example.test"]
    assert [stat.request_count for stat in stats] == [3, 2]
    assert stats[1].last_used_at is not None


def test_snapshot_is_empty_for_fresh_database(monkeypatch):
    engine = database.build_engine("sqlite://")
    monkeypatch.setattr(database, "engine", engine)

    with Session(engine) as session:
        assert usage_snapshot(session) == []


def test_settings_fall_back_to_defaults(monkeypatch):
    from globetiles import settings

    monkeypatch.setenv("GLOBETILES_REQUEST_TIMEOUT", "not-a-number")
    monkeypatch.setenv("GLOBETILES_PICK_TOLERANCE", "-4")
    monkeypatch.setenv("GLOBETILES_TILE_PROTOCOL", "HTTP:")
    monkeypatch.delenv("GLOBETILES_DATABASE_URL", raising=False)
    monkeypatch.setenv("GLOBETILES_DATA_DIR", "/srv/globetiles")

    assert settings.request_timeout_seconds() == settings.DEFAULT_REQUEST_TIMEOUT
    assert settings.pick_tolerance() == 0
    assert settings.default_tile_protocol() == "http"
    assert settings.database_url() == "sqlite:////srv/globetiles/globetiles.db"
