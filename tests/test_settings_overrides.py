from __future__ import annotations

from typing import Iterable

from datastore.memory_graph import InMemoryGraphStore
from datastore.repository import build_default_repository, build_default_store
from services.gateways import build_default_gateway_service
from services.sensors import build_default_sensor_service
from settings import get_settings

_CACHES = (
    get_settings,
    build_default_store,
    build_default_repository,
    build_default_gateway_service,
    build_default_sensor_service,
)


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    graph_path = tmp_path / "graph.json"

    monkeypatch.setenv("GRAPH_STORE_URI", "memory://")
    monkeypatch.setenv("GRAPH_STORE_PERSISTENCE_PATH", str(graph_path))
    monkeypatch.setenv("GRAPH_STORE_CONFLICT_RETRIES", "5")
    monkeypatch.setenv("HTTP_PORT", "9100")
    monkeypatch.setenv("LOG_LEVEL", " debug ")
    _clear_caches(_CACHES)

    try:
        settings = get_settings()
        store = build_default_store()
        sensor_service = build_default_sensor_service()

        assert settings.http_port == 9100
        assert settings.log_level == "DEBUG"
        assert isinstance(store, InMemoryGraphStore)
        assert store.persistence_path == graph_path
        assert sensor_service.conflict_retries == 5
        assert build_default_gateway_service().repository is sensor_service.repository
    finally:
        _clear_caches(_CACHES)


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("GRAPH_STORE_URI", "   ")
    monkeypatch.setenv("GRAPH_STORE_CONFLICT_RETRIES", "-1")
    monkeypatch.setenv("HTTP_PORT", "eighty")
    monkeypatch.delenv("GRAPH_STORE_PASSWORD", raising=False)
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.store_uri == "memory://"
        assert settings.conflict_retries == 3
        assert settings.http_port == 8000
        assert settings.store_password == ""
    finally:
        get_settings.cache_clear()


def test_blank_persistence_path_disables_persistence(monkeypatch) -> None:
    monkeypatch.setenv("GRAPH_STORE_URI", "memory://")
    monkeypatch.setenv("GRAPH_STORE_PERSISTENCE_PATH", "")
    _clear_caches(_CACHES)

    try:
        assert get_settings().store_persistence_path is None
        assert build_default_store().persistence_path is None
    finally:
        _clear_caches(_CACHES)
