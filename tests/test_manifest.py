from __future__ import annotations

import json
from typing import Any, Mapping
from urllib.parse import quote

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.main import create_app, register_routes
from app.models import Source
from app.services.addon import AddonService, ApiKeyRejectedError, SourceFetchError
from app.services.config_store import UserNotFoundError


class DummyAddonService(AddonService):
    """Minimal AddonService stub for route testing."""

    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        # Deliberately skip super().__init__ to avoid touching external systems.
        self.manifest_users: list[str] = []
        self.catalog_calls: list[tuple[str, str, str, dict[str, Any]]] = []
        self.users = {"u1"}

    async def get_manifest(self, user_id: str) -> dict[str, Any]:  # type: ignore[override]
        self.manifest_users.append(user_id)
        return {"id": f"community.aiocatalogs.{user_id}", "resources": ["catalog"]}

    async def get_catalog(  # type: ignore[override]
        self,
        user_id: str,
        content_type: str,
        catalog_id: str,
        extra: Mapping[str, Any] | None = None,
    ) -> dict[str, list[dict[str, Any]]]:
        self.catalog_calls.append((user_id, content_type, catalog_id, dict(extra or {})))
        return {"metas": [{"id": "tt1", "type": content_type}]}

    async def create_user(self) -> str:  # type: ignore[override]
        return "new-user"

    async def add_source_from_url(self, user_id: str, url: str) -> Source:  # type: ignore[override]
        if user_id not in self.users:
            raise UserNotFoundError(user_id)
        if "broken" in url:
            raise SourceFetchError("Failed to fetch catalog manifest")
        return Source(id="src", name="Source", endpoint=url)

    async def remove_source(self, user_id: str, source_id: str) -> bool:  # type: ignore[override]
        return source_id == "src"

    async def check_source_health(  # type: ignore[override]
        self, user_id: str, source_id: str
    ) -> bool | None:
        if user_id not in self.users:
            raise UserNotFoundError(user_id)
        if source_id == "down":
            return False
        return True if source_id == "src" else None

    async def set_mdblist_api_key(self, user_id: str, api_key: str | None) -> bool:  # type: ignore[override]
        if api_key != "good":
            raise ApiKeyRejectedError("MDBList rejected the API key")
        return True


def build_client() -> tuple[TestClient, DummyAddonService]:
    app = FastAPI()
    register_routes(app)
    service = DummyAddonService()
    app.state.addon_service = service
    return TestClient(app), service


def test_manifest_defaults_to_the_default_user() -> None:
    client, service = build_client()

    with client:
        response = client.get("/manifest.json")
        by_query = client.get("/manifest.json", params={"userId": "u1"})

    assert response.status_code == 200
    assert response.json()["id"] == "community.aiocatalogs.default"
    assert by_query.json()["id"] == "community.aiocatalogs.u1"
    assert service.manifest_users == ["default", "u1"]


def test_manifest_reads_user_from_path_params() -> None:
    client, service = build_client()
    params = quote(json.dumps({"userId": "u1"}), safe="")

    with client:
        response = client.get(f"/{params}/manifest.json")
        garbled = client.get("/not-json/manifest.json")

    assert response.status_code == 200
    assert garbled.status_code == 200
    assert service.manifest_users == ["u1", "default"]


def test_catalog_routes_pass_type_id_and_extra() -> None:
    client, service = build_client()
    params = quote(json.dumps({"userId": "u1"}), safe="")

    with client:
        plain = client.get("/catalog/movie/A_top.json", params={"userId": "u1"})
        with_params = client.get(f"/{params}/catalog/series/B_top.json")
        with_extra = client.get("/catalog/movie/A_top/skip=20&genre=Drama.json")

    assert plain.json() == {"metas": [{"id": "tt1", "type": "movie"}]}
    assert with_params.status_code == 200
    assert service.catalog_calls == [
        ("u1", "movie", "A_top", {}),
        ("u1", "series", "B_top", {}),
        ("default", "movie", "A_top", {"skip": "20", "genre": "Drama"}),
    ]


def test_meta_and_stream_are_empty_and_other_resources_missing() -> None:
    client, _ = build_client()
    params = quote(json.dumps({"userId": "u1"}), safe="")

    with client:
        meta = client.get("/meta/movie/tt1.json")
        stream = client.get(f"/{params}/stream/movie/tt1.json")
        subtitles = client.get(f"/{params}/subtitles/movie/tt1.json")

    assert meta.json() == {"meta": None}
    assert stream.json() == {"streams": []}
    assert subtitles.status_code == 404


def test_responses_disable_caching() -> None:
    app = create_app()
    app.state.addon_service = DummyAddonService()
    # Used without a context manager so the lifespan never opens the database.
    client = TestClient(app)

    response = client.get("/manifest.json")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["pragma"] == "no-cache"
    assert response.headers["expires"] == "0"


def test_config_api_maps_domain_errors_to_http_statuses() -> None:
    client, _ = build_client()

    with client:
        created = client.post("/api/users")
        added = client.post("/api/users/u1/sources", json={"url": "https://ok.example.com"})
        broken = client.post("/api/users/u1/sources", json={"url": "https://broken.example.com"})
        unknown = client.post("/api/users/nobody/sources", json={"url": "https://ok.example.com"})
        removed = client.delete("/api/users/u1/sources/src")
        missing = client.delete("/api/users/u1/sources/other")
        bad_key = client.put("/api/users/u1/keys/mdblist", json={"apiKey": "bad"})
        good_key = client.put("/api/users/u1/keys/mdblist", json={"apiKey": "good"})

    assert created.json() == {"userId": "new-user"}
    assert added.json()["source"]["id"] == "src"
    assert broken.status_code == 400
    assert unknown.status_code == 404
    assert removed.json() == {"success": True}
    assert missing.status_code == 404
    assert bad_key.status_code == 400
    assert good_key.json() == {"success": True}


def test_healthcheck() -> None:
    client, _ = build_client()

    with client:
        response = client.get("/healthz")

    assert response.json() == {"status": "ok"}


def test_source_health_route() -> None:
    client, _ = build_client()

    with client:
        healthy = client.get("/api/users/u1/sources/src/health")
        down = client.get("/api/users/u1/sources/down/health")
        missing_source = client.get("/api/users/u1/sources/nope/health")
        missing_user = client.get("/api/users/ghost/sources/src/health")

    assert healthy.json() == {"healthy": True}
    assert down.json() == {"healthy": False}
    assert missing_source.status_code == 404
    assert missing_source.json()["detail"] == "Source not found"
    assert missing_user.status_code == 404
    assert missing_user.json()["detail"] == "User not found"
