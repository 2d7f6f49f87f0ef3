"""Entry point for the FastAPI-powered Stremio catalog aggregator."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Literal
from urllib.parse import parse_qsl, unquote

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from .config import settings
from .database import Database
from .services.addon import AddonService, ApiKeyRejectedError, SourceFetchError
from .services.config_store import ConfigStore, UserNotFoundError
from .services.mdblist import MDBListClient
from .services.posters import PosterResolver
from .services.source_fetcher import SourceFetcher

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

app: FastAPI


class SourcePayload(BaseModel):
    url: str = Field(min_length=1)


class MovePayload(BaseModel):
    direction: Literal["up", "down"]


class RenamePayload(BaseModel):
    name: str | None = None


class ApiKeyPayload(BaseModel):
    api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("apiKey", "api_key")
    )


class ListPayload(BaseModel):
    list_id: str = Field(
        min_length=1, validation_alias=AliasChoices("listId", "list_id")
    )
    name: str | None = None


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout_seconds),
            follow_redirects=True,
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    store = ConfigStore(database.session_factory)
    fetcher = SourceFetcher(http_client)
    mdblist = MDBListClient(settings, http_client)
    posters = PosterResolver(settings)
    addon_service = AddonService(settings, store, fetcher, mdblist, posters)

    fastapi_app.state.addon_service = addon_service
    fastapi_app.state.database = database
    logger.info("%s %s ready", settings.app_name, settings.addon_version)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        addon_service.invalidate_all()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Combine catalogs from multiple Stremio addons into one",
        version=settings.addon_version,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    @fastapi_app.middleware("http")
    async def _no_cache(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(NO_CACHE_HEADERS)
        return response

    register_routes(fastapi_app)
    return fastapi_app


def get_addon_service(app: FastAPI) -> AddonService:
    service = getattr(app.state, "addon_service", None)
    if not isinstance(service, AddonService):
        raise RuntimeError("Addon service not initialised")
    return service


def _user_id_from_params(raw_params: str) -> str:
    """Read ``userId`` from the URL-encoded JSON path segment."""

    try:
        payload = json.loads(unquote(raw_params))
    except ValueError:
        logger.warning("Failed to parse path parameters %r", raw_params)
        return settings.default_user_id
    if isinstance(payload, dict):
        user_id = payload.get("userId")
        if isinstance(user_id, str) and user_id.strip():
            return user_id.strip()
    return settings.default_user_id


def _resolve_user_id(user_id: str | None) -> str:
    return (user_id or "").strip() or settings.default_user_id


def _parse_extra(raw_extra: str | None) -> dict[str, str]:
    if not raw_extra:
        return {}
    return dict(parse_qsl(unquote(raw_extra), keep_blank_values=True))


def register_routes(fastapi_app: FastAPI) -> None:
    async def _manifest_endpoint(user_id: str) -> JSONResponse:
        service = get_addon_service(fastapi_app)
        manifest = await service.get_manifest(user_id)
        return JSONResponse(manifest)

    async def _catalog_endpoint(
        user_id: str,
        content_type: str,
        catalog_id: str,
        extra: str | None = None,
    ) -> JSONResponse:
        service = get_addon_service(fastapi_app)
        payload = await service.get_catalog(
            user_id, content_type, catalog_id, _parse_extra(extra)
        )
        return JSONResponse(payload)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/manifest.json")
    async def manifest(user_id: str | None = Query(default=None, alias="userId")):
        return await _manifest_endpoint(_resolve_user_id(user_id))

    @fastapi_app.get("/{params}/manifest.json")
    async def manifest_with_params(params: str):
        return await _manifest_endpoint(_user_id_from_params(params))

    @fastapi_app.get("/catalog/{content_type}/{catalog_id}.json")
    async def catalog(
        content_type: str,
        catalog_id: str,
        user_id: str | None = Query(default=None, alias="userId"),
    ):
        return await _catalog_endpoint(_resolve_user_id(user_id), content_type, catalog_id)

    @fastapi_app.get("/catalog/{content_type}/{catalog_id}/{extra}.json")
    async def catalog_with_extra(
        content_type: str,
        catalog_id: str,
        extra: str,
        user_id: str | None = Query(default=None, alias="userId"),
    ):
        return await _catalog_endpoint(
            _resolve_user_id(user_id), content_type, catalog_id, extra
        )

    @fastapi_app.get("/{params}/catalog/{content_type}/{catalog_id}.json")
    async def catalog_with_params(params: str, content_type: str, catalog_id: str):
        return await _catalog_endpoint(
            _user_id_from_params(params), content_type, catalog_id
        )

    @fastapi_app.get("/{params}/catalog/{content_type}/{catalog_id}/{extra}.json")
    async def catalog_with_params_and_extra(
        params: str, content_type: str, catalog_id: str, extra: str
    ):
        return await _catalog_endpoint(
            _user_id_from_params(params), content_type, catalog_id, extra
        )

    @fastapi_app.get("/meta/{content_type}/{item_id}.json")
    @fastapi_app.get("/{params}/meta/{content_type}/{item_id}.json")
    async def meta(content_type: str, item_id: str, params: str | None = None):
        return {"meta": None}

    @fastapi_app.get("/stream/{content_type}/{item_id}.json")
    @fastapi_app.get("/{params}/stream/{content_type}/{item_id}.json")
    async def stream(content_type: str, item_id: str, params: str | None = None):
        return {"streams": []}

    @fastapi_app.post("/api/users")
    async def create_user() -> dict[str, str]:
        service = get_addon_service(fastapi_app)
        return {"userId": await service.create_user()}

    @fastapi_app.get("/api/users/{user_id}")
    async def describe_user(user_id: str) -> dict[str, Any]:
        service = get_addon_service(fastapi_app)
        try:
            return await service.describe_user(user_id)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc

    @fastapi_app.post("/api/users/{user_id}/sources")
    async def add_source(user_id: str, payload: SourcePayload) -> dict[str, Any]:
        service = get_addon_service(fastapi_app)
        try:
            source = await service.add_source_from_url(user_id, payload.url)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        except SourceFetchError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"source": source.to_payload()}

    @fastapi_app.delete("/api/users/{user_id}/sources/{source_id}")
    async def remove_source(user_id: str, source_id: str) -> dict[str, bool]:
        service = get_addon_service(fastapi_app)
        try:
            removed = await service.remove_source(user_id, source_id)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        if not removed:
            raise HTTPException(status_code=404, detail="Source not found")
        return {"success": True}

    @fastapi_app.get("/api/users/{user_id}/sources/{source_id}/health")
    async def source_health(user_id: str, source_id: str) -> dict[str, bool]:
        service = get_addon_service(fastapi_app)
        try:
            healthy = await service.check_source_health(user_id, source_id)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        if healthy is None:
            raise HTTPException(status_code=404, detail="Source not found")
        return {"healthy": healthy}

    @fastapi_app.post("/api/users/{user_id}/sources/{source_id}/move")
    async def move_source(
        user_id: str, source_id: str, payload: MovePayload
    ) -> dict[str, bool]:
        service = get_addon_service(fastapi_app)
        try:
            moved = await service.move_source(user_id, source_id, payload.direction)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        return {"success": moved}

    @fastapi_app.post("/api/users/{user_id}/sources/{source_id}/rename")
    async def rename_source(
        user_id: str, source_id: str, payload: RenamePayload
    ) -> dict[str, bool]:
        service = get_addon_service(fastapi_app)
        try:
            renamed = await service.rename_source(user_id, source_id, payload.name)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        if not renamed:
            raise HTTPException(status_code=404, detail="Source not found")
        return {"success": True}

    @fastapi_app.post("/api/users/{user_id}/sources/{source_id}/randomize")
    async def toggle_randomize(user_id: str, source_id: str) -> dict[str, bool]:
        service = get_addon_service(fastapi_app)
        try:
            toggled = await service.toggle_randomize(user_id, source_id)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        if not toggled:
            raise HTTPException(status_code=404, detail="Source not found")
        return {"success": True}

    @fastapi_app.put("/api/users/{user_id}/keys/mdblist")
    async def set_mdblist_key(user_id: str, payload: ApiKeyPayload) -> dict[str, bool]:
        service = get_addon_service(fastapi_app)
        try:
            saved = await service.set_mdblist_api_key(user_id, payload.api_key)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        except ApiKeyRejectedError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": saved}

    @fastapi_app.put("/api/users/{user_id}/keys/rpdb")
    async def set_rpdb_key(user_id: str, payload: ApiKeyPayload) -> dict[str, bool]:
        service = get_addon_service(fastapi_app)
        try:
            saved = await service.set_rpdb_api_key(user_id, payload.api_key)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        return {"success": saved}

    @fastapi_app.post("/api/users/{user_id}/mdblist")
    async def add_mdblist_list(user_id: str, payload: ListPayload) -> dict[str, Any]:
        service = get_addon_service(fastapi_app)
        try:
            source = await service.add_mdblist_list(
                user_id, payload.list_id.strip(), name=payload.name
            )
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        except (ApiKeyRejectedError, SourceFetchError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"source": source.to_payload()}

    @fastapi_app.get("/api/users/{user_id}/mdblist/top")
    async def top_mdblist_lists(user_id: str) -> dict[str, Any]:
        service = get_addon_service(fastapi_app)
        try:
            lists = await service.top_mdblist_lists(user_id)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        except ApiKeyRejectedError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"lists": lists}

    @fastapi_app.get("/api/users/{user_id}/mdblist/search")
    async def search_mdblist_lists(
        user_id: str, query: str = Query(default="")
    ) -> dict[str, Any]:
        service = get_addon_service(fastapi_app)
        try:
            lists = await service.search_mdblist_lists(user_id, query)
        except UserNotFoundError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        except ApiKeyRejectedError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"lists": lists}


app = create_app()
