"""Per-user virtual addon: cached manifests plus the catalog handler."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..cache import TTLCache
from ..config import Settings
from ..models import CatalogRequest, MetaItem, Source, UserCatalogConfig
from .config_store import ConfigStore, Direction, UserNotFoundError
from .dispatcher import CatalogDispatcher
from .manifest_builder import compose_manifest, fallback_manifest
from .mdblist import PROVIDER_NAMESPACE, MDBListClient
from .posters import PosterResolver
from .source_fetcher import SourceFetcher

logger = logging.getLogger(__name__)


class SourceFetchError(ValueError):
    """Raised when a catalog source cannot be fetched or validated."""


class ApiKeyRejectedError(ValueError):
    """Raised when a third-party API key fails validation."""


@dataclass(slots=True)
class AddonInterface:
    """The manifest and catalog handler built for one user.

    The catalog handler works on the configuration snapshot captured when
    the interface was built; later edits only apply after invalidation.
    """

    user_id: str
    manifest: dict[str, Any]
    dispatcher: CatalogDispatcher
    sources: tuple[Source, ...] = ()
    randomized_ids: frozenset[str] = field(default_factory=frozenset)
    provider_api_key: str | None = None
    poster_api_key: str | None = None

    async def catalog(
        self, request: CatalogRequest | Mapping[str, Any]
    ) -> dict[str, list[MetaItem]]:
        return await self.dispatcher.handle_catalog_request(
            request if isinstance(request, CatalogRequest) else dict(request),
            self.sources,
            self.randomized_ids,
            provider_api_key=self.provider_api_key,
            poster_api_key=self.poster_api_key,
        )

    @staticmethod
    def meta() -> dict[str, None]:
        return {"meta": None}

    @staticmethod
    def stream() -> dict[str, list[Any]]:
        return {"streams": []}


class AddonService:
    """Coordinate the config store, fetchers and the interface cache."""

    def __init__(
        self,
        settings: Settings,
        store: ConfigStore,
        fetcher: SourceFetcher,
        mdblist: MDBListClient,
        posters: PosterResolver,
        *,
        dispatcher: CatalogDispatcher | None = None,
        cache: TTLCache[AddonInterface] | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._fetcher = fetcher
        self._mdblist = mdblist
        self._posters = posters
        self._dispatcher = dispatcher or CatalogDispatcher(fetcher, mdblist, posters)
        self._interfaces: TTLCache[AddonInterface] = (
            cache if cache is not None else TTLCache(None)
        )
        self._generations: dict[str, int] = {}
        self._epoch = 0
        store.add_listener(self.invalidate)

    @property
    def store(self) -> ConfigStore:
        return self._store

    @property
    def interfaces(self) -> TTLCache[AddonInterface]:
        return self._interfaces

    async def get_or_build_interface(self, user_id: str) -> AddonInterface:
        cached = self._interfaces.get(user_id)
        if cached is not None:
            logger.debug("Using cached addon interface for user %s", user_id)
            return cached.value

        # An invalidation while loading means the snapshot may predate a mutation.
        generation = self._generation(user_id)
        try:
            config = await self._store.get_config(user_id)
            provider_key = await self._store.load_provider_api_key(user_id)
            poster_key = await self._store.load_poster_api_key(user_id)
        except Exception:
            logger.exception("Failed to load configuration for user %s", user_id)
            return AddonInterface(
                user_id=user_id,
                manifest=fallback_manifest(user_id, self._settings),
                dispatcher=self._dispatcher,
            )

        sources = tuple(config.ordered_sources)
        interface = AddonInterface(
            user_id=user_id,
            manifest=compose_manifest(user_id, sources, settings=self._settings),
            dispatcher=self._dispatcher,
            sources=sources,
            randomized_ids=config.randomized_ids(),
            provider_api_key=provider_key,
            poster_api_key=poster_key,
        )
        if self._generation(user_id) != generation:
            logger.debug("Configuration for user %s changed during build", user_id)
            return interface
        self._interfaces.set(user_id, interface)
        logger.debug("Built addon interface for user %s", user_id)
        return interface

    def _generation(self, user_id: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(user_id, 0)

    def invalidate(self, user_id: str) -> None:
        self._generations[user_id] = self._generations.get(user_id, 0) + 1
        if self._interfaces.delete(user_id):
            logger.debug("Invalidated addon interface for user %s", user_id)

    def invalidate_all(self) -> None:
        self._epoch += 1
        self._interfaces.clear()

    async def get_manifest(self, user_id: str) -> dict[str, Any]:
        interface = await self.get_or_build_interface(user_id)
        return interface.manifest

    async def get_catalog(
        self,
        user_id: str,
        content_type: str,
        catalog_id: str,
        extra: Mapping[str, Any] | None = None,
    ) -> dict[str, list[MetaItem]]:
        interface = await self.get_or_build_interface(user_id)
        return await interface.catalog(
            CatalogRequest(type=content_type, id=catalog_id, extra=dict(extra or {}))
        )

    async def _require_user(self, user_id: str) -> None:
        if not await self._store.user_exists(user_id):
            raise UserNotFoundError(user_id)

    async def create_user(self) -> str:
        return await self._store.create_user()

    async def describe_user(self, user_id: str) -> dict[str, Any]:
        """Summarise a user's configuration for the configuration API."""

        await self._require_user(user_id)
        config: UserCatalogConfig = await self._store.get_config(user_id)
        provider_key = await self._store.load_provider_api_key(user_id)
        poster_key = await self._store.load_poster_api_key(user_id)
        return {
            "userId": user_id,
            "sources": [
                {
                    **source.to_payload(),
                    "displayName": source.display_name,
                    "randomized": source.id in config.randomized,
                }
                for source in config.ordered_sources
            ],
            "catalogOrder": config.display_order,
            "randomizedCatalogs": sorted(config.randomized_ids()),
            "hasMdblistKey": bool(provider_key),
            "hasRpdbKey": bool(poster_key),
        }

    async def add_source_from_url(self, user_id: str, url: str) -> Source:
        await self._require_user(user_id)
        outcome = await self._fetcher.fetch_source_outcome(url)
        if not outcome.fetched or outcome.value is None:
            raise SourceFetchError(
                f"Failed to fetch catalog manifest from {url}: {outcome.detail or outcome.failure}"
            )
        source = outcome.value
        if not await self._store.add_source(user_id, source):
            raise SourceFetchError(f"Failed to save catalog {source.id}")
        return source

    async def check_source_health(self, user_id: str, source_id: str) -> bool | None:
        """Check a stored source is reachable; ``None`` when the user has no such source."""

        await self._require_user(user_id)
        source = (await self._store.get_config(user_id)).get(source_id)
        if source is None:
            return None
        namespace, _, list_id = source_id.partition("_")
        if namespace == PROVIDER_NAMESPACE and list_id:
            api_key = await self._store.load_provider_api_key(user_id)
            api_key = api_key or (source.context or {}).get("apiKey")
            outcome = await self._mdblist.fetch_list_items(list_id, api_key)
            return outcome.fetched
        return await self._fetcher.check_health(source)

    async def remove_source(self, user_id: str, source_id: str) -> bool:
        return await self._store.remove_source(user_id, source_id)

    async def move_source(self, user_id: str, source_id: str, direction: Direction) -> bool:
        return await self._store.move_source(user_id, source_id, direction)

    async def rename_source(self, user_id: str, source_id: str, name: str | None) -> bool:
        return await self._store.rename_source(user_id, source_id, name)

    async def toggle_randomize(self, user_id: str, source_id: str) -> bool:
        return await self._store.toggle_randomize(user_id, source_id)

    async def set_mdblist_api_key(self, user_id: str, api_key: str | None) -> bool:
        """Store the MDBList key after checking it against the API.

        An empty key clears the stored one without validation.
        """

        await self._require_user(user_id)
        cleaned = (api_key or "").strip()
        if cleaned and not await self._mdblist.fetch_top_lists(cleaned):
            raise ApiKeyRejectedError("MDBList rejected the API key")
        return await self._store.save_provider_api_key(user_id, cleaned or None)

    async def set_rpdb_api_key(self, user_id: str, api_key: str | None) -> bool:
        await self._require_user(user_id)
        return await self._store.save_poster_api_key(user_id, api_key)

    async def _provider_key(self, user_id: str) -> str:
        await self._require_user(user_id)
        api_key = await self._store.load_provider_api_key(user_id)
        if not api_key:
            raise ApiKeyRejectedError("MDBList API key not configured")
        return api_key

    async def add_mdblist_list(
        self, user_id: str, list_id: str | int, name: str | None = None
    ) -> Source:
        api_key = await self._provider_key(user_id)
        source = await self._mdblist.build_list_source(
            list_id,
            api_key,
            endpoint=self._settings.mdblist_base_url,
            name=name,
        )
        if not await self._store.add_source(user_id, source):
            raise SourceFetchError(f"Failed to save MDBList list {list_id}")
        return source

    async def top_mdblist_lists(self, user_id: str) -> list[dict[str, Any]]:
        return await self._mdblist.fetch_top_lists(await self._provider_key(user_id))

    async def search_mdblist_lists(self, user_id: str, query: str) -> list[dict[str, Any]]:
        return await self._mdblist.search_lists(query, await self._provider_key(user_id))


__all__ = [
    "AddonInterface",
    "AddonService",
    "ApiKeyRejectedError",
    "SourceFetchError",
]
