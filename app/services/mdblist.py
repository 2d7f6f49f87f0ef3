"""Provider adapter serving MDBList lists as Stremio catalogs."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from ..cache import TTLCache
from ..config import Settings
from ..models import FailureKind, FetchOutcome, MetaItem, Source, SubCatalog
from ..utils import normalize_endpoint, shuffle_in_place

logger = logging.getLogger(__name__)

PROVIDER_NAMESPACE = "mdblist"
POSTER_TEMPLATE = "https://images.metahub.space/poster/small/{imdb_id}/img"
BACKGROUND_TEMPLATE = "https://images.metahub.space/background/medium/{imdb_id}/img"


@dataclass(slots=True)
class ListItems:
    """Raw list contents as returned by MDBList, split by media kind."""

    movies: list[dict[str, Any]]
    shows: list[dict[str, Any]]


def list_source_id(list_id: str | int) -> str:
    return f"{PROVIDER_NAMESPACE}_{list_id}"


def parse_list_id(sub_catalog_id: str) -> str | None:
    """Extract the list id from the part of a catalog id after the namespace.

    Accepts both ``{list_id}`` and ``{list_id}_{type}``.
    """

    list_id = (sub_catalog_id or "").split("_", 1)[0].strip()
    return list_id or None


def convert_to_metas(items: ListItems) -> list[MetaItem]:
    """Map MDBList movies/shows into Stremio meta previews.

    Entries without an IMDb id cannot be resolved by Stremio and are skipped.
    """

    metas: list[MetaItem] = []
    for content_type, entries in (("movie", items.movies), ("series", items.shows)):
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            imdb_id = entry.get("imdb_id")
            if not imdb_id:
                continue
            meta: MetaItem = {
                "id": imdb_id,
                "type": content_type,
                "name": entry.get("title") or imdb_id,
                "poster": POSTER_TEMPLATE.format(imdb_id=imdb_id),
                "background": BACKGROUND_TEMPLATE.format(imdb_id=imdb_id),
            }
            year = entry.get("release_year")
            if year:
                meta["releaseInfo"] = f"{year}-" if content_type == "series" else str(year)
            metas.append(meta)
    return metas


def filter_by_type(metas: list[MetaItem], content_type: str | None) -> list[MetaItem]:
    """Keep items of ``content_type``; fall back to everything if none match."""

    if not content_type:
        return metas
    matching = [meta for meta in metas if meta.get("type") == content_type]
    return matching if matching else metas


def _convert_list(entry: Mapping[str, Any]) -> dict[str, Any]:
    user_name = entry.get("user_name") or "Unknown User"
    list_id = entry.get("id")
    return {
        "id": f"{entry.get('user_id')}-{list_id}",
        "mdblist_id": list_id,
        "name": entry.get("name") or f"MDBList {list_id}",
        "type": entry.get("mediatype") or "movie",
        "user": {"name": user_name, "id": entry.get("user_id") or ""},
        "item_count": entry.get("items") or 0,
        "likes": entry.get("likes") or 0,
        "url": f"https://mdblist.com/lists/{entry.get('user_name')}/{entry.get('slug') or list_id}",
        "slug": entry.get("slug"),
    }


class MDBListClient:
    """Thin wrapper around the MDBList HTTP API with a response cache."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        cache: TTLCache[Any] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._cache: TTLCache[Any] = (
            cache if cache is not None else TTLCache(settings.mdblist_cache_seconds)
        )
        self._rng = rng
        self._timeout = httpx.Timeout(settings.mdblist_timeout_seconds)

    @property
    def cache(self) -> TTLCache[Any]:
        return self._cache

    @staticmethod
    def _cache_key(
        endpoint: str, params: Mapping[str, str], api_key: str
    ) -> tuple[str, tuple[tuple[str, str], ...], str]:
        return endpoint, tuple(sorted(params.items())), api_key

    async def _request(
        self,
        endpoint: str,
        api_key: str | None,
        params: Mapping[str, str] | None = None,
    ) -> FetchOutcome[Any]:
        if not api_key or not api_key.strip():
            logger.warning("MDBList API key not configured")
            return FetchOutcome.failed(FailureKind.MISSING_CREDENTIALS)

        query = dict(params or {})
        key = self._cache_key(endpoint, query, api_key)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Using cached MDBList response for %s", endpoint)
            return FetchOutcome.ok(cached.value)

        url = f"{self._settings.mdblist_base_url}{endpoint}"
        try:
            response = await self._client.get(
                url,
                params={"apikey": api_key, **query},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning(
                "MDBList request %s timed out after %.0f seconds",
                endpoint,
                self._settings.mdblist_timeout_seconds,
            )
            return FetchOutcome.failed(FailureKind.UNAVAILABLE, "timeout")
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in {401, 403}:
                logger.error("MDBList API key seems to be invalid or expired")
            else:
                logger.warning("MDBList request %s failed with HTTP %s", endpoint, status)
            return FetchOutcome.failed(FailureKind.UNAVAILABLE, f"HTTP {status}")
        except httpx.HTTPError as exc:
            logger.warning("Error fetching from MDBList API %s: %s", endpoint, exc)
            return FetchOutcome.failed(FailureKind.UNAVAILABLE, str(exc))

        try:
            data = response.json()
        except ValueError:
            logger.warning("MDBList returned a non-JSON body for %s", endpoint)
            return FetchOutcome.failed(FailureKind.MALFORMED, "invalid JSON")

        self._cache.set(key, data)
        return FetchOutcome.ok(data)

    async def fetch_list_items(
        self, list_id: str | int, api_key: str | None
    ) -> FetchOutcome[ListItems]:
        outcome = await self._request(
            f"/lists/{list_id}/items",
            api_key,
            {"limit": str(self._settings.mdblist_max_items)},
        )
        if not outcome.fetched:
            return FetchOutcome.failed(outcome.failure or FailureKind.UNAVAILABLE, outcome.detail)

        data = outcome.value
        if not isinstance(data, dict) or ("movies" not in data and "shows" not in data):
            logger.warning("Invalid response from MDBList API for list %s items", list_id)
            return FetchOutcome.failed(FailureKind.MALFORMED, "missing movies/shows")

        movies = data.get("movies") if isinstance(data.get("movies"), list) else []
        shows = data.get("shows") if isinstance(data.get("shows"), list) else []
        logger.debug(
            "Fetched %d movies and %d shows from MDBList list %s",
            len(movies),
            len(shows),
            list_id,
        )
        return FetchOutcome.ok(ListItems(movies=movies, shows=shows))

    async def fetch_catalog_outcome(
        self,
        list_id: str | int,
        api_key: str | None,
        *,
        content_type: str | None = None,
        randomize: bool = False,
    ) -> FetchOutcome[list[MetaItem]]:
        outcome = await self.fetch_list_items(list_id, api_key)
        if not outcome.fetched or outcome.value is None:
            return FetchOutcome.failed(outcome.failure or FailureKind.UNAVAILABLE, outcome.detail)

        metas = filter_by_type(convert_to_metas(outcome.value), content_type)
        if randomize:
            shuffle_in_place(metas, self._rng)
        return FetchOutcome.ok(metas)

    async def fetch_catalog(
        self,
        list_id: str | int,
        api_key: str | None,
        *,
        content_type: str | None = None,
        randomize: bool = False,
    ) -> dict[str, list[MetaItem]]:
        """Return ``{"metas": [...]}`` for a list; empty on any failure."""

        outcome = await self.fetch_catalog_outcome(
            list_id, api_key, content_type=content_type, randomize=randomize
        )
        return {"metas": outcome.value_or([])}

    async def fetch_list_details(
        self, list_id: str | int, api_key: str | None
    ) -> dict[str, Any]:
        """Return list metadata; only ``name`` is guaranteed."""

        fallback = {"name": f"MDBList {list_id}"}
        outcome = await self._request(f"/lists/{list_id}", api_key)
        if not outcome.fetched:
            return fallback

        data = outcome.value
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict) or not data.get("name"):
            logger.warning("Invalid response from MDBList API for list %s details", list_id)
            return fallback

        return {
            key: data.get(key)
            for key in ("id", "name", "mediatype", "user_id", "user_name", "items", "likes", "slug")
        }

    async def _fetch_lists(
        self, endpoint: str, api_key: str | None, params: Mapping[str, str] | None = None
    ) -> list[dict[str, Any]]:
        outcome = await self._request(endpoint, api_key, params)
        if not outcome.fetched:
            return []
        data = outcome.value
        if isinstance(data, dict):
            data = data.get("lists")
        if not isinstance(data, list):
            logger.warning("Invalid response from MDBList API for %s", endpoint)
            return []
        return [_convert_list(entry) for entry in data if isinstance(entry, dict)]

    async def fetch_top_lists(self, api_key: str | None) -> list[dict[str, Any]]:
        return await self._fetch_lists("/lists/top", api_key)

    async def search_lists(self, query: str, api_key: str | None) -> list[dict[str, Any]]:
        if not (query or "").strip():
            return []
        return await self._fetch_lists("/lists/search", api_key, {"query": query.strip()})

    async def build_list_source(
        self,
        list_id: str | int,
        api_key: str | None,
        *,
        endpoint: str,
        name: str | None = None,
    ) -> Source:
        """Describe an MDBList list as a source the registry can store.

        One sub-catalog is advertised per media kind present in the list;
        both are advertised when the list is empty or unreachable.
        """

        details = await self.fetch_list_details(list_id, api_key)
        list_name = (name or "").strip() or details.get("name") or f"MDBList {list_id}"

        outcome = await self.fetch_catalog_outcome(list_id, api_key)
        present = {meta.get("type") for meta in outcome.value_or([])}
        types = [kind for kind in ("movie", "series") if kind in present] or [
            "movie",
            "series",
        ]

        return Source(
            id=list_source_id(list_id),
            name=list_name,
            description=f"{list_name} - MDBList catalog",
            version="1.0.0",
            endpoint=normalize_endpoint(endpoint),
            resources=["catalog"],
            types=types,
            catalogs=[
                SubCatalog(type=kind, id=kind, name=list_name)
                for kind in types
            ],
            behavior_hints={"adult": False, "p2p": False},
            context={"apiKey": api_key} if api_key else None,
        )
