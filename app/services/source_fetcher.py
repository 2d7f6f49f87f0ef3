"""Client for reading manifests and catalogs from upstream Stremio addons."""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import quote, urlencode

import httpx
from pydantic import ValidationError

from ..models import FailureKind, FetchOutcome, MetaItem, Source, SubCatalog
from ..utils import is_search_catalog, manifest_url, normalize_endpoint

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "0.0.1"
DEFAULT_RESOURCES = ("catalog",)
DEFAULT_TYPES = ("movie", "series")


class SourceFetcher:
    """Fetch and validate upstream addon manifests and catalog pages."""

    _CATALOG_PATH = "catalog/{type}/{id}.json"
    _CATALOG_EXTRA_PATH = "catalog/{type}/{id}/{extra}.json"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        timeout: float | httpx.Timeout | None = None,
    ) -> None:
        self._client = http_client
        self._timeout = timeout

    def _request_kwargs(self) -> dict[str, Any]:
        if self._timeout is None:
            return {}
        return {"timeout": self._timeout}

    async def _get_json(self, url: str) -> FetchOutcome[Any]:
        try:
            response = await self._client.get(url, **self._request_kwargs())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Upstream %s answered %s", url, exc.response.status_code
            )
            return FetchOutcome.failed(
                FailureKind.UNAVAILABLE, f"HTTP {exc.response.status_code}"
            )
        except httpx.HTTPError as exc:
            logger.warning("Upstream %s could not be reached: %s", url, exc)
            return FetchOutcome.failed(FailureKind.UNAVAILABLE, str(exc))

        try:
            return FetchOutcome.ok(response.json())
        except ValueError:
            logger.warning("Upstream %s returned a non-JSON body", url)
            return FetchOutcome.failed(FailureKind.MALFORMED, "invalid JSON")

    async def fetch_source(self, url: str) -> Source | None:
        """Return the normalised source for ``url`` or ``None`` on any failure."""

        outcome = await self.fetch_source_outcome(url)
        return outcome.value if outcome.fetched else None

    async def fetch_source_outcome(self, url: str) -> FetchOutcome[Source]:
        endpoint = normalize_endpoint(url)
        target = manifest_url(url)
        logger.debug("Fetching manifest from %s", target)

        outcome = await self._get_json(target)
        if not outcome.fetched:
            return FetchOutcome.failed(outcome.failure or FailureKind.UNAVAILABLE, outcome.detail)

        source = self.parse_manifest(outcome.value, endpoint=endpoint, requested_url=url)
        if source is None:
            return FetchOutcome.failed(FailureKind.MALFORMED, "invalid manifest")

        logger.info(
            "Fetched manifest for %s with %d catalogs",
            source.name,
            len(source.catalogs),
        )
        return FetchOutcome.ok(source)

    @staticmethod
    def parse_manifest(
        payload: Any, *, endpoint: str, requested_url: str
    ) -> Source | None:
        """Validate a decoded manifest body and turn it into a ``Source``."""

        if not isinstance(payload, dict):
            logger.warning("Invalid manifest format from %s: not an object", requested_url)
            return None

        source_id = payload.get("id")
        name = payload.get("name")
        raw_catalogs = payload.get("catalogs")
        if (
            not isinstance(source_id, str)
            or not source_id.strip()
            or not isinstance(name, str)
            or not name.strip()
            or not isinstance(raw_catalogs, list)
        ):
            logger.warning(
                "Invalid manifest format from %s: missing required fields", requested_url
            )
            return None

        catalogs: list[SubCatalog] = []
        dropped = 0
        for entry in raw_catalogs:
            if not isinstance(entry, dict) or not entry.get("id") or not entry.get("type"):
                continue
            if is_search_catalog(entry.get("id")):
                dropped += 1
                continue
            try:
                catalogs.append(
                    SubCatalog.model_validate(
                        {**entry, "id": str(entry["id"]), "name": str(entry.get("name") or "")}
                    )
                )
            except ValidationError:
                logger.warning(
                    "Skipping invalid catalog %s from %s", entry.get("id"), requested_url
                )
        if dropped:
            logger.info("Filtered out %d search catalogs from %s", dropped, name)

        behavior_hints = payload.get("behaviorHints")
        id_prefixes = payload.get("idPrefixes")
        try:
            return Source(
                id=source_id,
                name=name,
                description=str(payload.get("description") or f"Catalog from {requested_url}"),
                version=str(payload.get("version") or DEFAULT_VERSION),
                endpoint=endpoint,
                resources=list(payload.get("resources") or DEFAULT_RESOURCES),
                types=list(payload.get("types") or DEFAULT_TYPES),
                catalogs=catalogs,
                id_prefixes=id_prefixes if isinstance(id_prefixes, list) else None,
                behavior_hints=behavior_hints if isinstance(behavior_hints, dict) else None,
            )
        except (ValidationError, TypeError) as exc:
            logger.warning("Invalid manifest format from %s: %s", requested_url, exc)
            return None

    def catalog_url(
        self,
        source: Source,
        content_type: str,
        catalog_id: str,
        extra: Mapping[str, Any] | None = None,
    ) -> str:
        """Build the catalog URL; ``extra`` (skip, genre, ...) becomes a path segment."""

        if extra:
            path = self._CATALOG_EXTRA_PATH.format(
                type=content_type,
                id=catalog_id,
                extra=urlencode({key: str(value) for key, value in extra.items()}, quote_via=quote),
            )
        else:
            path = self._CATALOG_PATH.format(type=content_type, id=catalog_id)
        return f"{normalize_endpoint(source.endpoint)}{path}"

    async def fetch_catalog_items(
        self,
        source: Source,
        content_type: str,
        catalog_id: str,
        extra: Mapping[str, Any] | None = None,
    ) -> FetchOutcome[list[MetaItem]]:
        """Fetch the ``metas`` of one sub-catalog from the source endpoint."""

        url = self.catalog_url(source, content_type, catalog_id, extra)
        logger.debug("Fetching catalog from %s", url)
        outcome = await self._get_json(url)
        if not outcome.fetched:
            return FetchOutcome.failed(outcome.failure or FailureKind.UNAVAILABLE, outcome.detail)

        payload = outcome.value
        if not isinstance(payload, dict):
            logger.warning("Catalog %s returned an unexpected payload", url)
            return FetchOutcome.failed(FailureKind.MALFORMED, "not an object")
        metas = payload.get("metas")
        if metas is None:
            return FetchOutcome.ok([])
        if not isinstance(metas, list):
            logger.warning("Catalog %s returned non-list metas", url)
            return FetchOutcome.failed(FailureKind.MALFORMED, "metas is not a list")
        return FetchOutcome.ok([meta for meta in metas if isinstance(meta, dict)])

    async def check_health(self, source: Source) -> bool:
        """Return True when the source manifest is reachable."""

        try:
            response = await self._client.get(
                manifest_url(source.endpoint), **self._request_kwargs()
            )
        except httpx.HTTPError as exc:
            logger.warning("Health check failed for %s: %s", source.id, exc)
            return False
        return response.is_success
