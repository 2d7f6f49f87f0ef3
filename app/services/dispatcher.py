"""Route catalog requests to the source or provider that owns them."""

from __future__ import annotations

import logging
import random
from collections.abc import Collection, Sequence
from typing import Any

from ..models import CatalogRequest, FailureKind, FetchOutcome, MetaItem, Source
from ..utils import shuffle_in_place, split_catalog_id
from .manifest_builder import ADDON_LOGO, DEFAULT_CATALOG_ID
from .mdblist import PROVIDER_NAMESPACE, MDBListClient, list_source_id, parse_list_id
from .posters import PosterResolver
from .source_fetcher import SourceFetcher

logger = logging.getLogger(__name__)


def setup_required_item(content_type: str) -> MetaItem:
    return {
        "id": "setup-required",
        "type": content_type,
        "name": "Setup Required",
        "poster": ADDON_LOGO,
        "description": "Please visit the configuration page to add catalogs.",
    }


class CatalogDispatcher:
    """Resolve a namespaced catalog id and return its items.

    Every failure degrades to ``{"metas": []}``; the internal
    :meth:`dispatch` keeps the failure kind for callers that need it.
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        mdblist: MDBListClient,
        posters: PosterResolver,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._mdblist = mdblist
        self._posters = posters
        self._rng = rng

    async def handle_catalog_request(
        self,
        request: CatalogRequest | dict[str, Any],
        sources: Sequence[Source],
        randomized_ids: Collection[str],
        *,
        provider_api_key: str | None = None,
        poster_api_key: str | None = None,
    ) -> dict[str, list[MetaItem]]:
        try:
            outcome = await self.dispatch(
                request,
                sources,
                randomized_ids,
                provider_api_key=provider_api_key,
            )
            metas = outcome.value_or([])
            if metas:
                metas = list(self._posters.resolve_posters(metas, poster_api_key))
            return {"metas": metas}
        except Exception:
            logger.exception("Error handling catalog request %s", request)
            return {"metas": []}

    async def dispatch(
        self,
        request: CatalogRequest | dict[str, Any],
        sources: Sequence[Source],
        randomized_ids: Collection[str],
        *,
        provider_api_key: str | None = None,
    ) -> FetchOutcome[list[MetaItem]]:
        if not isinstance(request, CatalogRequest):
            request = CatalogRequest.model_validate(request)
        logger.debug("Catalog request for type %s, id %s", request.type, request.id)

        if request.id == DEFAULT_CATALOG_ID:
            return FetchOutcome.ok([setup_required_item(request.type)])

        parts = split_catalog_id(request.id)
        if parts is None:
            logger.warning("Invalid catalog ID format: %s", request.id)
            return FetchOutcome.failed(FailureKind.NOT_FOUND, "malformed catalog id")
        source_id, sub_catalog_id = parts

        if source_id == PROVIDER_NAMESPACE:
            return await self._dispatch_provider(
                request,
                sub_catalog_id,
                sources,
                randomized_ids,
                provider_api_key=provider_api_key,
            )

        source = next((entry for entry in sources if entry.id == source_id), None)
        if source is None:
            logger.warning("Source %s not found in user catalogs", source_id)
            return FetchOutcome.failed(FailureKind.NOT_FOUND, "unknown source")

        if source.find_catalog(request.type, sub_catalog_id) is None:
            logger.warning(
                "Catalog %s of type %s not found in source %s",
                sub_catalog_id,
                request.type,
                source_id,
            )
            return FetchOutcome.failed(FailureKind.NOT_FOUND, "unknown sub-catalog")

        outcome = await self._fetcher.fetch_catalog_items(
            source, request.type, sub_catalog_id, request.extra
        )
        if not outcome.fetched or outcome.value is None:
            return outcome

        metas = outcome.value
        for meta in metas:
            meta["sourceAddon"] = source_id
        if source_id in randomized_ids:
            shuffle_in_place(metas, self._rng)
        return FetchOutcome.ok(metas)

    async def _dispatch_provider(
        self,
        request: CatalogRequest,
        sub_catalog_id: str,
        sources: Sequence[Source],
        randomized_ids: Collection[str],
        *,
        provider_api_key: str | None,
    ) -> FetchOutcome[list[MetaItem]]:
        list_id = parse_list_id(sub_catalog_id)
        if list_id is None:
            return FetchOutcome.failed(FailureKind.NOT_FOUND, "missing list id")

        source_id = list_source_id(list_id)
        api_key = provider_api_key
        if not api_key:
            source = next((entry for entry in sources if entry.id == source_id), None)
            context = source.context if source is not None else None
            api_key = (context or {}).get("apiKey")

        return await self._mdblist.fetch_catalog_outcome(
            list_id,
            api_key,
            content_type=request.type,
            randomize=source_id in randomized_ids,
        )
