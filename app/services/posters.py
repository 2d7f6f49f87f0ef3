"""Poster substitution through the RatingPosterDB service."""

from __future__ import annotations

import logging
from typing import Sequence

from ..cache import TTLCache
from ..config import Settings
from ..models import MetaItem

logger = logging.getLogger(__name__)


class PosterResolver:
    """Rewrite meta poster URLs to RPDB posters when the user has a key."""

    _POSTER_PATH = "/{api_key}/imdb/poster-default/{media_id}.jpg?fallback=true"

    def __init__(self, settings: Settings, *, cache: TTLCache[str] | None = None) -> None:
        self._base_url = settings.rpdb_base_url
        self._cache: TTLCache[str] = (
            cache if cache is not None else TTLCache(settings.rpdb_cache_seconds)
        )

    @property
    def cache(self) -> TTLCache[str]:
        return self._cache

    def build_url(self, api_key: str, media_id: str) -> str:
        return self._base_url + self._POSTER_PATH.format(api_key=api_key, media_id=media_id)

    def poster_url(
        self, original_url: str | None, api_key: str | None, media_id: str
    ) -> str:
        """Return the RPDB poster for ``media_id`` or the original URL."""

        if not api_key or not original_url:
            return original_url or ""

        try:
            cache_key = (media_id, api_key)
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached.value
            url = self.build_url(api_key, media_id)
            self._cache.set(cache_key, url)
            return url
        except Exception:
            logger.exception("Error constructing RPDB poster URL for %s", media_id)
            return original_url

    def resolve_posters(
        self, metas: Sequence[MetaItem], api_key: str | None
    ) -> Sequence[MetaItem]:
        """Rewrite posters in place; returns ``metas`` itself."""

        if not api_key:
            return metas

        for meta in metas:
            media_id = meta.get("id")
            poster = meta.get("poster")
            if media_id and poster:
                meta["poster"] = self.poster_url(poster, api_key, str(media_id))
        return metas
