"""Compose the merged virtual manifest for a user's catalog sources."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..config import Settings
from ..models import Source
from ..utils import is_search_catalog, namespaced_catalog_id

logger = logging.getLogger(__name__)

ADDON_ID = "community.aiocatalogs"
ADDON_LOGO = "https://i.imgur.com/fRPYeIV.png"
ADDON_BACKGROUND = "https://i.imgur.com/QPPXf5T.jpeg"

DEFAULT_CATALOG_ID = "aiocatalogs-default"
ERROR_CATALOG_ID = "error"
SUPPORTED_RESOURCES = ("catalog",)


def manifest_id(user_id: str) -> str:
    return f"{ADDON_ID}.{user_id}"


def _base_manifest(
    user_id: str, settings: Settings, *, description: str | None = None
) -> dict[str, Any]:
    return {
        "id": manifest_id(user_id),
        "version": settings.addon_version,
        "name": settings.app_name,
        "description": description or settings.addon_description,
        "logo": ADDON_LOGO,
        "background": ADDON_BACKGROUND,
        "resources": [],
        "types": [],
        "catalogs": [],
        "behaviorHints": {
            "configurable": True,
            "configurationRequired": False,
        },
        "idPrefixes": [],
    }


def placeholder_manifest(user_id: str, settings: Settings) -> dict[str, Any]:
    """Manifest served while a user has not added any sources yet."""

    manifest = _base_manifest(user_id, settings)
    manifest["catalogs"] = [
        {
            "id": DEFAULT_CATALOG_ID,
            "type": "movie",
            "name": f"{settings.app_name} (No catalogs added yet)",
        }
    ]
    manifest["types"] = ["movie"]
    manifest["resources"] = list(SUPPORTED_RESOURCES)
    return manifest


def fallback_manifest(user_id: str, settings: Settings) -> dict[str, Any]:
    """Manifest served when composition fails unexpectedly."""

    manifest = _base_manifest(
        user_id, settings, description="Error loading configuration"
    )
    manifest["catalogs"] = [
        {
            "id": ERROR_CATALOG_ID,
            "type": "movie",
            "name": "Error: Configuration could not be loaded",
        }
    ]
    manifest["types"] = ["movie"]
    manifest["resources"] = list(SUPPORTED_RESOURCES)
    return manifest


def compose_manifest(
    user_id: str, sources: Sequence[Source], *, settings: Settings
) -> dict[str, Any]:
    """Return one manifest listing every sub-catalog of ``sources``.

    Sub-catalog ids are prefixed with their source id so entries from
    different sources cannot collide; the first occurrence of a prefixed id
    wins. Never raises: failures produce :func:`fallback_manifest`.
    """

    try:
        if not sources:
            logger.debug("User %s has no sources, serving placeholder manifest", user_id)
            return placeholder_manifest(user_id, settings)

        logger.info(
            "Building manifest for user %s with %d catalog sources",
            user_id,
            len(sources),
        )
        manifest = _base_manifest(user_id, settings)
        catalogs: list[dict[str, Any]] = []
        emitted: set[str] = set()
        types: list[str] = []
        resources: list[str] = list(SUPPORTED_RESOURCES)

        for source in sources:
            for catalog in source.catalogs:
                if is_search_catalog(catalog.id):
                    continue
                prefixed_id = namespaced_catalog_id(source.id, catalog.id)
                if prefixed_id in emitted:
                    continue
                emitted.add(prefixed_id)
                entry = catalog.to_manifest_entry()
                entry.update(
                    id=prefixed_id,
                    source=source.id,
                    name=source.custom_name or catalog.name,
                )
                catalogs.append(entry)
                if catalog.type not in types:
                    types.append(catalog.type)

            for resource in source.resources:
                resource_name = resource.get("name") if isinstance(resource, dict) else resource
                if resource_name in SUPPORTED_RESOURCES and resource_name not in resources:
                    resources.append(resource_name)

        manifest["catalogs"] = catalogs
        manifest["types"] = types
        manifest["resources"] = resources
        return manifest
    except Exception:
        logger.exception("Error building manifest for user %s", user_id)
        return fallback_manifest(user_id, settings)
