"""Utility helpers for the AIOCatalogs service."""

from __future__ import annotations

import random
from typing import MutableSequence, TypeVar

T = TypeVar("T")

MANIFEST_FILENAME = "manifest.json"
CATALOG_ID_SEPARATOR = "_"


def normalize_endpoint(url: str) -> str:
    """Return the addon base URL with exactly one trailing slash.

    A trailing ``manifest.json`` is stripped first, so both
    ``https://host/addon/manifest.json`` and ``https://host/addon`` become
    ``https://host/addon/``.
    """

    endpoint = (url or "").strip()
    if endpoint.endswith(MANIFEST_FILENAME):
        endpoint = endpoint[: -len(MANIFEST_FILENAME)]
    endpoint = endpoint.rstrip("/")
    return f"{endpoint}/"


def manifest_url(url: str) -> str:
    """Return the manifest URL for an addon base or manifest URL."""

    return f"{normalize_endpoint(url)}{MANIFEST_FILENAME}"


def is_search_catalog(catalog_id: object) -> bool:
    """Search catalogs only answer queries and never list content."""

    return "search" in str(catalog_id or "").lower()


def namespaced_catalog_id(source_id: str, catalog_id: str) -> str:
    return f"{source_id}{CATALOG_ID_SEPARATOR}{catalog_id}"


def split_catalog_id(catalog_id: str) -> tuple[str, str] | None:
    """Split a namespaced catalog id on its first separator.

    Returns ``None`` when the id is not namespaced or either half is empty.
    """

    source_id, separator, sub_id = (catalog_id or "").partition(CATALOG_ID_SEPARATOR)
    if not separator or not source_id or not sub_id:
        return None
    return source_id, sub_id


def shuffle_in_place(
    items: MutableSequence[T], rng: random.Random | None = None
) -> MutableSequence[T]:
    """Fisher-Yates shuffle: one swap per index from the end down to 1."""

    generator = rng or random
    for index in range(len(items) - 1, 0, -1):
        swap = generator.randint(0, index)
        items[index], items[swap] = items[swap], items[index]
    return items
