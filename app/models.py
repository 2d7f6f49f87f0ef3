"""Pydantic models describing catalog sources and user configuration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Iterable, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .utils import is_search_catalog

T = TypeVar("T")

MetaItem = dict[str, Any]


class SubCatalog(BaseModel):
    """One browsable list advertised inside an upstream manifest."""

    model_config = ConfigDict(extra="allow")

    type: str
    id: str
    name: str = ""

    def to_manifest_entry(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Source(BaseModel):
    """An upstream catalog addon a user has added."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str = ""
    version: str = "0.0.1"
    endpoint: str
    resources: list[Any] = Field(default_factory=lambda: ["catalog"])
    types: list[str] = Field(default_factory=lambda: ["movie", "series"])
    catalogs: list[SubCatalog] = Field(default_factory=list)
    custom_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("customName", "custom_name"),
        serialization_alias="customName",
    )
    id_prefixes: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("idPrefixes", "id_prefixes"),
        serialization_alias="idPrefixes",
    )
    behavior_hints: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("behaviorHints", "behavior_hints"),
        serialization_alias="behaviorHints",
    )
    context: dict[str, Any] | None = None

    @property
    def display_name(self) -> str:
        return self.custom_name or self.name

    @property
    def content_catalogs(self) -> list[SubCatalog]:
        """Sub-catalogs that list content (search-only catalogs excluded)."""

        return [catalog for catalog in self.catalogs if not is_search_catalog(catalog.id)]

    def find_catalog(self, content_type: str, catalog_id: str) -> SubCatalog | None:
        for catalog in self.catalogs:
            if catalog.type == content_type and catalog.id == catalog_id:
                return catalog
        return None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UserCatalogConfig(BaseModel):
    """Ordered sources for one user plus the ids flagged for shuffling.

    Sources live in a single insertion-ordered mapping whose order is the
    display order; removing a source also drops its randomize flag.
    """

    sources: dict[str, Source] = Field(default_factory=dict)
    randomized: set[str] = Field(default_factory=set)

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "UserCatalogConfig":
        """Load the stored document, tolerating the legacy list-and-order layout."""

        data = payload or {}
        raw_sources = data.get("catalogs") or []
        parsed: dict[str, Source] = {}
        for entry in raw_sources:
            if not isinstance(entry, dict):
                continue
            source = Source.model_validate(entry)
            parsed.setdefault(source.id, source)

        ordered: dict[str, Source] = {}
        for source_id in data.get("catalogOrder") or []:
            source = parsed.get(source_id)
            if source is not None and source_id not in ordered:
                ordered[source_id] = source
        for source_id, source in parsed.items():
            ordered.setdefault(source_id, source)

        randomized = {
            str(source_id)
            for source_id in data.get("randomizedCatalogs") or []
            if source_id in ordered
        }
        return cls(sources=ordered, randomized=randomized)

    def to_payload(self) -> dict[str, Any]:
        order = list(self.sources)
        return {
            "catalogs": [source.to_payload() for source in self.sources.values()],
            "catalogOrder": order,
            "randomizedCatalogs": [
                source_id for source_id in order if source_id in self.randomized
            ],
        }

    @property
    def ordered_sources(self) -> list[Source]:
        return list(self.sources.values())

    @property
    def display_order(self) -> list[str]:
        return list(self.sources)

    def get(self, source_id: str) -> Source | None:
        return self.sources.get(source_id)

    def upsert(self, source: Source) -> bool:
        """Insert or replace ``source``; return True when it was new.

        Replacing keeps the existing position and custom name.
        """

        existing = self.sources.get(source.id)
        if existing is not None:
            if source.custom_name is None:
                source = source.model_copy(update={"custom_name": existing.custom_name})
            self.sources[source.id] = source
            return False
        self.sources[source.id] = source
        return True

    def remove(self, source_id: str) -> bool:
        if self.sources.pop(source_id, None) is None:
            return False
        self.randomized.discard(source_id)
        return True

    def move(self, source_id: str, offset: int) -> bool:
        """Shift a source by ``offset`` positions; False when out of range."""

        order = list(self.sources)
        if source_id not in self.sources:
            return False
        index = order.index(source_id)
        target = index + offset
        if offset == 0 or target < 0 or target >= len(order):
            return False
        order.insert(target, order.pop(index))
        self.sources = {key: self.sources[key] for key in order}
        return True

    def rename(self, source_id: str, name: str | None) -> bool:
        source = self.sources.get(source_id)
        if source is None:
            return False
        cleaned = (name or "").strip() or None
        self.sources[source_id] = source.model_copy(update={"custom_name": cleaned})
        return True

    def toggle_randomized(self, source_id: str) -> bool | None:
        """Flip the shuffle flag; return the new state or ``None`` if unknown."""

        if source_id not in self.sources:
            return None
        if source_id in self.randomized:
            self.randomized.discard(source_id)
            return False
        self.randomized.add(source_id)
        return True

    def randomized_ids(self, candidates: Iterable[str] | None = None) -> frozenset[str]:
        ids = self.randomized if candidates is None else self.randomized & set(candidates)
        return frozenset(source_id for source_id in ids if source_id in self.sources)


class CatalogRequest(BaseModel):
    """An inbound ``catalog/{type}/{id}.json`` request."""

    type: str
    id: str
    extra: dict[str, Any] = Field(default_factory=dict)


class FailureKind(str, Enum):
    """Why an upstream fetch produced no usable value."""

    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    MISSING_CREDENTIALS = "missing_credentials"


@dataclass(slots=True)
class FetchOutcome(Generic[T]):
    """Result of a best-effort fetch.

    ``value`` is only meaningful when ``failure`` is ``None``; callers at
    the protocol boundary degrade failures to an empty payload.
    """

    value: T | None = None
    failure: FailureKind | None = None
    detail: str | None = None

    @property
    def fetched(self) -> bool:
        return self.failure is None

    @classmethod
    def ok(cls, value: T) -> "FetchOutcome[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, kind: FailureKind, detail: str | None = None) -> "FetchOutcome[T]":
        return cls(value=None, failure=kind, detail=detail)

    def value_or(self, default: T) -> T:
        if self.failure is not None or self.value is None:
            return default
        return self.value
