"""Tests for the source and user configuration models."""

from __future__ import annotations

from app.models import FailureKind, FetchOutcome, Source, SubCatalog, UserCatalogConfig


def make_source(source_id: str, *catalog_ids: str, **extra) -> Source:
    return Source(
        id=source_id,
        name=f"{source_id.title()} Addon",
        endpoint=f"https://{source_id}.example.com/",
        catalogs=[
            SubCatalog(type="movie", id=catalog_id, name=catalog_id.title())
            for catalog_id in catalog_ids or ("top",)
        ],
        **extra,
    )


def test_source_payload_uses_wire_aliases() -> None:
    source = make_source("a", custom_name="Mine", id_prefixes=["tt"])

    payload = source.to_payload()

    assert payload["customName"] == "Mine"
    assert payload["idPrefixes"] == ["tt"]
    assert "behaviorHints" not in payload
    assert Source.model_validate(payload).custom_name == "Mine"


def test_sub_catalog_keeps_unknown_fields() -> None:
    catalog = SubCatalog.model_validate(
        {"type": "movie", "id": "top", "name": "Top", "extra": [{"name": "skip"}]}
    )

    assert catalog.to_manifest_entry()["extra"] == [{"name": "skip"}]


def test_content_catalogs_skip_search() -> None:
    source = make_source("a", "top", "search")

    assert [catalog.id for catalog in source.content_catalogs] == ["top"]


def test_from_payload_follows_stored_order_and_appends_missing() -> None:
    payload = {
        "catalogs": [
            make_source("a").to_payload(),
            make_source("b").to_payload(),
            make_source("c").to_payload(),
        ],
        "catalogOrder": ["c", "ghost", "a"],
        "randomizedCatalogs": ["a", "ghost"],
    }

    config = UserCatalogConfig.from_payload(payload)

    assert config.display_order == ["c", "a", "b"]
    assert config.randomized == {"a"}


def test_from_payload_tolerates_empty_documents() -> None:
    config = UserCatalogConfig.from_payload(None)

    assert config.ordered_sources == []
    assert config.to_payload() == {
        "catalogs": [],
        "catalogOrder": [],
        "randomizedCatalogs": [],
    }


def test_upsert_replaces_in_place_and_keeps_custom_name() -> None:
    config = UserCatalogConfig()
    assert config.upsert(make_source("a")) is True
    assert config.upsert(make_source("b")) is True
    config.rename("a", "Favourites")

    refreshed = make_source("a", "top", "popular")
    assert config.upsert(refreshed) is False

    assert config.display_order == ["a", "b"]
    stored = config.get("a")
    assert stored is not None
    assert stored.custom_name == "Favourites"
    assert [catalog.id for catalog in stored.catalogs] == ["top", "popular"]


def test_remove_drops_randomize_flag() -> None:
    config = UserCatalogConfig()
    config.upsert(make_source("a"))
    config.toggle_randomized("a")

    assert config.remove("a") is True
    assert config.remove("a") is False
    assert config.randomized == set()
    assert config.to_payload()["randomizedCatalogs"] == []


def test_move_respects_bounds() -> None:
    config = UserCatalogConfig()
    for source_id in ("a", "b", "c"):
        config.upsert(make_source(source_id))

    assert config.move("c", -1) is True
    assert config.display_order == ["a", "c", "b"]
    assert config.move("a", -1) is False
    assert config.move("b", 1) is False
    assert config.move("missing", 1) is False
    assert config.display_order == ["a", "c", "b"]


def test_rename_blank_clears_custom_name() -> None:
    config = UserCatalogConfig()
    config.upsert(make_source("a"))

    config.rename("a", "  Mine  ")
    assert config.get("a").display_name == "Mine"  # type: ignore[union-attr]

    config.rename("a", "   ")
    assert config.get("a").custom_name is None  # type: ignore[union-attr]
    assert config.rename("missing", "x") is False


def test_toggle_randomized_round_trips() -> None:
    config = UserCatalogConfig()
    config.upsert(make_source("a"))

    assert config.toggle_randomized("a") is True
    assert config.randomized_ids() == frozenset({"a"})
    assert config.toggle_randomized("a") is False
    assert config.toggle_randomized("missing") is None
    assert config.randomized_ids() == frozenset()


def test_fetch_outcome_degrades_failures() -> None:
    failed: FetchOutcome[list[int]] = FetchOutcome.failed(FailureKind.UNAVAILABLE, "timeout")

    assert failed.fetched is False
    assert failed.value_or([]) == []
    assert FetchOutcome.ok([1]).value_or([]) == [1]
