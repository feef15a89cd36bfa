# tests/base/test_metadata.py
from typing import Any, Dict, List, Set

import pytest
from pydantic import ValidationError

from async_liteorm import Table
from async_liteorm.base.exceptions import EntityDefinitionException
from async_liteorm.base.metadata import (
    ROWID,
    EntityMeta,
    PropRow,
    entity,
    get_entity_meta,
    primary,
    prop,
    to_snake_case,
)
from async_liteorm.base.types import StorageType
from tests.conftest import Card, DeckCard, Note


def test_to_snake_case():
    assert to_snake_case("nextReview") == "next_review"
    assert to_snake_case("front") == "front"
    assert to_snake_case("already_snake") == "already_snake"
    assert to_snake_case("HTTPStatus") == "httpstatus"


def test_storage_types_from_annotations():
    meta = Card.__meta__
    assert meta.name == "card"
    assert meta.primary.name == "_id"
    assert meta.primary.type is StorageType.TEXT
    assert meta.prop["front"].type is StorageType.TEXT
    assert meta.prop["front"].null is False
    assert meta.prop["back"].null is True
    assert meta.prop["next_review"].type is StorageType.DATE
    assert meta.prop["tags"].type is StorageType.STRING_ARRAY
    assert meta.prop["stats"].type is StorageType.JSON
    assert meta.prop["order"].type is StorageType.INTEGER


def test_flag_names_are_derived_from_the_column():
    assert Card.__meta__.prop["next_review"].index == "next_review_idx"

    @entity()
    class Profile:
        emailAddress: str = prop(unique=True)

    row = Profile.__meta__.prop["email_address"]
    assert row.unique == "email_address_unique_idx"
    assert Profile.__meta__.name == "profile"


def test_more_annotation_mappings():
    @entity(name="misc")
    class Misc:
        flag: bool
        ratio: float
        blob: bytes
        labels: Set[str]
        numbers: List[int]
        extra: Dict[str, Any]

    p = Misc.__meta__.prop
    assert p["flag"].type is StorageType.BOOLEAN
    assert p["ratio"].type is StorageType.REAL
    assert p["blob"].type is StorageType.BLOB
    assert p["labels"].type is StorageType.STRING_ARRAY
    assert p["numbers"].type is StorageType.JSON
    assert p["extra"].type is StorageType.JSON
    # no declared key: rows are addressed by ROWID
    assert Misc.__meta__.primary is None
    assert Misc.__meta__.primary_key == ROWID


def test_type_aliases_are_normalized():
    assert prop(type="string").type is StorageType.TEXT
    assert prop(type="Number").type is StorageType.REAL
    assert prop(type="StringArray").type is StorageType.STRING_ARRAY
    with pytest.raises(ValidationError):
        prop(type="varchar")


def test_autoincrement_forces_integer():
    row = primary(autoincrement=True)
    assert row.type is StorageType.INTEGER
    assert Note.__meta__.primary.autoincrement is True


def test_autoincrement_on_text_key_is_rejected():
    with pytest.raises(EntityDefinitionException):
        EntityMeta(
            name="bad",
            primary={"name": "id", "type": "TEXT", "autoincrement": True},
            prop={},
        )


def test_composite_primary_key():
    meta = DeckCard.__meta__
    assert meta.primary.names == ("deck", "position")
    assert meta.primary_key == ROWID
    assert meta.without_rowid is True


def test_unknown_index_column_is_rejected():
    with pytest.raises(EntityDefinitionException):

        @entity(index=[["front", "missing"]])
        class Broken:
            front: str


def test_composite_index_names():
    @entity(name="review", unique=[["cardId", "day"]], index=["day"])
    class Review:
        card_id: str
        day: int

    meta = Review.__meta__
    assert meta.unique[0].name == "card_id_day_idx"
    assert meta.unique[0].keys == ("card_id", "day")
    assert meta.index[0].name == "day_idx"


def test_invalid_collation_is_rejected():
    with pytest.raises(ValidationError):
        prop(collate="NOCASE; DROP TABLE card")


def test_timestamp_columns():
    meta = Card.__meta__
    assert meta.created_at and meta.updated_at
    expanded = meta.with_timestamps()
    assert expanded.prop["created_at"].type is StorageType.DATE
    assert expanded.prop["updated_at"].on_change is not None
    # the declared metadata itself is left untouched
    assert "created_at" not in meta.prop


def test_references_a_table():
    cards = Table(Card)
    row = prop(references=cards)
    assert row.references == "card(_id)"
    assert row.type is StorageType.TEXT

    row = prop(references=(cards, "order"))
    assert row.references == 'card("order")'
    assert row.type is StorageType.INTEGER


def test_transform_mapping_is_accepted():
    row = prop(transform={"set": str.upper})
    assert row.transform.set is str.upper
    assert row.transform.get is None


def test_metadata_is_frozen():
    with pytest.raises(ValidationError):
        Card.__meta__.name = "other"


def test_get_entity_meta():
    assert get_entity_meta(Card) is Card.__meta__
    assert get_entity_meta(Card.__meta__) is Card.__meta__
    with pytest.raises(EntityDefinitionException):
        get_entity_meta(object)


def test_untyped_attribute_without_hint_is_rejected():
    with pytest.raises(EntityDefinitionException):

        @entity()
        class Loose:
            value = prop()


def test_prop_row_defaults():
    row = PropRow()
    assert row.null is False
    assert row.unique is None and row.index is None
