"""
JSON column type carrying typed bundle values.
"""
from sqlalchemy import Column, Integer, MetaData, Table
from sqlalchemy.dialects import postgresql, sqlite

from marketplace.db.types import PydanticJSON
from marketplace.models import CatalogItem
from marketplace.schemas.bundle import BundledItem


def test_column_type_builds_and_keeps_its_value_type():
    column_type = PydanticJSON(list[BundledItem])
    assert column_type.value_type == list[BundledItem]
    Table("bundles", MetaData(), Column("id", Integer, primary_key=True), Column("items", column_type))

    assert isinstance(CatalogItem.__table__.c.items_json.type, PydanticJSON)


def test_bind_accepts_dicts_and_models_and_results_are_typed():
    column_type = PydanticJSON(list[BundledItem])
    dialect = sqlite.dialect()

    stored = column_type.process_bind_param(
        [{"itemId": 2494, "count": 1, "name": "Demon Armor"}, BundledItem(item_id=2160, count=5, name="Crystal Coin")],
        dialect,
    )
    assert stored == [
        {"itemId": 2494, "count": 1, "name": "Demon Armor"},
        {"itemId": 2160, "count": 5, "name": "Crystal Coin"},
    ]

    loaded = column_type.process_result_value(stored, postgresql.dialect())
    assert loaded[1] == BundledItem(item_id=2160, count=5, name="Crystal Coin")
    assert column_type.process_bind_param(None, dialect) is None
