"""
Marketplace — Database-agnostic column types

JSON works on both PostgreSQL and SQLite. PydanticJSON converts between the
stored JSON document and typed value objects at the storage boundary, so the
rest of the code never handles raw dicts for bundles or delivery envelopes.
"""
from typing import Any

from pydantic import TypeAdapter
from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator


class PydanticJSON(TypeDecorator):
    impl = JSON
    cache_ok = True

    def __init__(self, value_type: Any, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.value_type = value_type
        self.adapter = TypeAdapter(value_type)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        # Validate first so plain dicts and model instances are accepted alike.
        value = self.adapter.validate_python(value)
        return self.adapter.dump_python(value, mode="json", by_alias=True)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self.adapter.validate_python(value)

    def coerce_compared_value(self, op, value):
        return JSON()
