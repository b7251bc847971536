"""Scalar field types backed by a single column."""

import uuid
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Double,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.types import TypeEngine

from nocobase.infrastructure.persistence.fields.field import Field
from nocobase.infrastructure.persistence.model import ID_TYPE


class StringField(Field):
    @property
    def data_type(self) -> TypeEngine:
        return String(self.options.get("length", 255))


class TextField(Field):
    @property
    def data_type(self) -> TypeEngine:
        return Text()


class IntegerField(Field):
    @property
    def data_type(self) -> TypeEngine:
        return Integer()


class BigIntField(Field):
    @property
    def data_type(self) -> TypeEngine:
        # auto-increment keys must stay INTEGER on SQLite
        if self.is_primary_key and self.options.get("autoIncrement"):
            return ID_TYPE
        return BigInteger()


class FloatField(Field):
    @property
    def data_type(self) -> TypeEngine:
        return Float()


class DoubleField(Field):
    @property
    def data_type(self) -> TypeEngine:
        return Double()


class BooleanField(Field):
    @property
    def data_type(self) -> TypeEngine:
        return Boolean()


class DateField(Field):
    @property
    def data_type(self) -> TypeEngine:
        return DateTime(timezone=True)


class JsonField(Field):
    @property
    def data_type(self) -> TypeEngine:
        return JSON()


class UuidField(Field):
    """String column filled with a random UUID unless a value is given.

    Set ``autoFill: False`` to leave missing values empty.
    """

    @property
    def data_type(self) -> TypeEngine:
        return String(36)

    def default_value(self) -> Optional[Any]:
        default = self.options.get("defaultValue")
        if default is not None or self.options.get("autoFill") is False:
            return default
        return lambda: str(uuid.uuid4())
