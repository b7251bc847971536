"""Schema descriptors and the generic record type.

A collection does not generate a model class. It owns a RecordModel: an
ordered, mutable description of its columns, indexes and associations that
renders a SQLAlchemy Table on demand. Rows are returned as Record instances
bound to that descriptor.
"""

import copy
from collections.abc import MutableMapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterator, Optional

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, MetaData, Table
from sqlalchemy.types import TypeEngine

if TYPE_CHECKING:
    from nocobase.infrastructure.persistence.collection import Collection

# Auto-increment primary key; SQLite only aliases rowid for INTEGER
ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")

TIMESTAMP_ATTRIBUTES = ("createdAt", "updatedAt")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def id_attribute() -> "Attribute":
    """Implicit primary key added when ``autoGenId`` is on."""
    return Attribute("id", ID_TYPE, primary_key=True, autoincrement=True, nullable=False)


def timestamp_attributes() -> list["Attribute"]:
    return [Attribute(name, DateTime(timezone=True)) for name in TIMESTAMP_ATTRIBUTES]


@dataclass
class Attribute:
    """One physical column of a model."""

    name: str
    type: TypeEngine
    primary_key: bool = False
    autoincrement: bool = False
    nullable: bool = True
    default: Any = None
    unique: bool = False

    def to_column(self, for_alter: bool = False) -> Column:
        """Build a fresh Column (a Column can only belong to one Table).

        Args:
            for_alter: Columns added to an existing table are always nullable,
                       existing rows have no value for them.
        """
        kwargs: dict[str, Any] = {
            "primary_key": self.primary_key,
            "nullable": True if for_alter else (self.nullable and not self.primary_key),
            "unique": (self.unique and not for_alter) or None,
        }
        if self.primary_key:
            kwargs["autoincrement"] = self.autoincrement
        return Column(self.name, self.type, **kwargs)

    def default_value(self) -> Any:
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)


@dataclass
class Association:
    """A relation wired by a relational field.

    ``foreign_key`` lives on the source model for belongsTo, on the target
    model for hasOne/hasMany, and on the through model for belongsToMany.
    """

    name: str
    type: str
    source: "RecordModel"
    target: "RecordModel"
    foreign_key: str
    source_key: str
    target_key: str
    through: Optional["RecordModel"] = None
    other_key: Optional[str] = None

    @property
    def foreign_key_model(self) -> "RecordModel":
        """The model whose table holds ``foreign_key``."""
        if self.type == "belongsTo":
            return self.source
        if self.type == "belongsToMany":
            return self.through
        return self.target


class RecordModel:
    """Schema descriptor of one physical table."""

    def __init__(
        self,
        name: str,
        table_name: str,
        record_class: Optional[type["Record"]] = None,
        timestamps: bool = True,
    ) -> None:
        self.name = name
        self.table_name = table_name
        self.record_class = record_class or Record
        self.timestamps = timestamps
        self.raw_attributes: dict[str, Attribute] = {}
        self.indexes: list[dict[str, Any]] = []
        self.associations: dict[str, Association] = {}
        self.is_through = False
        self.collection: Optional["Collection"] = None
        self._table: Optional[Table] = None

    def __repr__(self) -> str:
        return f"<RecordModel {self.name} table={self.table_name}>"

    @property
    def primary_key_attributes(self) -> list[str]:
        return [name for name, attr in self.raw_attributes.items() if attr.primary_key]

    @property
    def primary_key_attribute(self) -> Optional[str]:
        keys = self.primary_key_attributes
        return keys[0] if keys else None

    def has_attribute(self, name: str) -> bool:
        return name in self.raw_attributes

    def add_attribute(self, attribute: Attribute) -> None:
        self.raw_attributes[attribute.name] = attribute
        self.invalidate()

    def remove_attribute(self, name: str) -> Optional[Attribute]:
        attribute = self.raw_attributes.pop(name, None)
        self.invalidate()
        return attribute

    def set_indexes(self, indexes: list[dict[str, Any]]) -> None:
        self.indexes = indexes
        self.invalidate()

    def invalidate(self) -> None:
        """Drop the cached Table after any structural change."""
        self._table = None

    @property
    def table(self) -> Table:
        """SQLAlchemy Table for the current attribute set."""
        if self._table is None:
            self._table = self.build_table(MetaData())
        return self._table

    def build_table(self, metadata: MetaData) -> Table:
        table = Table(
            self.table_name,
            metadata,
            *(attr.to_column() for attr in self.raw_attributes.values()),
        )
        for index in self.indexes:
            Index(
                index["name"],
                *(table.c[name] for name in index["fields"]),
                unique=bool(index.get("unique")),
            )
        return table

    def build(self, values: Optional[dict[str, Any]] = None) -> "Record":
        """New, unsaved record with defaults and timestamps applied."""
        values = values or {}
        record = self.record_class(self)
        for name, attribute in self.raw_attributes.items():
            if name in values:
                record[name] = values[name]
            elif attribute.default is not None:
                record[name] = attribute.default_value()
        if self.timestamps:
            now = utcnow()
            for name in TIMESTAMP_ATTRIBUTES:
                if name in self.raw_attributes and record.get(name) is None:
                    record[name] = now
        return record

    def from_row(self, row: dict[str, Any]) -> "Record":
        """Record for a row read from the table."""
        record = self.record_class(self, row)
        record.mark_persisted()
        return record


class Record(MutableMapping):
    """A row of a collection.

    Behaves like a dict of attribute values. It also remembers the values
    last read from or written to storage, so hooks can tell what changed,
    and carries loaded associations (appends, tree children) separately
    from column values.
    """

    def __init__(self, model: RecordModel, values: Optional[dict[str, Any]] = None) -> None:
        self.model = model
        self.data_values: dict[str, Any] = dict(values or {})
        self.associated: dict[str, Any] = {}
        self._previous_data_values: dict[str, Any] = {}
        self.is_new_record = True

    def __repr__(self) -> str:
        return f"<Record {self.model.name} {self.data_values!r}>"

    def __getitem__(self, key: str) -> Any:
        if key in self.data_values:
            return self.data_values[key]
        if key in self.associated:
            return self.associated[key]
        raise KeyError(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.data_values[key] = value

    def __delitem__(self, key: str) -> None:
        del self.data_values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.data_values)

    def __len__(self) -> int:
        return len(self.data_values)

    @property
    def collection(self) -> "Collection":
        return self.model.collection

    @property
    def primary_key(self) -> Any:
        pk = self.model.primary_key_attribute
        return self.data_values.get(pk) if pk else None

    def previous(self, key: Optional[str] = None, default: Any = None) -> Any:
        """Last persisted value of ``key`` (or a copy of all of them)."""
        if key is None:
            return dict(self._previous_data_values)
        return self._previous_data_values.get(key, default)

    def has_previous(self, key: str) -> bool:
        return key in self._previous_data_values

    def changed(self) -> list[str]:
        """Attribute names whose value differs from the persisted snapshot."""
        return [
            key
            for key, value in self.data_values.items()
            if key in self.model.raw_attributes
            and (
                key not in self._previous_data_values
                or self._previous_data_values[key] != value
            )
        ]

    def mark_persisted(self) -> None:
        self._previous_data_values = dict(self.data_values)
        self.is_new_record = False

    def set_association(self, name: str, value: Any) -> None:
        self.associated[name] = value

    def to_dict(self) -> dict[str, Any]:
        """Plain dict of values and loaded associations, recursively."""
        result = dict(self.data_values)
        for name, value in self.associated.items():
            if isinstance(value, list):
                result[name] = [item.to_dict() for item in value]
            elif isinstance(value, Record):
                result[name] = value.to_dict()
            else:
                result[name] = value
        return result

    async def save(
        self,
        transaction: Any = None,
        logging: Any = None,
        hooks: bool = True,
    ) -> "Record":
        """Persist changed attributes through the owning collection's repository."""
        return await self.collection.repository.save(
            self, transaction=transaction, logging=logging, hooks=hooks
        )


