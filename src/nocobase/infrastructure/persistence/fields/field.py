"""Base field type.

A field is one named, typed member of a collection. Binding a field wires it
into the collection's RecordModel (a column, an association, a hook);
unbinding reverses that.
"""

from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.types import TypeEngine

from nocobase.core.logging import get_logger
from nocobase.infrastructure.persistence.model import Attribute

if TYPE_CHECKING:
    from nocobase.infrastructure.persistence.collection import Collection
    from nocobase.infrastructure.persistence.database import Database

logger = get_logger(__name__)


class Field:
    """A field bound to one collection.

    Attributes:
        name: Field name, also the column name for scalar fields.
        type: Registered type name (``string``, ``belongsTo``, ...).
        options: The declaration the field was built from.
        collection: Owning collection.
    """

    is_relation = False

    def __init__(self, options: dict[str, Any], collection: "Collection") -> None:
        self.options = dict(options)
        self.collection = collection
        self.name: str = self.options["name"]
        self.type: str = self.options["type"]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.collection.name}.{self.name}>"

    @property
    def database(self) -> "Database":
        return self.collection.database

    @property
    def is_inherited(self) -> bool:
        """Whether this field was copied from a parent collection."""
        return bool(self.options.get("inherit"))

    @property
    def is_primary_key(self) -> bool:
        return bool(self.options.get("primaryKey"))

    def get(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    @property
    def data_type(self) -> Optional[TypeEngine]:
        """Column type, or None for fields without a column of their own."""
        return None

    def type_to_string(self) -> str:
        """Type signature compared when an inherited field is redefined."""
        data_type = self.data_type
        return str(data_type) if data_type is not None else self.type

    def attribute(self) -> Attribute:
        return Attribute(
            name=self.name,
            type=self.data_type,
            primary_key=self.is_primary_key,
            autoincrement=bool(self.options.get("autoIncrement")),
            nullable=self.options.get("allowNull", True),
            default=self.default_value(),
            unique=bool(self.options.get("unique")),
        )

    def default_value(self) -> Any:
        return self.options.get("defaultValue")

    def bind(self) -> None:
        """Add the column (and its single-column index) to the model."""
        self.collection.model.add_attribute(self.attribute())
        if self.options.get("index"):
            self.collection.add_index([self.name])

    def unbind(self) -> None:
        """Remove the column and every index that referenced it."""
        self.collection.model.remove_attribute(self.name)
        self.collection.refresh_indexes()

    async def exists_in_db(self, transaction: Any = None) -> bool:
        """Whether the physical table currently has this column."""
        return await self.database.column_exists(
            self.collection.table_name, self.name, transaction=transaction
        )

    async def remove_from_db(self, transaction: Any = None) -> None:
        """Drop the column if it exists, then remove the field from its collection."""
        if await self.exists_in_db(transaction=transaction):
            await self.database.drop_column(
                self.collection.table_name, self.name, transaction=transaction
            )
            logger.info(
                "Column dropped",
                collection=self.collection.name,
                field=self.name,
            )
        self.collection.remove_field(self.name)
