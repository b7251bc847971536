"""Relational field types.

A relational field wires an Association between the owning collection's
model and a target collection's model, adding the foreign key column to
whichever table holds it. When the target collection is not defined yet the
field is parked on the database and bound as soon as the target appears.
"""

from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.types import TypeEngine

from nocobase.core.logging import get_logger
from nocobase.domain.services import camelize, pluralize, singularize
from nocobase.infrastructure.persistence.fields.field import Field
from nocobase.infrastructure.persistence.model import ID_TYPE, Association, Attribute, RecordModel

if TYPE_CHECKING:
    from nocobase.infrastructure.persistence.collection import Collection

logger = get_logger(__name__)


def _key_type(model: RecordModel, key: str) -> TypeEngine:
    attribute = model.raw_attributes.get(key)
    return attribute.type if attribute is not None else ID_TYPE


class RelationField(Field):
    """Base class of the association fields."""

    is_relation = True

    def __init__(self, options: dict[str, Any], collection: "Collection") -> None:
        super().__init__(options, collection)
        self.association: Optional[Association] = None
        self._added_foreign_key = False

    @property
    def target(self) -> str:
        return self.options.get("target") or self.default_target()

    def default_target(self) -> str:
        return self.name

    @property
    def foreign_key(self) -> str:
        return self.options.get("foreignKey") or self.default_foreign_key()

    def default_foreign_key(self) -> str:
        raise NotImplementedError

    def target_collection(self) -> Optional["Collection"]:
        return self.database.get_collection(self.target)

    def attribute(self) -> Attribute:
        raise TypeError(f"relation field {self.name} has no column of its own")

    def bind(self) -> bool:
        """Wire the association, or park the field until its target is defined.

        Returns:
            True if the association was wired.
        """
        target = self.target_collection()
        if target is None:
            self.database.add_pending_field(self)
            logger.debug(
                "Relation target not defined yet",
                collection=self.collection.name,
                field=self.name,
                target=self.target,
            )
            return False

        self.association = self.build_association(target)
        self.collection.model.associations[self.name] = self.association
        return True

    def build_association(self, target: "Collection") -> Association:
        raise NotImplementedError

    def unbind(self) -> None:
        self.database.remove_pending_field(self)
        association = self.association
        if association is None:
            return

        if self.collection.model.associations.get(self.name) is association:
            del self.collection.model.associations[self.name]
        self.association = None

        if self._added_foreign_key:
            self._added_foreign_key = False
            self._drop_foreign_key(association)

    def _add_foreign_key(self, model: RecordModel, key: str, key_type: TypeEngine) -> None:
        if model.has_attribute(key):
            return
        model.add_attribute(Attribute(key, key_type))
        self._added_foreign_key = True

    def _drop_foreign_key(self, association: Association) -> None:
        model = association.foreign_key_model
        key = association.foreign_key
        if model.collection is not None and model.collection.has_field(key):
            return
        if self.database.foreign_key_in_use(model, key):
            return
        model.remove_attribute(key)
        if model.collection is not None:
            model.collection.refresh_indexes()

    async def exists_in_db(self, transaction: Any = None) -> bool:
        if self.association is None:
            return False
        model = self.association.foreign_key_model
        return await self.database.column_exists(
            model.table_name, self.association.foreign_key, transaction=transaction
        )

    async def remove_from_db(self, transaction: Any = None) -> None:
        self.collection.remove_field(self.name)


class BelongsToField(RelationField):
    """Many-to-one: the foreign key lives on this collection."""

    def default_target(self) -> str:
        return pluralize(self.name)

    @property
    def target_key(self) -> str:
        return self.options.get("targetKey") or "id"

    def default_foreign_key(self) -> str:
        return camelize(f"{singularize(self.name)}_{self.target_key}")

    def build_association(self, target: "Collection") -> Association:
        self._add_foreign_key(
            self.collection.model,
            self.foreign_key,
            _key_type(target.model, self.target_key),
        )
        return Association(
            name=self.name,
            type=self.type,
            source=self.collection.model,
            target=target.model,
            foreign_key=self.foreign_key,
            source_key=self.foreign_key,
            target_key=self.target_key,
        )

    async def remove_from_db(self, transaction: Any = None) -> None:
        association = self.association
        if association is not None and await self.exists_in_db(transaction=transaction):
            await self.database.drop_column(
                self.collection.table_name, association.foreign_key, transaction=transaction
            )
        self.collection.remove_field(self.name)


class HasManyField(RelationField):
    """One-to-many: the foreign key lives on the target collection."""

    @property
    def source_key(self) -> str:
        return self.options.get("sourceKey") or self.collection.model.primary_key_attribute or "id"

    def default_foreign_key(self) -> str:
        return camelize(f"{singularize(self.collection.name)}_{self.source_key}")

    def build_association(self, target: "Collection") -> Association:
        self._add_foreign_key(
            target.model,
            self.foreign_key,
            _key_type(self.collection.model, self.source_key),
        )
        return Association(
            name=self.name,
            type=self.type,
            source=self.collection.model,
            target=target.model,
            foreign_key=self.foreign_key,
            source_key=self.source_key,
            target_key=target.model.primary_key_attribute or "id",
        )


class HasOneField(HasManyField):
    """One-to-one: the foreign key lives on the target collection."""

    def default_target(self) -> str:
        return pluralize(self.name)


class BelongsToManyField(RelationField):
    """Many-to-many through a join collection.

    The join collection defaults to the camelized, sorted pair of collection
    names (``posts`` + ``tags`` -> ``postsTags``) and is defined on demand.
    """

    @property
    def source_key(self) -> str:
        return self.options.get("sourceKey") or self.collection.model.primary_key_attribute or "id"

    @property
    def target_key(self) -> str:
        return self.options.get("targetKey") or "id"

    @property
    def through(self) -> str:
        return self.options.get("through") or camelize(
            "_".join(sorted([self.collection.name, self.target]))
        )

    def default_foreign_key(self) -> str:
        return camelize(f"{singularize(self.collection.name)}_{self.source_key}")

    @property
    def other_key(self) -> str:
        return self.options.get("otherKey") or camelize(
            f"{singularize(self.target)}_{self.target_key}"
        )

    def build_association(self, target: "Collection") -> Association:
        through = self.database.get_collection(self.through)
        if through is None:
            through = self.database.collection({"name": self.through})
            logger.debug(
                "Join collection defined",
                collection=self.collection.name,
                field=self.name,
                through=self.through,
            )
        through.model.is_through = True

        model = through.model
        if not model.has_attribute(self.foreign_key):
            model.add_attribute(
                Attribute(self.foreign_key, _key_type(self.collection.model, self.source_key))
            )
        if not model.has_attribute(self.other_key):
            model.add_attribute(
                Attribute(self.other_key, _key_type(target.model, self.target_key))
            )
        through.add_index({"fields": sorted([self.foreign_key, self.other_key]), "unique": True})

        return Association(
            name=self.name,
            type=self.type,
            source=self.collection.model,
            target=target.model,
            foreign_key=self.foreign_key,
            source_key=self.source_key,
            target_key=self.target_key,
            through=model,
            other_key=self.other_key,
        )
