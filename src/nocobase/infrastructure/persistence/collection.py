"""Collection: a named, mutable schema definition mapped to one table.

A collection owns its fields, a RecordModel describing the physical table,
and a repository. Field changes are wired into the model through the
collection's field hooks and propagated to child collections that inherit
them.
"""

import copy
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

from nocobase.core.exceptions import FieldNotFoundError, FieldTypeConflictError
from nocobase.core.hooks import HookEvent, HookRegistry
from nocobase.core.logging import get_logger
from nocobase.domain.services import check_identifier, md5, underscore
from nocobase.infrastructure.persistence.fields import Field
from nocobase.infrastructure.persistence.model import (
    RecordModel,
    id_attribute,
    timestamp_attributes,
)
from nocobase.infrastructure.persistence.repositories import Repository
from nocobase.infrastructure.persistence.tree import AdjacencyListTree

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection

    from nocobase.infrastructure.persistence.database import Database

logger = get_logger(__name__)


def merge_options(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``override`` into a copy of ``base``; lists are replaced."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge_options(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class Collection:
    """A named collection of typed fields backed by one table.

    Example:
        posts = db.collection({
            "name": "posts",
            "fields": [
                {"type": "string", "name": "title"},
                {"type": "belongsToMany", "name": "tags"},
            ],
        })
        await posts.sync()
        await posts.repository.create({"title": "hello", "tags": [{"name": "news"}]})
    """

    def __init__(self, options: dict[str, Any], database: "Database") -> None:
        """Validate, register and populate a collection.

        Args:
            options: Declaration (``name``, ``tableName``, ``fields``, ``tree``, ...).
            database: Registry the collection belongs to.

        Raises:
            IdentifierError: If the name or table name is not a valid identifier.
        """
        self.database = database
        self.options = dict(options)
        check_identifier(self.options.get("name"), database.max_identifier_length)
        if self.options.get("tableName"):
            check_identifier(self.options["tableName"], database.max_identifier_length)
        self.table_name = check_identifier(
            database.get_table_prefix() + (self.options.get("tableName") or self.name),
            database.max_identifier_length,
        )

        self.fields: dict[str, Field] = {}
        self.field_hooks = HookRegistry()
        self.repository: Repository
        self._hook_ids: list[str] = []

        self.bind_field_events()
        self.model_init()
        self.database.register_collection(self)

        if self.options.get("tree"):
            AdjacencyListTree(self).install()

        self.init_fields()

        for index in self.options.get("indexes") or []:
            self.add_index(index)

        self.set_repository(self.options.get("repository"))
        self.set_sortable(self.options.get("sortable"))

        self.database.after_define_collection(self)

        logger.debug(
            "Collection defined",
            collection=self.name,
            table_name=self.table_name,
            field_count=len(self.fields),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    @property
    def name(self) -> str:
        return self.options["name"]

    @property
    def filter_target_key(self) -> Optional[str]:
        return self.options.get("filterTargetKey") or self.model.primary_key_attribute

    @property
    def title_field(self) -> Optional[str]:
        return self.options.get("titleField") or self.model.primary_key_attribute

    # Setup

    def model_init(self) -> None:
        """Create the RecordModel, or adopt a join model defined on demand."""
        existing = self.database.models.get(self.name)
        if existing is not None and existing.is_through:
            self.model = existing
            self.model.collection = self
            return

        record_class = self.options.get("model")
        if isinstance(record_class, str):
            record_class = self.database.record_classes.get(record_class)

        self.model = RecordModel(
            self.name,
            self.table_name,
            record_class=record_class,
            timestamps=self.options.get("timestamps", True),
        )
        self.model.collection = self

        if self.options.get("autoGenId", True):
            self.model.add_attribute(id_attribute())
        if self.model.timestamps:
            for attribute in timestamp_attributes():
                self.model.add_attribute(attribute)

    def init_fields(self) -> None:
        self.set_fields(self.options.get("fields") or [])

    def bind_field_events(self) -> None:
        self.field_hooks.register(
            HookEvent.FIELD_AFTER_ADD, lambda field: field.bind(), is_builtin=True
        )
        self.field_hooks.register(
            HookEvent.FIELD_AFTER_REMOVE, lambda field: field.unbind(), is_builtin=True
        )

    def set_repository(self, repository: Any = None) -> None:
        """Install a repository class, a registered repository name, or the default."""
        repository_class = Repository
        if isinstance(repository, str):
            repository_class = self.database.repositories.get(repository, Repository)
        elif repository is not None:
            repository_class = repository
        self.repository = repository_class(self)

    def set_sortable(self, sortable: Any) -> None:
        """``True`` adds a ``sort`` field, a string names it, a mapping configures it."""
        if not sortable:
            return
        if sortable is True:
            self.set_field("sort", {"type": "sort", "hidden": True})
        elif isinstance(sortable, str):
            self.set_field(sortable, {"type": "sort", "hidden": True})
        elif isinstance(sortable, Mapping):
            options = dict(sortable)
            name = options.pop("name", None) or "sort"
            self.set_field(name, {"type": "sort", "hidden": True, **options})

    # Lifecycle hooks

    def on(self, event: str, callback: Callable, priority: int = 0) -> str:
        """Register a record hook scoped to this collection.

        Returns:
            The hook id, released by off() or when the collection is removed.
        """
        hook_id = self.database.hooks.register(
            event, callback, collection=self.name, priority=priority
        )
        self._hook_ids.append(hook_id)
        return hook_id

    def off(self, hook_id: str) -> None:
        if hook_id in self._hook_ids:
            self._hook_ids.remove(hook_id)
        self.database.hooks.unregister(hook_id)

    def detach_hooks(self) -> None:
        for hook_id in list(self._hook_ids):
            self.off(hook_id)

    # Fields

    def for_each_field(self, callback: Callable[[Field], Any]) -> None:
        for field in list(self.fields.values()):
            callback(field)

    def find_field(self, predicate: Callable[[Field], bool]) -> Optional[Field]:
        return next((field for field in self.fields.values() if predicate(field)), None)

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def get_field(self, name: str) -> Optional[Field]:
        return self.fields.get(name)

    def add_field(self, name: str, options: dict[str, Any]) -> Field:
        return self.set_field(name, options)

    def set_field(self, name: str, options: dict[str, Any]) -> Field:
        """Define or replace a field and propagate it to inheriting children.

        Args:
            name: Field name.
            options: Field declaration (``type`` plus type-specific options).

        Returns:
            The new field.

        Raises:
            IdentifierError: If the name is not a valid identifier.
            UnknownFieldTypeError: If the type is not registered.
            FieldTypeConflictError: If the field replaces an inherited field
                of another type, here or in a child collection.
        """
        check_identifier(name, self.database.max_identifier_length)
        options = {key: value for key, value in options.items() if key != "name"}

        field = self.database.build_field({**options, "name": name}, self)

        old_field = self.fields.get(name)
        if (
            old_field is not None
            and old_field.is_inherited
            and field.type_to_string() != old_field.type_to_string()
        ):
            raise FieldTypeConflictError(self.name, name, field.type, old_field.type)

        if self.is_parent():
            self._assert_inheritable(name, field)

        if self.options.get("autoGenId", True) and options.get("primaryKey"):
            self.model.remove_attribute("id")

        self.remove_field(name)
        self.fields[name] = field
        self.field_hooks.emit(HookEvent.FIELD_AFTER_ADD, field)

        if self.is_parent():
            for child in self._children():
                existing = child.get_field(name)
                if existing is None or existing.is_inherited:
                    child.set_field(name, {**options, "inherit": True})

        return field

    def _assert_inheritable(self, name: str, field: Field) -> None:
        """Fail if a child holds an inherited copy of ``name`` of another type."""
        for child in self._children():
            existing = child.get_field(name)
            if existing is not None and not existing.is_inherited:
                continue
            if existing is not None and existing.type_to_string() != field.type_to_string():
                raise FieldTypeConflictError(child.name, name, field.type, existing.type)
            if child.is_parent():
                child._assert_inheritable(name, field)

    def _children(self) -> list["Collection"]:
        children = []
        for child_name in self.database.inheritance_map.get_children(self.name):
            child = self.database.get_collection(child_name)
            if child is not None:
                children.append(child)
        return children

    def set_fields(self, fields: Iterable[dict[str, Any]], reset_fields: bool = True) -> None:
        """Apply field declarations in order, optionally clearing existing fields first."""
        if fields is None:
            return
        if reset_fields:
            self.reset_fields()
        for options in fields:
            options = dict(options)
            name = options.pop("name", None)
            self.add_field(name, options)

    def reset_fields(self) -> None:
        for name in list(self.fields):
            self.remove_field(name)

    def remove_field(self, name: str) -> Optional[Field]:
        """Remove a field; no-op returning None when it does not exist."""
        field = self.fields.pop(name, None)
        if field is None:
            return None

        if self.is_parent():
            for child in self._children():
                existing = child.get_field(name)
                if existing is not None and existing.is_inherited:
                    child.remove_field(name)

        self.field_hooks.emit(HookEvent.FIELD_AFTER_REMOVE, field)
        return field

    def update_field(self, name: str, options: dict[str, Any]) -> Field:
        """Redefine an existing field, renaming it when ``options["name"]`` differs.

        Raises:
            FieldNotFoundError: If the field does not exist.
        """
        if not self.has_field(name):
            raise FieldNotFoundError(name)

        new_name = options.get("name") or name
        if new_name != name:
            self.remove_field(name)
        return self.set_field(new_name, options)

    def update_options(
        self, options: dict[str, Any], merge: Optional[Mapping[str, Any]] = None
    ) -> "Collection":
        """Merge new options, apply their fields without resetting and reinstall the repository."""
        new_options = merge_options(self.options, options)
        if merge:
            new_options = merge_options(new_options, merge)

        self.database.hooks.emit(
            HookEvent.BEFORE_UPDATE_COLLECTION, self, new_options, collection=self.name
        )
        self.options = new_options

        self.set_fields(options.get("fields"), reset_fields=False)
        self.set_repository(options.get("repository"))

        self.database.hooks.emit(
            HookEvent.AFTER_UPDATE_COLLECTION, self, collection=self.name
        )
        return self

    # Indexes

    def index_name(self, fields: list[str]) -> str:
        name = underscore(f"{self.model.table_name}_{'_'.join(fields)}")
        if len(name) > self.database.max_identifier_length:
            name = "i_" + md5(name)
        return name

    def add_index(self, index: Any) -> None:
        """Add an index given as a column name, a list of names or ``{fields, unique}``.

        Duplicates of the primary key or of an existing index, including
        prefixes of them, are ignored.
        """
        if not index:
            return
        if isinstance(index, str):
            item: dict[str, Any] = {"fields": [index]}
        elif isinstance(index, (list, tuple)):
            item = {"fields": list(index)}
        elif isinstance(index, Mapping) and index.get("fields"):
            item = {**index, "fields": list(index["fields"])}
        else:
            return

        fields = item["fields"]
        prefix = ",".join(fields) + ","

        primary_key = self.model.primary_key_attributes
        if primary_key == fields or ",".join(primary_key).startswith(prefix):
            return
        for existing in self.model.indexes:
            if existing["fields"] == fields or ",".join(existing["fields"]).startswith(prefix):
                return

        item["name"] = item.get("name") or self.index_name(fields)
        item["unique"] = bool(item.get("unique"))
        self.model.set_indexes([*self.model.indexes, item])
        self.refresh_indexes()

    def remove_index(self, fields: Any) -> None:
        if not fields:
            return
        fields = [fields] if isinstance(fields, str) else list(fields)
        self.model.set_indexes([i for i in self.model.indexes if i["fields"] != fields])
        self.refresh_indexes()

    def refresh_indexes(self) -> None:
        """Drop indexes that reference columns the model no longer has."""
        self.model.set_indexes([
            index
            for index in self.model.indexes
            if all(self.model.has_attribute(name) for name in index["fields"])
        ])

    # Physical schema

    async def sync(
        self,
        force: bool = False,
        alter: Optional[dict[str, Any]] = None,
        transaction: Optional["AsyncConnection"] = None,
    ) -> None:
        """Sync this model and the models its associations reach, nothing else."""
        models = [self.model]
        for association in self.model.associations.values():
            models.append(association.target)
            if association.through is not None:
                models.append(association.through)

        unique = list({id(model): model for model in models}.values())
        await self.database.sync_models(unique, force=force, alter=alter, transaction=transaction)

    async def exists_in_db(self, transaction: Optional["AsyncConnection"] = None) -> bool:
        return await self.database.table_exists(self.table_name, transaction=transaction)

    async def remove_from_db(self, transaction: Optional["AsyncConnection"] = None) -> None:
        """Drop the table if it exists, then unregister the collection."""
        if await self.exists_in_db(transaction=transaction):
            await self.database.drop_table(self.table_name, transaction=transaction)
        self.remove()

    def remove(self) -> None:
        self.database.remove_collection(self.name)

    # Inheritance

    def is_parent(self) -> bool:
        return self.database.inheritance_map.is_parent_node(self.name)

    def is_inherited(self) -> bool:
        return False
