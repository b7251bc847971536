"""Database: registry of collections on top of a SQLAlchemy async engine.

A Database owns every piece of schema state: collections by name and by
table name, their models, the inheritance map, lifecycle hooks, the field
type and repository registries and the relation fields waiting for their
target collection. All of it starts empty and is cleared by close().
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncGenerator, Callable, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import Executable

from nocobase.core.config import Settings, get_settings
from nocobase.core.exceptions import CollectionNotFoundError, UnknownFieldTypeError
from nocobase.core.hooks import HookEvent, HookRegistry
from nocobase.core.logging import configure_logging, get_logger
from nocobase.domain.entities import SqlLogger
from nocobase.infrastructure.persistence.collection import Collection
from nocobase.infrastructure.persistence.fields import FIELD_TYPES, Field
from nocobase.infrastructure.persistence.inheritance_map import InheritanceMap
from nocobase.infrastructure.persistence.inherited_collection import InheritedCollection
from nocobase.infrastructure.persistence.model import Record, RecordModel
from nocobase.infrastructure.persistence.repositories import Repository
from nocobase.infrastructure.persistence.table_builder import TableBuilder

if TYPE_CHECKING:
    from nocobase.infrastructure.persistence.fields import RelationField

logger = get_logger(__name__)


class Database:
    """Collection registry and connection manager.

    Example:
        db = Database()
        db.collection({"name": "users", "fields": [{"type": "string", "name": "name"}]})
        await db.sync()
        user = await db.get_repository("users").create({"name": "ada"})
        await db.close()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            settings: Configuration; defaults to the cached environment settings.
            engine: Existing engine to use instead of creating one from settings.
        """
        self.settings = settings or get_settings()
        if not structlog.is_configured():
            configure_logging(self.settings)

        self._engine = engine
        self.collections: dict[str, Collection] = {}
        self.table_name_collection_map: dict[str, Collection] = {}
        self.models: dict[str, RecordModel] = {}
        self.inheritance_map = InheritanceMap()
        self.hooks = HookRegistry()
        self.field_types: dict[str, type[Field]] = dict(FIELD_TYPES)
        self.repositories: dict[str, type[Repository]] = {}
        self.record_classes: dict[str, type[Record]] = {}
        self.pending_fields: dict[str, list["RelationField"]] = {}

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the database engine.

        Returns:
            AsyncEngine: SQLAlchemy async engine instance.
        """
        if self._engine is None:
            url = self.settings.database_url
            if self.settings.is_memory_database:
                # every connection must see the same in-memory database
                self._engine = create_async_engine(
                    url,
                    echo=self.settings.db_echo,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            else:
                self._ensure_sqlite_directory(url)
                self._engine = create_async_engine(
                    url,
                    echo=self.settings.db_echo,
                    pool_size=self.settings.db_pool_size,
                    max_overflow=self.settings.db_max_overflow,
                    pool_timeout=self.settings.db_pool_timeout,
                    pool_recycle=self.settings.db_pool_recycle,
                    connect_args={"check_same_thread": False}
                    if url.startswith("sqlite")
                    else {},
                )

            logger.info(
                "Database engine created",
                database_url=self._engine.url.render_as_string(hide_password=True),
                dialect=self._engine.dialect.name,
            )
        return self._engine

    @staticmethod
    def _ensure_sqlite_directory(url: str) -> None:
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database:
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    @property
    def max_identifier_length(self) -> int:
        return self.settings.identifier_max_length

    def get_table_prefix(self) -> str:
        return self.settings.table_prefix

    def in_dialect(self, *names: str) -> bool:
        return make_url(self.settings.database_url).get_backend_name() in names

    # Registries

    def collection(self, options: dict[str, Any]) -> Collection:
        """Define (or redefine) a collection.

        Args:
            options: Collection declaration. ``inherits`` selects an InheritedCollection.

        Returns:
            The registered collection.
        """
        if options.get("inherits"):
            return InheritedCollection(options, self)
        return Collection(options, self)

    def register_collection(self, collection: Collection) -> None:
        """Index a collection by name and table name, replacing any previous one."""
        previous = self.collections.get(collection.name)
        if previous is not None and previous is not collection:
            previous.detach_hooks()
            self.table_name_collection_map.pop(previous.table_name, None)
            logger.debug("Collection replaced", collection=collection.name)

        self.collections[collection.name] = collection
        self.table_name_collection_map[collection.table_name] = collection
        self.models[collection.name] = collection.model

    def after_define_collection(self, collection: Collection) -> None:
        """Bind relation fields that were waiting for this collection."""
        for field in self.pending_fields.pop(collection.name, []):
            owner = field.collection
            if self.collections.get(owner.name) is owner and owner.get_field(field.name) is field:
                field.bind()

        self.hooks.emit(HookEvent.AFTER_DEFINE_COLLECTION, collection, collection=collection.name)

    def get_collection(self, name: str) -> Optional[Collection]:
        return self.collections.get(name)

    def has_collection(self, name: str) -> bool:
        return name in self.collections

    def get_repository(self, name: str) -> Repository:
        """Repository of a collection.

        Raises:
            CollectionNotFoundError: If no collection has that name.
        """
        collection = self.collections.get(name)
        if collection is None:
            raise CollectionNotFoundError(f'collection "{name}" is not defined')
        return collection.repository

    def remove_collection(self, name: str) -> Optional[Collection]:
        """Unregister a collection; its table is left alone."""
        collection = self.collections.pop(name, None)
        if collection is None:
            return None

        collection.detach_hooks()
        self.table_name_collection_map.pop(collection.table_name, None)
        self.models.pop(name, None)
        self.inheritance_map.remove_node(name)
        for target, fields in list(self.pending_fields.items()):
            remaining = [field for field in fields if field.collection is not collection]
            if remaining:
                self.pending_fields[target] = remaining
            else:
                del self.pending_fields[target]

        self.hooks.emit(HookEvent.AFTER_REMOVE_COLLECTION, collection, collection=name)
        logger.info("Collection removed", collection=name)
        return collection

    def build_field(self, options: dict[str, Any], collection: Collection) -> Field:
        """Instantiate the registered field class for ``options["type"]``.

        Raises:
            UnknownFieldTypeError: If the type is not registered.
        """
        field_type = options.get("type")
        field_class = self.field_types.get(field_type)
        if field_class is None:
            raise UnknownFieldTypeError(
                f'unknown field type "{field_type}" for field "{options.get("name")}"'
            )
        return field_class(options, collection)

    def register_field_types(self, field_types: dict[str, type[Field]]) -> None:
        self.field_types.update(field_types)

    def register_repositories(self, repositories: dict[str, type[Repository]]) -> None:
        self.repositories.update(repositories)

    def register_models(self, models: dict[str, type[Record]]) -> None:
        self.record_classes.update(models)

    def add_pending_field(self, field: "RelationField") -> None:
        fields = self.pending_fields.setdefault(field.target, [])
        if field not in fields:
            fields.append(field)

    def remove_pending_field(self, field: "RelationField") -> None:
        for target, fields in list(self.pending_fields.items()):
            if field in fields:
                fields.remove(field)
                if not fields:
                    del self.pending_fields[target]

    def foreign_key_in_use(self, model: RecordModel, key: str) -> bool:
        """Whether any wired association still stores ``key`` on ``model``."""
        for candidate in self.models.values():
            for association in candidate.associations.values():
                if association.foreign_key_model is model and association.foreign_key == key:
                    return True
        return False

    def on(
        self,
        event: str,
        callback: Callable,
        collection: Optional[str] = None,
        priority: int = 0,
    ) -> str:
        """Register a lifecycle hook; record events can be scoped to a collection."""
        return self.hooks.register(event, callback, collection=collection, priority=priority)

    # Connections and SQL

    @asynccontextmanager
    async def connection(
        self, transaction: Optional[AsyncConnection] = None
    ) -> AsyncGenerator[AsyncConnection, None]:
        """Yield the caller's transaction, or a new one committed on exit.

        Example:
            async with db.connection() as conn:
                await repository.create({"name": "a"}, transaction=conn)
                await repository.create({"name": "b"}, transaction=conn)
        """
        if transaction is not None:
            yield transaction
            return
        async with self.engine.begin() as conn:
            yield conn

    async def execute(
        self,
        statement: Executable,
        params: Optional[dict[str, Any]] = None,
        transaction: Optional[AsyncConnection] = None,
        logging: SqlLogger = None,
    ) -> Any:
        """Execute a statement, reporting its SQL to the operation's logger."""
        async with self.connection(transaction) as conn:
            if logging:
                sql = str(statement.compile(dialect=conn.dialect))
                if callable(logging):
                    logging(sql)
                else:
                    logger.debug("Executing SQL", sql=sql)
            return await conn.execute(statement, params)

    async def execute_sql(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
        transaction: Optional[AsyncConnection] = None,
        logging: SqlLogger = None,
    ) -> Any:
        """Run raw SQL.

        Returns:
            Rows as mappings for queries, otherwise the affected row count.
        """
        async with self.connection(transaction) as conn:
            result = await self.execute(text(sql), params, transaction=conn, logging=logging)
            if result.returns_rows:
                return [dict(row) for row in result.mappings()]
            return result.rowcount

    async def run_sync(
        self, fn: Callable[..., Any], *args: Any, transaction: Optional[AsyncConnection] = None
    ) -> Any:
        async with self.connection(transaction) as conn:
            return await conn.run_sync(fn, *args)

    # Physical schema

    async def sync(
        self,
        force: bool = False,
        alter: Optional[dict[str, Any]] = None,
        transaction: Optional[AsyncConnection] = None,
    ) -> None:
        """Sync every registered model with the database."""
        await self.sync_models(
            list(self.models.values()), force=force, alter=alter, transaction=transaction
        )
        logger.info("Database synced", model_count=len(self.models))

    async def sync_models(
        self,
        models: list[RecordModel],
        force: bool = False,
        alter: Optional[dict[str, Any]] = None,
        transaction: Optional[AsyncConnection] = None,
    ) -> None:
        async with self.connection(transaction) as conn:
            for model in models:
                await conn.run_sync(TableBuilder.sync_model, model, force, alter)

    async def table_exists(
        self, table_name: str, transaction: Optional[AsyncConnection] = None
    ) -> bool:
        return await self.run_sync(TableBuilder.table_exists, table_name, transaction=transaction)

    async def column_exists(
        self,
        table_name: str,
        column_name: str,
        transaction: Optional[AsyncConnection] = None,
    ) -> bool:
        return await self.run_sync(
            TableBuilder.column_exists, table_name, column_name, transaction=transaction
        )

    async def drop_table(
        self, table_name: str, transaction: Optional[AsyncConnection] = None
    ) -> None:
        await self.run_sync(TableBuilder.drop_table, table_name, transaction=transaction)

    async def drop_column(
        self,
        table_name: str,
        column_name: str,
        transaction: Optional[AsyncConnection] = None,
    ) -> None:
        await self.run_sync(
            TableBuilder.drop_column, table_name, column_name, transaction=transaction
        )

    async def collection_exists_in_db(
        self, name: str, transaction: Optional[AsyncConnection] = None
    ) -> bool:
        """Whether the named collection's table exists; False for unknown names."""
        collection = self.collections.get(name)
        if collection is None:
            return False
        return await collection.exists_in_db(transaction=transaction)

    async def clean(self, drop: bool = False, transaction: Optional[AsyncConnection] = None) -> None:
        """With ``drop``, drop every table in the database."""
        if drop:
            await self.run_sync(TableBuilder.drop_all, transaction=transaction)

    async def close(self) -> None:
        """Clear every registry and dispose the engine."""
        for collection in list(self.collections.values()):
            collection.detach_hooks()
        self.collections.clear()
        self.table_name_collection_map.clear()
        self.models.clear()
        self.inheritance_map.clear()
        self.pending_fields.clear()
        self.hooks.clear(include_builtin=True)

        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info("Database engine disposed")
