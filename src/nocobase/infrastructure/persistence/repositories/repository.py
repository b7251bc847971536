"""Repository for collection record operations.

Provides CRUD operations for a collection's table using SQLAlchemy Core,
since tables are described at runtime and not mapped to ORM classes.
Every operation runs inside the caller's transaction (an AsyncConnection)
or opens its own, and fires the collection's lifecycle hooks.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence

from sqlalchemy import Select, delete, func, insert, select, update
from sqlalchemy.sql.elements import ColumnElement

from nocobase.core.exceptions import AssociationNotFoundError, FilterError
from nocobase.core.hooks import HookEvent
from nocobase.core.logging import get_logger
from nocobase.domain.entities import OperationOptions, SqlLogger
from nocobase.infrastructure.persistence.model import Association, Record, RecordModel, utcnow
from nocobase.infrastructure.persistence.repositories.filter_parser import FilterParser

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection

    from nocobase.infrastructure.persistence.collection import Collection
    from nocobase.infrastructure.persistence.database import Database

logger = get_logger(__name__)

AGGREGATES = frozenset({"count", "max", "min", "sum", "avg"})


class Repository:
    """CRUD operations for one collection."""

    def __init__(self, collection: "Collection") -> None:
        """Initialize the repository for a collection.

        Args:
            collection: The collection whose records this repository manages.
        """
        self.collection = collection

    @property
    def database(self) -> "Database":
        return self.collection.database

    @property
    def model(self) -> RecordModel:
        return self.collection.model

    # Queries

    async def find(
        self,
        filter: Optional[dict[str, Any]] = None,
        where: Any = None,
        filter_by_tk: Any = None,
        attributes: Optional[Sequence[str]] = None,
        sort: Optional[str | Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        appends: Optional[Sequence[str]] = None,
        tree: bool = False,
        hooks: bool = True,
        transaction: Optional["AsyncConnection"] = None,
        logging: SqlLogger = None,
        context: Optional[dict[str, Any]] = None,
    ) -> list[Record]:
        """Find records.

        Args:
            filter: Filter mapping (see FilterParser).
            where: Filter mapping or a ready SQLAlchemy clause, ANDed with ``filter``.
            filter_by_tk: Value (or list of values) of the filter target key.
            attributes: Columns to load; the primary key is always loaded.
            sort: Column names, ``-name`` for descending. Defaults to the primary key.
            limit: Maximum number of records.
            offset: Number of records to skip.
            appends: Associations to load, dotted for nested ones (``posts.tags``).
            tree: Assemble ``children`` from the result set (tree collections).
            hooks: Whether after-find hooks fire.
            transaction: Connection to run in.
            logging: SQL logger for this operation.
            context: Free-form values handed to hooks.

        Returns:
            The matching records.
        """
        async with self.database.connection(transaction) as conn:
            options = OperationOptions(
                transaction=conn,
                logging=logging,
                hooks=hooks,
                tree=tree,
                context=context or {},
            )
            statement = self._select(attributes).where(
                *self._conditions(filter, where, filter_by_tk)
            )
            statement = statement.order_by(*self._order_by(sort))
            if limit is not None:
                statement = statement.limit(limit)
            if offset:
                statement = statement.offset(offset)

            result = await self.database.execute(statement, transaction=conn, logging=logging)
            records = [self.model.from_row(dict(row)) for row in result.mappings()]

            if appends and records:
                await self._load_appends(records, appends, options)

            if hooks:
                await self._trigger(HookEvent.AFTER_FIND, records, options)

        return records

    async def find_one(self, **kwargs: Any) -> Optional[Record]:
        """Find the first matching record. Accepts the arguments of find()."""
        kwargs["limit"] = 1
        records = await self.find(**kwargs)
        return records[0] if records else None

    async def count(
        self,
        filter: Optional[dict[str, Any]] = None,
        where: Any = None,
        filter_by_tk: Any = None,
        transaction: Optional["AsyncConnection"] = None,
        logging: SqlLogger = None,
    ) -> int:
        """Count matching records."""
        return await self.aggregate(
            "count",
            None,
            filter=filter,
            where=where,
            filter_by_tk=filter_by_tk,
            transaction=transaction,
            logging=logging,
        ) or 0

    async def aggregate(
        self,
        method: str,
        field: Optional[str],
        filter: Optional[dict[str, Any]] = None,
        where: Any = None,
        filter_by_tk: Any = None,
        transaction: Optional["AsyncConnection"] = None,
        logging: SqlLogger = None,
    ) -> Any:
        """Compute ``method`` (count, max, min, sum, avg) over a column.

        Raises:
            FilterError: For an unknown method or column.
        """
        if method not in AGGREGATES:
            raise FilterError(f"unknown aggregate {method}")

        table = self.model.table
        if field is None:
            expression = func.count()
        else:
            expression = getattr(func, method)(self._parser().column(field))

        statement = select(expression).select_from(table).where(
            *self._conditions(filter, where, filter_by_tk)
        )
        async with self.database.connection(transaction) as conn:
            result = await self.database.execute(statement, transaction=conn, logging=logging)
            return result.scalar()

    # Writes

    async def create(
        self,
        values: Optional[Mapping[str, Any]] = None,
        hooks: bool = True,
        transaction: Optional["AsyncConnection"] = None,
        logging: SqlLogger = None,
        context: Optional[dict[str, Any]] = None,
    ) -> Record:
        """Create a record, including nested association values.

        Args:
            values: Column values plus association values keyed by association name.
            hooks: Whether lifecycle hooks fire.
            transaction: Connection to run in.
            logging: SQL logger for this operation.
            context: Free-form values handed to hooks.

        Returns:
            The created record.
        """
        column_values, association_values = self._split_values(values or {})
        async with self.database.connection(transaction) as conn:
            options = OperationOptions(
                transaction=conn, logging=logging, hooks=hooks, context=context or {}
            )
            record = self.model.build(column_values)
            return await self._insert(record, association_values, options)

    async def create_many(
        self,
        records: Iterable[Mapping[str, Any]],
        hooks: bool = True,
        transaction: Optional["AsyncConnection"] = None,
        logging: SqlLogger = None,
        context: Optional[dict[str, Any]] = None,
    ) -> list[Record]:
        """Create several records in one transaction, in order."""
        async with self.database.connection(transaction) as conn:
            return [
                await self.create(
                    values,
                    hooks=hooks,
                    transaction=conn,
                    logging=logging,
                    context=context,
                )
                for values in records
            ]

    async def update(
        self,
        values: Mapping[str, Any],
        filter_by_tk: Any = None,
        filter: Optional[dict[str, Any]] = None,
        where: Any = None,
        hooks: bool = True,
        transaction: Optional["AsyncConnection"] = None,
        logging: SqlLogger = None,
        context: Optional[dict[str, Any]] = None,
    ) -> list[Record]:
        """Update matching records one by one, firing update hooks for each.

        Raises:
            FilterError: If no filter, where or filter_by_tk is given.

        Returns:
            The updated records.
        """
        if filter_by_tk is None and not filter and where is None:
            raise FilterError("update requires filter_by_tk, filter or where")

        column_values, association_values = self._split_values(values)
        async with self.database.connection(transaction) as conn:
            options = OperationOptions(
                transaction=conn, logging=logging, hooks=hooks, context=context or {}
            )
            records = await self.find(
                filter=filter,
                where=where,
                filter_by_tk=filter_by_tk,
                hooks=False,
                **options.passthrough(),
            )
            for record in records:
                record.update(column_values)
                await self._resolve_belongs_to(record, association_values, options)
                await self._persist(record, association_values, options)

        logger.debug(
            "Records updated",
            collection=self.collection.name,
            count=len(records),
        )
        return records

    async def save(
        self,
        record: Record,
        hooks: bool = True,
        transaction: Optional["AsyncConnection"] = None,
        logging: SqlLogger = None,
        context: Optional[dict[str, Any]] = None,
    ) -> Record:
        """Insert a new record or persist the changed attributes of a loaded one."""
        async with self.database.connection(transaction) as conn:
            options = OperationOptions(
                transaction=conn, logging=logging, hooks=hooks, context=context or {}
            )
            if record.is_new_record:
                return await self._insert(record, {}, options)
            return await self._persist(record, {}, options)

    async def destroy(
        self,
        filter_by_tk: Any = None,
        filter: Optional[dict[str, Any]] = None,
        where: Any = None,
        hooks: bool = True,
        transaction: Optional["AsyncConnection"] = None,
        logging: SqlLogger = None,
        context: Optional[dict[str, Any]] = None,
    ) -> int:
        """Delete matching records and their many-to-many join rows.

        Raises:
            FilterError: If no filter, where or filter_by_tk is given.

        Returns:
            Number of records deleted.
        """
        if filter_by_tk is None and not filter and where is None:
            raise FilterError("destroy requires filter_by_tk, filter or where")

        async with self.database.connection(transaction) as conn:
            options = OperationOptions(
                transaction=conn, logging=logging, hooks=hooks, context=context or {}
            )
            records = await self.find(
                filter=filter,
                where=where,
                filter_by_tk=filter_by_tk,
                hooks=False,
                **options.passthrough(),
            )
            if not records:
                return 0

            for record in records:
                if hooks:
                    await self._trigger(HookEvent.BEFORE_DESTROY, record, options)

            pk = self._primary_key()
            keys = [record[pk] for record in records]
            table = self.model.table
            await self.database.execute(
                delete(table).where(table.c[pk].in_(keys)), transaction=conn, logging=logging
            )
            await self._unlink_join_rows(records, options)

            for record in records:
                if hooks:
                    await self._trigger(HookEvent.AFTER_DESTROY, record, options)

        logger.info(
            "Records deleted",
            collection=self.collection.name,
            count=len(records),
        )
        return len(records)

    # Internals

    async def _insert(
        self,
        record: Record,
        association_values: dict[str, Any],
        options: OperationOptions,
    ) -> Record:
        await self._resolve_belongs_to(record, association_values, options)
        options.fields = list(record.keys())

        if options.hooks:
            await self._trigger(HookEvent.BEFORE_CREATE, record, options)

        table = self.model.table
        insert_values = {
            name: record[name]
            for name in options.fields
            if name in self.model.raw_attributes and name in record
        }
        result = await self.database.execute(
            insert(table).values(**insert_values),
            transaction=options.transaction,
            logging=options.logging,
        )

        pk = self.model.primary_key_attribute
        if pk and record.get(pk) is None and result.inserted_primary_key:
            record[pk] = result.inserted_primary_key[0]
        record.mark_persisted()

        if options.hooks:
            await self._trigger(HookEvent.AFTER_CREATE, record, options)

        await self._update_associations(record, association_values, options, replace=False)

        if options.hooks:
            await self._trigger(HookEvent.AFTER_CREATE_WITH_ASSOCIATIONS, record, options)

        logger.debug(
            "Record created",
            collection=self.collection.name,
            record_id=record.primary_key,
        )
        return record

    async def _persist(
        self,
        record: Record,
        association_values: dict[str, Any],
        options: OperationOptions,
    ) -> Record:
        if options.hooks:
            await self._trigger(HookEvent.BEFORE_UPDATE, record, options)

        changed = record.changed()
        if changed:
            if (
                self.model.timestamps
                and self.model.has_attribute("updatedAt")
                and "updatedAt" not in changed
            ):
                record["updatedAt"] = utcnow()
                changed.append("updatedAt")

            pk = self._primary_key()
            table = self.model.table
            await self.database.execute(
                update(table)
                .where(table.c[pk] == record.previous(pk, record[pk]))
                .values({name: record[name] for name in changed}),
                transaction=options.transaction,
                logging=options.logging,
            )
        record.mark_persisted()

        await self._update_associations(record, association_values, options, replace=True)

        if options.hooks:
            await self._trigger(HookEvent.AFTER_UPDATE, record, options)
        return record

    async def _trigger(self, event: str, *args: Any) -> None:
        await self.database.hooks.trigger(event, *args, collection=self.collection.name)

    def _parser(self) -> FilterParser:
        return FilterParser(self.model.table)

    def _primary_key(self) -> str:
        pk = self.model.primary_key_attribute
        if pk is None:
            raise FilterError(f'collection "{self.collection.name}" has no primary key')
        return pk

    def _select(self, attributes: Optional[Sequence[str]]) -> Select:
        table = self.model.table
        if not attributes:
            return select(table)

        parser = self._parser()
        names = list(attributes)
        pk = self.model.primary_key_attribute
        if pk and pk not in names:
            names.insert(0, pk)
        return select(*(parser.column(name) for name in names))

    def _conditions(
        self, filter: Optional[dict[str, Any]], where: Any, filter_by_tk: Any
    ) -> list[ColumnElement]:
        parser = self._parser()
        conditions = []

        if filter_by_tk is not None:
            key = self.collection.filter_target_key
            if isinstance(filter_by_tk, (list, tuple, set)):
                conditions.append(parser.column(key).in_(list(filter_by_tk)))
            else:
                conditions.append(parser.column(key) == filter_by_tk)

        for clause in (filter, where):
            if isinstance(clause, Mapping):
                compiled = parser.compile(dict(clause))
                if compiled is not None:
                    conditions.append(compiled)
            elif clause is not None:
                conditions.append(clause)

        return conditions

    def _order_by(self, sort: Optional[str | Sequence[str]]) -> list[ColumnElement]:
        if sort is None:
            pk = self.model.primary_key_attribute
            return [self.model.table.c[pk]] if pk else []

        parser = self._parser()
        names = [sort] if isinstance(sort, str) else list(sort)
        order = []
        for name in names:
            if name.startswith("-"):
                order.append(parser.column(name[1:]).desc())
            else:
                order.append(parser.column(name).asc())
        return order

    def _split_values(
        self, values: Mapping[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Separate column values from nested association values; unknown keys are dropped."""
        column_values: dict[str, Any] = {}
        association_values: dict[str, Any] = {}
        for key, value in values.items():
            if key in self.model.associations:
                association_values[key] = value
            elif key in self.model.raw_attributes:
                column_values[key] = value
        return column_values, association_values

    def _association(self, name: str) -> Association:
        association = self.model.associations.get(name)
        if association is None:
            raise AssociationNotFoundError(
                f'association "{name}" not found on "{self.collection.name}"'
            )
        return association

    @staticmethod
    def _target_repository(association: Association) -> "Repository":
        return association.target.collection.repository

    async def _resolve_belongs_to(
        self,
        record: Record,
        association_values: dict[str, Any],
        options: OperationOptions,
    ) -> None:
        """Set belongsTo foreign keys before the row is written."""
        for name, value in association_values.items():
            association = self.model.associations[name]
            if association.type != "belongsTo":
                continue

            if value is None:
                record[association.foreign_key] = None
                continue

            target = await self._resolve_target(association, value, options)
            record[association.foreign_key] = target[association.target_key]
            record.set_association(name, target)

    async def _resolve_target(
        self, association: Association, value: Any, options: OperationOptions
    ) -> Mapping[str, Any]:
        """Turn a primary key, a mapping or a Record into a target row."""
        if isinstance(value, Record):
            return value
        if isinstance(value, Mapping):
            key = association.target_key
            if value.get(key) is not None:
                return value
            return await self._target_repository(association).create(
                value, hooks=options.hooks, **options.passthrough()
            )
        return {association.target_key: value}

    async def _update_associations(
        self,
        record: Record,
        association_values: dict[str, Any],
        options: OperationOptions,
        replace: bool,
    ) -> None:
        for name, value in association_values.items():
            association = self.model.associations[name]
            if association.type in ("hasMany", "hasOne"):
                await self._set_children(record, association, value, options, replace)
            elif association.type == "belongsToMany":
                await self._set_through(record, association, value, options)

    async def _set_children(
        self,
        record: Record,
        association: Association,
        value: Any,
        options: OperationOptions,
        replace: bool,
    ) -> None:
        """Point the target rows' foreign key at this record.

        On update (and always for hasOne) the association is set, so rows
        no longer listed are detached.
        """
        repository = self._target_repository(association)
        source_value = record[association.source_key]
        target_pk = association.target_key
        items = [] if value is None else value if isinstance(value, (list, tuple)) else [value]

        keep = []
        existing = []
        for item in items:
            if isinstance(item, Mapping) and item.get(target_pk) is None:
                created = await repository.create(
                    {**item, association.foreign_key: source_value},
                    hooks=options.hooks,
                    **options.passthrough(),
                )
                keep.append(created[target_pk])
            elif isinstance(item, Mapping):
                extra = {k: v for k, v in item.items() if k != target_pk}
                if extra:
                    await repository.update(
                        extra,
                        filter_by_tk=item[target_pk],
                        hooks=options.hooks,
                        **options.passthrough(),
                    )
                existing.append(item[target_pk])
            else:
                existing.append(item)

        if existing:
            await repository.update(
                {association.foreign_key: source_value},
                filter={target_pk: existing},
                hooks=options.hooks,
                **options.passthrough(),
            )
            keep.extend(existing)

        if replace or association.type == "hasOne":
            stale = {association.foreign_key: source_value}
            if keep:
                stale = {"$and": [stale, {target_pk: {"$notIn": keep}}]}
            await repository.update(
                {association.foreign_key: None},
                filter=stale,
                hooks=options.hooks,
                **options.passthrough(),
            )

    async def _set_through(
        self,
        record: Record,
        association: Association,
        value: Any,
        options: OperationOptions,
    ) -> None:
        """Replace this record's join rows with the given targets."""
        source_value = record[association.source_key]
        target_keys = []
        for item in value or []:
            target = await self._resolve_target(association, item, options)
            target_keys.append(target[association.target_key])

        through = association.through
        table = through.table
        await self.database.execute(
            delete(table).where(table.c[association.foreign_key] == source_value),
            transaction=options.transaction,
            logging=options.logging,
        )

        repository = through.collection.repository
        for target_key in dict.fromkeys(target_keys):
            await repository.create(
                {association.foreign_key: source_value, association.other_key: target_key},
                hooks=options.hooks,
                **options.passthrough(),
            )

    async def _unlink_join_rows(self, records: list[Record], options: OperationOptions) -> None:
        for association in self.model.associations.values():
            if association.type != "belongsToMany":
                continue
            keys = [record.get(association.source_key) for record in records]
            table = association.through.table
            await self.database.execute(
                delete(table).where(table.c[association.foreign_key].in_(keys)),
                transaction=options.transaction,
                logging=options.logging,
            )

    async def _load_appends(
        self, records: list[Record], appends: Sequence[str], options: OperationOptions
    ) -> None:
        """Load associations for a result set with one query per association."""
        nested: dict[str, list[str]] = {}
        for append in appends:
            head, _, rest = append.partition(".")
            nested.setdefault(head, [])
            if rest:
                nested[head].append(rest)

        for name, sub_appends in nested.items():
            association = self._association(name)
            loader = {
                "belongsTo": self._load_belongs_to,
                "hasOne": self._load_children,
                "hasMany": self._load_children,
                "belongsToMany": self._load_through,
            }[association.type]
            await loader(records, association, sub_appends, options)

    async def _find_targets(
        self,
        association: Association,
        key: str,
        values: list[Any],
        appends: list[str],
        options: OperationOptions,
    ) -> list[Record]:
        if not values:
            return []
        return await self._target_repository(association).find(
            filter={key: {"$in": values}},
            appends=appends or None,
            hooks=options.hooks,
            **options.passthrough(),
        )

    async def _load_belongs_to(
        self,
        records: list[Record],
        association: Association,
        appends: list[str],
        options: OperationOptions,
    ) -> None:
        keys = list({r.get(association.foreign_key) for r in records} - {None})
        targets = await self._find_targets(
            association, association.target_key, keys, appends, options
        )
        by_key = {target[association.target_key]: target for target in targets}
        for record in records:
            record.set_association(association.name, by_key.get(record.get(association.foreign_key)))

    async def _load_children(
        self,
        records: list[Record],
        association: Association,
        appends: list[str],
        options: OperationOptions,
    ) -> None:
        keys = list({r.get(association.source_key) for r in records} - {None})
        children = await self._find_targets(
            association, association.foreign_key, keys, appends, options
        )
        grouped: dict[Any, list[Record]] = {}
        for child in children:
            grouped.setdefault(child[association.foreign_key], []).append(child)
        for record in records:
            found = grouped.get(record.get(association.source_key), [])
            if association.type == "hasOne":
                record.set_association(association.name, found[0] if found else None)
            else:
                record.set_association(association.name, found)

    async def _load_through(
        self,
        records: list[Record],
        association: Association,
        appends: list[str],
        options: OperationOptions,
    ) -> None:
        keys = list({r.get(association.source_key) for r in records} - {None})
        table = association.through.table
        pairs: list[tuple[Any, Any]] = []
        if keys:
            result = await self.database.execute(
                select(table.c[association.foreign_key], table.c[association.other_key]).where(
                    table.c[association.foreign_key].in_(keys)
                ),
                transaction=options.transaction,
                logging=options.logging,
            )
            pairs = [(row[0], row[1]) for row in result]

        targets = await self._find_targets(
            association,
            association.target_key,
            list({other for _, other in pairs}),
            appends,
            options,
        )
        by_key = {target[association.target_key]: target for target in targets}
        grouped: dict[Any, list[Record]] = {}
        for source, other in pairs:
            if other in by_key:
                grouped.setdefault(source, []).append(by_key[other])
        for record in records:
            record.set_association(association.name, grouped.get(record.get(association.source_key), []))
