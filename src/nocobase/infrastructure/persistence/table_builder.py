"""Physical table builder for collection models.

Reconciles a RecordModel with the database: creates missing tables, adds
missing columns and indexes through alembic operations, and optionally drops
stale columns. Every method takes a synchronous Connection so it can run
under AsyncConnection.run_sync().
"""

from typing import Any, Optional

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Connection, MetaData, inspect

from nocobase.core.logging import get_logger
from nocobase.infrastructure.persistence.model import RecordModel

logger = get_logger(__name__)


class TableBuilder:
    """Builds and alters physical tables from collection models."""

    @classmethod
    def operations(cls, connection: Connection) -> Operations:
        """Alembic operations bound to a connection."""
        return Operations(MigrationContext.configure(connection))

    @classmethod
    def sync_model(
        cls,
        connection: Connection,
        model: RecordModel,
        force: bool = False,
        alter: Optional[dict[str, Any]] = None,
    ) -> None:
        """Bring the model's table in line with its attributes and indexes.

        Args:
            connection: Synchronous connection.
            model: The model to materialize.
            force: Drop and recreate the table.
            alter: ``{"drop": True}`` also drops columns the model no longer has.
        """
        table = model.build_table(MetaData())
        table_name = model.table_name
        exists = cls.table_exists(connection, table_name)

        if exists and force:
            table.drop(connection)
            exists = False
            logger.info("Table dropped for rebuild", table_name=table_name)

        if not exists:
            table.create(connection)
            logger.info(
                "Table created",
                table_name=table_name,
                column_count=len(table.columns),
                index_count=len(table.indexes),
            )
            return

        existing_columns = {c["name"] for c in inspect(connection).get_columns(table_name)}
        operations = cls.operations(connection)

        added = []
        for name, attribute in model.raw_attributes.items():
            if name in existing_columns or attribute.primary_key:
                continue
            operations.add_column(table_name, attribute.to_column(for_alter=True))
            added.append(name)

        dropped = []
        if alter and alter.get("drop"):
            dropped = sorted(existing_columns - set(model.raw_attributes))
            if dropped:
                with operations.batch_alter_table(table_name) as batch:
                    for name in dropped:
                        batch.drop_column(name)

        existing_indexes = {ix["name"] for ix in inspect(connection).get_indexes(table_name)}
        created_indexes = []
        for index in table.indexes:
            if index.name not in existing_indexes:
                index.create(connection)
                created_indexes.append(index.name)

        if added or dropped or created_indexes:
            logger.info(
                "Table altered",
                table_name=table_name,
                added_columns=added,
                dropped_columns=dropped,
                created_indexes=created_indexes,
            )

    @classmethod
    def table_exists(cls, connection: Connection, table_name: str) -> bool:
        return inspect(connection).has_table(table_name)

    @classmethod
    def column_exists(cls, connection: Connection, table_name: str, column_name: str) -> bool:
        if not cls.table_exists(connection, table_name):
            return False
        columns = inspect(connection).get_columns(table_name)
        return any(column["name"] == column_name for column in columns)

    @classmethod
    def drop_table(cls, connection: Connection, table_name: str) -> None:
        cls.operations(connection).drop_table(table_name)
        logger.info("Table dropped", table_name=table_name)

    @classmethod
    def drop_column(cls, connection: Connection, table_name: str, column_name: str) -> None:
        # batch mode rebuilds the table where ALTER TABLE cannot drop the column
        with cls.operations(connection).batch_alter_table(table_name) as batch:
            batch.drop_column(column_name)
        logger.info("Column dropped", table_name=table_name, column=column_name)

    @classmethod
    def drop_all(cls, connection: Connection) -> list[str]:
        """Drop every table in the database.

        Returns:
            Names of the dropped tables.
        """
        metadata = MetaData()
        metadata.reflect(bind=connection)
        names = [table.name for table in metadata.sorted_tables]
        metadata.drop_all(bind=connection)
        logger.info("All tables dropped", table_count=len(names))
        return names
