"""Adjacency-list tree extension for collections.

A tree collection gets a ``parentId`` column with ``parent``/``children``
associations, plus two derived columns kept up to date by record hooks:

- ``path``: ids from the root down to the node, joined with ``.`` ("1.4.9")
- ``hierarchyLevel``: number of segments in ``path`` (roots are level 1)

Descendants of a node are the rows whose path starts with the node's path
followed by a dot, so re-parenting rewrites the whole subtree by prefix.
"""

import asyncio
from typing import TYPE_CHECKING, Any

from nocobase.core.exceptions import TreeIntegrityError
from nocobase.core.hooks import HookEvent
from nocobase.core.logging import get_logger
from nocobase.domain.entities import OperationOptions
from nocobase.infrastructure.persistence.model import Record

if TYPE_CHECKING:
    from nocobase.infrastructure.persistence.collection import Collection

logger = get_logger(__name__)

PARENT_KEY = "parentId"
PATH_FIELD = "path"
LEVEL_FIELD = "hierarchyLevel"
CHILDREN_FIELD = "children"


def tree_fields(collection_name: str) -> list[dict[str, Any]]:
    """Implicit field declarations of a tree collection."""
    return [
        {"type": "integer", "name": LEVEL_FIELD},
        {"type": "string", "name": PATH_FIELD},
        {
            "type": "hasMany",
            "name": CHILDREN_FIELD,
            "foreignKey": PARENT_KEY,
            "target": collection_name,
        },
        {
            "type": "belongsTo",
            "name": "parent",
            "foreignKey": PARENT_KEY,
            "target": collection_name,
        },
    ]


def assemble_tree(records: list[Record]) -> list[Record]:
    """Attach ``children`` to every record from the same flat list.

    Issues no queries. Records that already carry ``children`` (for example
    loaded through ``appends``) are left untouched.

    Returns:
        The same list, every record now carrying its children.
    """

    def build(node: Record) -> None:
        if CHILDREN_FIELD in node.associated:
            return
        node_id = node.primary_key
        children = [
            record
            for record in records
            if record.get(PARENT_KEY) is not None and record.get(PARENT_KEY) == node_id
        ]
        node.set_association(CHILDREN_FIELD, children)
        for child in children:
            build(child)

    for record in records:
        build(record)
    return records


class AdjacencyListTree:
    """Installs the tree fields and hooks on one collection."""

    def __init__(self, collection: "Collection") -> None:
        self.collection = collection

    @property
    def repository(self) -> Any:
        return self.collection.repository

    def install(self) -> None:
        collection = self.collection
        collection.options["fields"] = [
            *(collection.options.get("fields") or []),
            *tree_fields(collection.name),
        ]
        collection.on(HookEvent.BEFORE_CREATE, self.before_create)
        collection.on(HookEvent.AFTER_CREATE, self.after_create)
        collection.on(HookEvent.BEFORE_UPDATE, self.before_update)
        collection.on(HookEvent.AFTER_FIND, self.after_find)

    async def before_create(self, record: Record, options: OperationOptions) -> None:
        parent_id = record.get(PARENT_KEY)
        if parent_id is None:
            record[LEVEL_FIELD] = 1
            options.add_field(LEVEL_FIELD)
            return

        if parent_id == record.primary_key:
            raise TreeIntegrityError("parentId should not equal self id")

        parent = await self.repository.find_one(
            filter_by_tk=parent_id,
            attributes=[LEVEL_FIELD],
            hooks=False,
            **options.passthrough(),
        )
        if parent is None:
            logger.warning(
                "Parent not found while creating tree node",
                collection=self.collection.name,
                parent_id=parent_id,
            )
            record[LEVEL_FIELD] = 1
        else:
            record[LEVEL_FIELD] = (parent[LEVEL_FIELD] or 0) + 1
        options.add_field(LEVEL_FIELD)

    async def after_create(self, record: Record, options: OperationOptions) -> None:
        # The row is already written; a failure here leaves its path empty
        try:
            path = await self._created_path(record, options)
            await self.repository.update(
                {PATH_FIELD: path},
                filter_by_tk=record.primary_key,
                hooks=False,
                **options.passthrough(),
            )
            record[PATH_FIELD] = path
            record.mark_persisted()
        except Exception as e:
            logger.warning(
                "Failed to set tree path",
                collection=self.collection.name,
                record_id=record.primary_key,
                parent_id=record.get(PARENT_KEY),
                error=str(e),
            )

    async def _created_path(self, record: Record, options: OperationOptions) -> str:
        item_id = record.primary_key
        parent_id = record.get(PARENT_KEY)
        if parent_id is None:
            return str(item_id)

        parent = await self.repository.find_one(
            filter_by_tk=parent_id,
            attributes=[PATH_FIELD],
            hooks=False,
            **options.passthrough(),
        )
        if parent is None:
            raise TreeIntegrityError(f"Parent {parent_id} does not exist")
        return f"{parent[PATH_FIELD]}.{item_id}"

    async def before_update(self, record: Record, options: OperationOptions) -> None:
        if PARENT_KEY not in record.data_values:
            return

        item_id = record.primary_key
        parent_id = record[PARENT_KEY]
        if record.has_previous(PARENT_KEY) and record.previous(PARENT_KEY) == parent_id:
            return

        # an earlier move in the same operation may have rewritten this row
        old_parent_id = record.previous(PARENT_KEY)
        old_path = record.previous(PATH_FIELD)
        stored = await self.repository.find_one(
            filter_by_tk=item_id,
            attributes=[PARENT_KEY, PATH_FIELD],
            hooks=False,
            **options.passthrough(),
        )
        if stored is not None:
            old_parent_id = stored.get(PARENT_KEY)
            old_path = stored.get(PATH_FIELD)

        if parent_id == old_parent_id:
            return

        if parent_id is not None:
            if parent_id == item_id:
                raise TreeIntegrityError("parentId should not equal self id")

            parent = await self.repository.find_one(
                filter_by_tk=parent_id,
                attributes=[LEVEL_FIELD, PARENT_KEY, PATH_FIELD],
                hooks=False,
                **options.passthrough(),
            )
            if parent is None:
                raise TreeIntegrityError(f"Parent {parent_id} does not exist")

            parent_path = parent[PATH_FIELD] or ""
            if old_path and parent_path.startswith(f"{old_path}."):
                raise TreeIntegrityError(
                    f"cannot move {item_id} under its own descendant {parent_id}"
                )

            level = (parent[LEVEL_FIELD] or 0) + 1
            path = f"{parent_path}.{item_id}"
        else:
            level = 1
            path = str(item_id)

        record[LEVEL_FIELD] = level
        record[PATH_FIELD] = path

        logger.debug(
            "Tree node moved",
            collection=self.collection.name,
            record_id=item_id,
            old_path=old_path,
            path=path,
        )

        if old_path:
            await self._move_descendants(old_path, path, options)

    async def _move_descendants(
        self, old_path: str, path: str, options: OperationOptions
    ) -> None:
        """Rewrite the path prefix and level of every descendant of a moved node."""
        descendants = await self.repository.find(
            filter={PATH_FIELD: {"$startsWith": f"{old_path}."}},
            hooks=False,
            **options.passthrough(),
        )
        if not descendants:
            return

        # one connection carries the whole operation; saves take turns on it
        lock = asyncio.Lock()

        async def move(node: Record) -> None:
            node[PATH_FIELD] = path + node[PATH_FIELD][len(old_path):]
            node[LEVEL_FIELD] = len(node[PATH_FIELD].split("."))
            async with lock:
                await node.save(**options.passthrough())

        await asyncio.gather(*(move(node) for node in descendants))

        logger.debug(
            "Tree descendants moved",
            collection=self.collection.name,
            count=len(descendants),
        )

    async def after_find(self, records: list[Record], options: OperationOptions) -> None:
        if options.tree:
            assemble_tree(records)
