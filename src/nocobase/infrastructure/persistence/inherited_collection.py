"""Collections that inherit fields from parent collections."""

from typing import TYPE_CHECKING, Any

from nocobase.core.exceptions import CollectionNotFoundError
from nocobase.domain.services import check_identifier
from nocobase.infrastructure.persistence.collection import Collection
from nocobase.infrastructure.persistence.fields import Field

if TYPE_CHECKING:
    from nocobase.infrastructure.persistence.database import Database


class InheritedCollection(Collection):
    """A collection whose fields start as copies of its parents' fields.

    Copies are marked ``inherit: True``; the collection's own declarations are
    applied afterwards and may replace a copy only with a field of the same
    type. The child's table holds every column itself.
    """

    def __init__(self, options: dict[str, Any], database: "Database") -> None:
        check_identifier(options.get("name"), database.max_identifier_length)
        if options.get("tableName"):
            check_identifier(options["tableName"], database.max_identifier_length)

        inherits = options.get("inherits")
        parents = [inherits] if isinstance(inherits, str) else list(inherits or [])
        for parent in parents:
            if not database.has_collection(parent):
                raise CollectionNotFoundError(
                    f'inherited collection "{parent}" is not defined'
                )
        self.parents = parents
        super().__init__({**options, "inherits": parents}, database)

    def init_fields(self) -> None:
        self.database.inheritance_map.set_inherits(self.name, self.parents)

        for name, field in self.parent_fields().items():
            options = {key: value for key, value in field.options.items() if key != "name"}
            self.set_field(name, {**options, "inherit": True})

        self.set_fields(self.options.get("fields") or [], reset_fields=False)

    def parent_collections(self) -> list[Collection]:
        return [self.database.get_collection(name) for name in self.parents]

    def parent_fields(self) -> dict[str, Field]:
        """Fields of the direct parents; the first parent declaring a name wins."""
        fields: dict[str, Field] = {}
        for parent in self.parent_collections():
            for name, field in parent.fields.items():
                fields.setdefault(name, field)
        return fields

    def is_inherited(self) -> bool:
        return True
