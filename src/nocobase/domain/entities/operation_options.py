"""Option bag passed through repository operations and their hooks.

Contains the data structure shared by repositories and lifecycle hooks:
- OperationOptions: transaction, logging and hook flags of one operation
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection

SqlLogger = Union[bool, Callable[[str], Any], None]


@dataclass
class OperationOptions:
    """Options of one repository operation, handed to every hook it fires.

    There is no ambient transaction: a hook that issues repository calls must
    hand them ``transaction`` and ``logging`` (see passthrough()).

    Attributes:
        transaction: The AsyncConnection the operation runs in.
        logging: Callable receiving each SQL statement, or True to log them.
        hooks: Whether lifecycle hooks fire.
        fields: Columns persisted by a create; before-create hooks that set
                a value must add its column here.
        tree: Whether find results should be assembled into a tree.
        context: Free-form values for application hooks.

    Example:
        async def before_create(record, options):
            parent = await repository.find_one(
                filter_by_tk=record["parentId"], hooks=False, **options.passthrough()
            )
    """

    transaction: Optional["AsyncConnection"] = None
    logging: SqlLogger = None
    hooks: bool = True
    fields: Optional[list[str]] = None
    tree: bool = False
    context: dict[str, Any] = field(default_factory=dict)

    def passthrough(self) -> dict[str, Any]:
        """Keyword arguments that carry this operation's transaction and logging."""
        return {"transaction": self.transaction, "logging": self.logging}

    def add_field(self, name: str) -> None:
        """Ensure a column is part of the persisted column set."""
        if self.fields is None:
            self.fields = [name]
        elif name not in self.fields:
            self.fields.append(name)
