"""Sort field: an integer position assigned on create."""

from typing import Any, Optional

from nocobase.core.hooks import HookEvent
from nocobase.domain.entities import OperationOptions
from nocobase.infrastructure.persistence.fields.scalar import IntegerField
from nocobase.infrastructure.persistence.model import Record


class SortField(IntegerField):
    """Integer filled with ``max(sort) + 1`` when a record is created.

    With ``scopeKey`` the maximum is taken among records sharing the new
    record's value of that column, so every scope counts from 1.
    """

    def __init__(self, options: dict[str, Any], collection: Any) -> None:
        super().__init__(options, collection)
        self._hook_id: Optional[str] = None

    def bind(self) -> None:
        super().bind()
        self._hook_id = self.collection.on(HookEvent.BEFORE_CREATE, self.init_sort)

    def unbind(self) -> None:
        if self._hook_id is not None:
            self.collection.off(self._hook_id)
            self._hook_id = None
        super().unbind()

    async def init_sort(self, record: Record, options: OperationOptions) -> None:
        if record.get(self.name) is not None:
            return

        scope_key = self.options.get("scopeKey")
        filter = {scope_key: record.get(scope_key)} if scope_key else None

        current = await self.collection.repository.aggregate(
            "max", self.name, filter=filter, **options.passthrough()
        )
        record[self.name] = (current or 0) + 1
        options.add_field(self.name)
