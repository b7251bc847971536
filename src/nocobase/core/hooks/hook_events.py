"""Hook event definitions and categories.

Record events are asynchronous and fire around repository operations.
Field and collection events are synchronous because schema definition
is synchronous.
"""


class HookCategory:
    """Categories for organizing hooks."""

    RECORD_OPERATIONS = "record_operations"
    FIELD_OPERATIONS = "field_operations"
    COLLECTION_OPERATIONS = "collection_operations"


class HookEvent:
    """Hook event names.

    - before_* events can modify the record or abort the operation by raising
    - after_* events run once the statement has been executed
    """

    # Record Operations (async, collection-filtered)
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    AFTER_CREATE_WITH_ASSOCIATIONS = "after_create_with_associations"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_DESTROY = "before_destroy"
    AFTER_DESTROY = "after_destroy"
    AFTER_FIND = "after_find"

    # Field Operations (sync, per collection)
    FIELD_AFTER_ADD = "field_after_add"
    FIELD_AFTER_REMOVE = "field_after_remove"

    # Collection Operations (sync)
    AFTER_DEFINE_COLLECTION = "after_define_collection"
    BEFORE_UPDATE_COLLECTION = "before_update_collection"
    AFTER_UPDATE_COLLECTION = "after_update_collection"
    AFTER_REMOVE_COLLECTION = "after_remove_collection"


EVENT_CATEGORIES: dict[str, str] = {
    HookEvent.BEFORE_CREATE: HookCategory.RECORD_OPERATIONS,
    HookEvent.AFTER_CREATE: HookCategory.RECORD_OPERATIONS,
    HookEvent.AFTER_CREATE_WITH_ASSOCIATIONS: HookCategory.RECORD_OPERATIONS,
    HookEvent.BEFORE_UPDATE: HookCategory.RECORD_OPERATIONS,
    HookEvent.AFTER_UPDATE: HookCategory.RECORD_OPERATIONS,
    HookEvent.BEFORE_DESTROY: HookCategory.RECORD_OPERATIONS,
    HookEvent.AFTER_DESTROY: HookCategory.RECORD_OPERATIONS,
    HookEvent.AFTER_FIND: HookCategory.RECORD_OPERATIONS,
    HookEvent.FIELD_AFTER_ADD: HookCategory.FIELD_OPERATIONS,
    HookEvent.FIELD_AFTER_REMOVE: HookCategory.FIELD_OPERATIONS,
    HookEvent.AFTER_DEFINE_COLLECTION: HookCategory.COLLECTION_OPERATIONS,
    HookEvent.BEFORE_UPDATE_COLLECTION: HookCategory.COLLECTION_OPERATIONS,
    HookEvent.AFTER_UPDATE_COLLECTION: HookCategory.COLLECTION_OPERATIONS,
    HookEvent.AFTER_REMOVE_COLLECTION: HookCategory.COLLECTION_OPERATIONS,
}


def is_async_event(event: str) -> bool:
    """Record events are awaited; schema events are called synchronously."""
    return EVENT_CATEGORIES.get(event) == HookCategory.RECORD_OPERATIONS
