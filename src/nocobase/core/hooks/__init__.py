"""Hook system core module.

Lifecycle callbacks for record operations (async) and schema changes (sync).

Example usage:
    from nocobase.core.hooks import HookEvent

    async def log_post(record, options):
        logger.info("Post created", post_id=record["id"])

    db.on(HookEvent.AFTER_CREATE, log_post, collection="posts")
"""

from nocobase.core.hooks.hook_events import (
    EVENT_CATEGORIES,
    HookCategory,
    HookEvent,
    is_async_event,
)
from nocobase.core.hooks.hook_registry import HookRegistry, RegisteredHook

__all__ = [
    # Registry
    "HookRegistry",
    "RegisteredHook",
    # Events
    "HookCategory",
    "HookEvent",
    "EVENT_CATEGORIES",
    "is_async_event",
]
