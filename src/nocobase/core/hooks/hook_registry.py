"""Hook registry - lifecycle callback registration and execution.

The HookRegistry keeps an explicit, ordered list of callbacks per event:
- Registration with an optional collection filter and a priority
- Execution in priority order, then registration order (FIFO)
- Asynchronous dispatch for record events, synchronous for schema events
- Any exception raised by a callback aborts the chain and propagates
"""

import inspect
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from nocobase.core.hooks.hook_events import is_async_event
from nocobase.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RegisteredHook:
    """Internal representation of a registered hook.

    Attributes:
        id: Unique identifier for this hook registration.
        event: The event this hook is registered for.
        callback: The function to call.
        collection: Collection name filter (None matches every collection).
        priority: Execution priority (higher = earlier).
        is_builtin: Whether this hook is owned by the engine itself.
        registration_order: Order in which this hook was registered.
    """

    id: str
    event: str
    callback: Callable
    collection: Optional[str] = None
    priority: int = 0
    is_builtin: bool = False
    registration_order: int = 0


class HookRegistry:
    """Lifecycle callback registration and execution engine.

    Example:
        registry = HookRegistry()

        async def stamp(record, options):
            record["slug"] = record["title"].lower()

        hook_id = registry.register(HookEvent.BEFORE_CREATE, stamp, collection="posts")
        await registry.trigger(HookEvent.BEFORE_CREATE, record, options, collection="posts")
        registry.unregister(hook_id)
    """

    def __init__(self) -> None:
        """Initialize the hook registry."""
        self._hooks: dict[str, list[RegisteredHook]] = {}
        self._registration_counter: int = 0
        self._hook_map: dict[str, RegisteredHook] = {}

    def register(
        self,
        event: str,
        callback: Callable,
        collection: Optional[str] = None,
        priority: int = 0,
        is_builtin: bool = False,
    ) -> str:
        """Register a hook for an event.

        Args:
            event: Hook event name (see HookEvent).
            callback: Function to execute. Record events may use coroutine
                      functions; schema events must use plain functions.
            collection: Only fire for this collection (None = every collection).
            priority: Execution priority. Higher priority hooks run first.
            is_builtin: If True, this hook is kept by clear().

        Returns:
            Unique hook_id string for later removal.

        Raises:
            TypeError: If a coroutine function is registered for a synchronous event.
        """
        if not is_async_event(event) and inspect.iscoroutinefunction(callback):
            raise TypeError(f"Event '{event}' is synchronous; callback must not be async")

        hook_id = f"hook_{uuid.uuid4().hex[:12]}"

        self._registration_counter += 1

        hook = RegisteredHook(
            id=hook_id,
            event=event,
            callback=callback,
            collection=collection,
            priority=priority,
            is_builtin=is_builtin,
            registration_order=self._registration_counter,
        )

        self._hooks.setdefault(event, []).append(hook)
        self._hook_map[hook_id] = hook

        logger.debug(
            "Hook registered",
            hook_id=hook_id,
            hook_event=event,
            collection=collection,
            priority=priority,
            is_builtin=is_builtin,
        )

        return hook_id

    def unregister(self, hook_id: str) -> bool:
        """Remove a registered hook.

        Args:
            hook_id: The unique ID returned from register().

        Returns:
            True if hook was removed, False if not found.
        """
        hook = self._hook_map.pop(hook_id, None)
        if not hook:
            logger.warning("Hook not found for unregister", hook_id=hook_id)
            return False

        remaining = [h for h in self._hooks.get(hook.event, []) if h.id != hook_id]
        if remaining:
            self._hooks[hook.event] = remaining
        else:
            self._hooks.pop(hook.event, None)

        logger.debug("Hook unregistered", hook_id=hook_id, hook_event=hook.event)
        return True

    async def trigger(
        self,
        event: str,
        *args: Any,
        collection: Optional[str] = None,
    ) -> None:
        """Execute all matching hooks for an asynchronous event.

        Args:
            event: Hook event name.
            *args: Positional arguments passed to every callback
                   (record events: the record(s) and the OperationOptions).
            collection: Collection the event fires for.

        Raises:
            Exception: Whatever a callback raises; remaining hooks are skipped.
        """
        hooks = self._matching_hooks(event, collection)
        if not hooks:
            return

        logger.debug(
            "Triggering hooks",
            hook_event=event,
            hook_count=len(hooks),
            collection=collection,
        )

        for hook in hooks:
            result = hook.callback(*args)
            if inspect.isawaitable(result):
                await result

    def emit(
        self,
        event: str,
        *args: Any,
        collection: Optional[str] = None,
    ) -> None:
        """Execute all matching hooks for a synchronous event.

        Args:
            event: Hook event name.
            *args: Positional arguments passed to every callback.
            collection: Collection the event fires for.
        """
        for hook in self._matching_hooks(event, collection):
            hook.callback(*args)

    def _matching_hooks(
        self, event: str, collection: Optional[str]
    ) -> list[RegisteredHook]:
        """Hooks for an event whose collection filter matches, in execution order."""
        hooks = [
            h
            for h in self._hooks.get(event, [])
            if h.collection is None or h.collection == collection
        ]
        return sorted(hooks, key=lambda h: (-h.priority, h.registration_order))

    def get_hooks_for_event(self, event: str) -> list[RegisteredHook]:
        """Get all hooks registered for an event."""
        return self._hooks.get(event, []).copy()

    def get_hook_by_id(self, hook_id: str) -> Optional[RegisteredHook]:
        """Get a hook by its ID."""
        return self._hook_map.get(hook_id)

    def clear(self, include_builtin: bool = False) -> int:
        """Remove all registered hooks.

        Args:
            include_builtin: If True, also remove built-in hooks.

        Returns:
            Number of hooks removed.
        """
        to_remove = [
            hook_id
            for hook_id, hook in self._hook_map.items()
            if include_builtin or not hook.is_builtin
        ]
        for hook_id in to_remove:
            self.unregister(hook_id)

        logger.debug("Hooks cleared", count=len(to_remove), include_builtin=include_builtin)
        return len(to_remove)
