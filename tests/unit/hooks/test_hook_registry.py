"""Unit tests for the hook system.

Tests cover:
- Hook registration and unregistration
- Priority and FIFO ordering
- Collection filtering
- Exception propagation
- Synchronous schema events
"""

import functools

import pytest

from nocobase.core.hooks import (
    HookCategory,
    HookEvent,
    HookRegistry,
    is_async_event,
)


class TestHookRegistry:
    """Tests for the HookRegistry class."""

    def test_register_returns_unique_id(self) -> None:
        """Test that register() returns a unique hook ID."""
        registry = HookRegistry()

        async def my_hook(record, options):
            pass

        hook_ids = {registry.register(HookEvent.BEFORE_CREATE, my_hook) for _ in range(10)}

        assert len(hook_ids) == 10
        assert all(hook_id.startswith("hook_") for hook_id in hook_ids)

    def test_register_with_collection_and_priority(self) -> None:
        registry = HookRegistry()

        async def my_hook(record, options):
            pass

        hook_id = registry.register(
            HookEvent.AFTER_CREATE, my_hook, collection="posts", priority=10
        )

        hook = registry.get_hook_by_id(hook_id)
        assert hook is not None
        assert hook.collection == "posts"
        assert hook.priority == 10

    def test_async_callback_rejected_for_sync_event(self) -> None:
        """Schema events are emitted synchronously."""
        registry = HookRegistry()

        async def my_hook(field):
            pass

        with pytest.raises(TypeError):
            registry.register(HookEvent.FIELD_AFTER_ADD, my_hook)

    def test_wrapped_async_callback_rejected_for_sync_event(self) -> None:
        registry = HookRegistry()

        async def my_hook(tag, field):
            pass

        with pytest.raises(TypeError):
            registry.register(
                HookEvent.AFTER_DEFINE_COLLECTION, functools.partial(my_hook, "tag")
            )

    def test_unregister(self) -> None:
        registry = HookRegistry()

        async def my_hook(record, options):
            pass

        hook_id = registry.register(HookEvent.BEFORE_UPDATE, my_hook)

        assert registry.unregister(hook_id) is True
        assert registry.get_hook_by_id(hook_id) is None
        assert registry.get_hooks_for_event(HookEvent.BEFORE_UPDATE) == []
        assert registry.unregister(hook_id) is False

    def test_clear_keeps_builtin_hooks(self) -> None:
        registry = HookRegistry()

        def bind(field):
            pass

        builtin_id = registry.register(HookEvent.FIELD_AFTER_ADD, bind, is_builtin=True)
        registry.register(HookEvent.FIELD_AFTER_ADD, bind)

        assert registry.clear() == 1
        assert registry.get_hook_by_id(builtin_id) is not None

        assert registry.clear(include_builtin=True) == 1
        assert registry.get_hook_by_id(builtin_id) is None


class TestHookExecution:
    """Tests for trigger() and emit()."""

    @pytest.mark.asyncio
    async def test_priority_then_registration_order(self) -> None:
        registry = HookRegistry()
        calls = []

        async def first(record, options):
            calls.append("first")

        async def second(record, options):
            calls.append("second")

        async def urgent(record, options):
            calls.append("urgent")

        registry.register(HookEvent.BEFORE_CREATE, first)
        registry.register(HookEvent.BEFORE_CREATE, second)
        registry.register(HookEvent.BEFORE_CREATE, urgent, priority=5)

        await registry.trigger(HookEvent.BEFORE_CREATE, {}, None, collection="posts")

        assert calls == ["urgent", "first", "second"]

    @pytest.mark.asyncio
    async def test_collection_filter(self) -> None:
        registry = HookRegistry()
        calls = []

        async def posts_only(record, options):
            calls.append("posts")

        async def everywhere(record, options):
            calls.append("all")

        registry.register(HookEvent.AFTER_CREATE, posts_only, collection="posts")
        registry.register(HookEvent.AFTER_CREATE, everywhere)

        await registry.trigger(HookEvent.AFTER_CREATE, {}, None, collection="tags")
        assert calls == ["all"]

        await registry.trigger(HookEvent.AFTER_CREATE, {}, None, collection="posts")
        assert calls == ["all", "posts", "all"]

    @pytest.mark.asyncio
    async def test_sync_callbacks_are_allowed_for_record_events(self) -> None:
        registry = HookRegistry()
        seen = []

        registry.register(HookEvent.AFTER_FIND, lambda records, options: seen.extend(records))

        await registry.trigger(HookEvent.AFTER_FIND, [1, 2], None)

        assert seen == [1, 2]

    @pytest.mark.asyncio
    async def test_exception_aborts_chain(self) -> None:
        registry = HookRegistry()
        calls = []

        async def failing(record, options):
            raise ValueError("rejected")

        async def never(record, options):
            calls.append("never")

        registry.register(HookEvent.BEFORE_CREATE, failing)
        registry.register(HookEvent.BEFORE_CREATE, never)

        with pytest.raises(ValueError, match="rejected"):
            await registry.trigger(HookEvent.BEFORE_CREATE, {}, None)

        assert calls == []

    def test_emit_runs_sync_hooks(self) -> None:
        registry = HookRegistry()
        bound = []

        registry.register(HookEvent.FIELD_AFTER_ADD, bound.append)
        registry.emit(HookEvent.FIELD_AFTER_ADD, "title")

        assert bound == ["title"]


class TestHookEvents:
    def test_record_events_are_async(self) -> None:
        assert is_async_event(HookEvent.BEFORE_CREATE)
        assert not is_async_event(HookEvent.FIELD_AFTER_ADD)
        assert not is_async_event(HookEvent.AFTER_DEFINE_COLLECTION)

    def test_categories(self) -> None:
        from nocobase.core.hooks import EVENT_CATEGORIES

        assert EVENT_CATEGORIES[HookEvent.AFTER_FIND] == HookCategory.RECORD_OPERATIONS
        assert EVENT_CATEGORIES[HookEvent.FIELD_AFTER_ADD] == HookCategory.FIELD_OPERATIONS
