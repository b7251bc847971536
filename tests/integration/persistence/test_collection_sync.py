"""Integration tests for physical schema sync."""

import pytest

from nocobase.infrastructure.persistence.table_builder import TableBuilder


async def column_names(db, table_name):
    rows = await db.execute_sql(f'PRAGMA table_info("{table_name}")')
    return [row["name"] for row in rows]


@pytest.mark.asyncio
async def test_exists_in_db_follows_physical_table(db):
    posts = db.collection({"name": "posts", "fields": [{"type": "string", "name": "title"}]})

    assert await posts.exists_in_db() is False

    await posts.sync()
    assert await posts.exists_in_db() is True
    assert await db.collection_exists_in_db("posts") is True

    await posts.remove_from_db()
    assert not db.has_collection("posts")
    assert await db.table_exists("posts") is False
    assert await posts.exists_in_db() is False


@pytest.mark.asyncio
async def test_remove_from_db_without_table(db):
    posts = db.collection({"name": "posts"})

    await posts.remove_from_db()

    assert not db.has_collection("posts")


@pytest.mark.asyncio
async def test_removed_collection_keeps_table(db):
    posts = db.collection({"name": "posts"})
    await posts.sync()

    posts.remove()

    assert await db.table_exists("posts") is True
    assert await db.collection_exists_in_db("posts") is False


@pytest.mark.asyncio
async def test_sync_adds_new_columns(db):
    posts = db.collection({"name": "posts", "fields": [{"type": "string", "name": "title"}]})
    await posts.sync()

    posts.set_field("views", {"type": "integer", "index": True})
    await posts.sync()

    assert await column_names(db, "posts") == ["id", "createdAt", "updatedAt", "title", "views"]
    indexes = await db.execute_sql("PRAGMA index_list(\"posts\")")
    assert "posts_views" in {row["name"] for row in indexes}


@pytest.mark.asyncio
async def test_sync_alter_drop(db):
    posts = db.collection(
        {
            "name": "posts",
            "fields": [
                {"type": "string", "name": "title"},
                {"type": "text", "name": "body"},
            ],
        }
    )
    await posts.sync()

    posts.remove_field("body")
    await posts.sync()
    assert "body" in await column_names(db, "posts")

    await posts.sync(alter={"drop": True})
    assert "body" not in await column_names(db, "posts")


@pytest.mark.asyncio
async def test_sync_force_rebuilds(db):
    posts = db.collection({"name": "posts", "fields": [{"type": "string", "name": "title"}]})
    await posts.sync()
    await posts.repository.create({"title": "a"})

    await posts.sync(force=True)

    assert await posts.repository.count() == 0


@pytest.mark.asyncio
async def test_field_remove_from_db(db):
    posts = db.collection(
        {
            "name": "posts",
            "fields": [
                {"type": "string", "name": "title"},
                {"type": "text", "name": "body"},
            ],
        }
    )
    await posts.sync()
    body = posts.get_field("body")

    assert await body.exists_in_db() is True

    await body.remove_from_db()

    assert not posts.has_field("body")
    assert await body.exists_in_db() is False
    assert "body" not in await column_names(db, "posts")


@pytest.mark.asyncio
async def test_pending_relation_adds_no_column(db):
    posts = db.collection({"name": "posts", "fields": [{"type": "belongsTo", "name": "user"}]})

    assert not posts.model.has_attribute("userId")
    assert "users" in db.pending_fields

    await posts.sync()
    assert "userId" not in await column_names(db, "posts")

    db.collection({"name": "users"})

    assert posts.model.has_attribute("userId")
    assert db.pending_fields == {}


@pytest.mark.asyncio
async def test_sync_covers_connected_models_only(db):
    db.collection({"name": "tags", "fields": [{"type": "string", "name": "name"}]})
    posts = db.collection(
        {
            "name": "posts",
            "fields": [
                {"type": "string", "name": "title"},
                {"type": "belongsToMany", "name": "tags"},
            ],
        }
    )
    db.collection({"name": "comments"})

    await posts.sync()

    assert await db.table_exists("posts")
    assert await db.table_exists("tags")
    assert await db.table_exists("postsTags")
    assert not await db.table_exists("comments")
    assert await column_names(db, "postsTags") == [
        "id",
        "createdAt",
        "updatedAt",
        "postId",
        "tagId",
    ]


@pytest.mark.asyncio
async def test_database_sync_and_clean(db):
    db.collection({"name": "posts"})
    db.collection({"name": "tags"})

    await db.sync()
    assert await db.table_exists("posts")
    assert await db.table_exists("tags")

    await db.clean(drop=True)
    assert not await db.table_exists("posts")
    assert not await db.table_exists("tags")


@pytest.mark.asyncio
async def test_transaction_is_shared(db):
    posts = db.collection({"name": "posts"})

    async with db.connection() as conn:
        await posts.sync(transaction=conn)
        assert await db.run_sync(TableBuilder.table_exists, "posts", transaction=conn)

    assert await posts.exists_in_db()


@pytest.mark.asyncio
async def test_close_clears_registries(db):
    db.collection({"name": "posts", "fields": [{"type": "belongsTo", "name": "user"}]})
    await db.sync()

    await db.close()

    assert db.collections == {}
    assert db.models == {}
    assert db.table_name_collection_map == {}
    assert db.pending_fields == {}
    assert db.hooks.get_hooks_for_event("before_create") == []
