"""Integration tests for repository queries, writes and associations."""

import pytest
import pytest_asyncio

from nocobase.core.exceptions import AssociationNotFoundError, FilterError
from nocobase.core.hooks import HookEvent


@pytest_asyncio.fixture
async def blog(db):
    """users 1-n posts n-n tags, synced."""
    db.collection(
        {
            "name": "users",
            "fields": [
                {"type": "string", "name": "name"},
                {"type": "hasMany", "name": "posts"},
                {"type": "hasOne", "name": "profile"},
            ],
        }
    )
    db.collection(
        {
            "name": "posts",
            "fields": [
                {"type": "string", "name": "title"},
                {"type": "integer", "name": "views", "defaultValue": 0},
                {"type": "belongsTo", "name": "user"},
                {"type": "belongsToMany", "name": "tags"},
            ],
        }
    )
    db.collection({"name": "tags", "fields": [{"type": "string", "name": "name"}]})
    db.collection(
        {
            "name": "profiles",
            "fields": [{"type": "text", "name": "bio"}, {"type": "belongsTo", "name": "user"}],
        }
    )
    await db.sync()
    return db


class TestCreateAndFind:
    @pytest.mark.asyncio
    async def test_create_assigns_primary_key_and_defaults(self, blog):
        posts = blog.get_repository("posts")

        post = await posts.create({"title": "hello", "unknown": "dropped"})

        assert post["id"] == 1
        assert post["views"] == 0
        assert post.is_new_record is False
        assert "unknown" not in post
        assert post["createdAt"] is not None

    @pytest.mark.asyncio
    async def test_find_by_filter_and_primary_key(self, blog):
        posts = blog.get_repository("posts")
        await posts.create_many([{"title": "a"}, {"title": "b"}, {"title": "c"}])

        assert [p["title"] for p in await posts.find(filter={"title": {"$ne": "b"}})] == ["a", "c"]
        assert (await posts.find_one(filter_by_tk=2))["title"] == "b"
        assert [p["id"] for p in await posts.find(filter_by_tk=[1, 3])] == [1, 3]
        assert await posts.find_one(filter_by_tk=99) is None

    @pytest.mark.asyncio
    async def test_sort_limit_offset(self, blog):
        posts = blog.get_repository("posts")
        await posts.create_many([{"title": t, "views": v} for t, v in [("a", 3), ("b", 1), ("c", 2)]])

        ordered = await posts.find(sort="-views")
        assert [p["title"] for p in ordered] == ["a", "c", "b"]

        page = await posts.find(sort=["views"], limit=1, offset=1)
        assert [p["title"] for p in page] == ["c"]

    @pytest.mark.asyncio
    async def test_attributes_always_include_primary_key(self, blog):
        posts = blog.get_repository("posts")
        await posts.create({"title": "a", "views": 5})

        (post,) = await posts.find(attributes=["title"])

        assert dict(post) == {"id": 1, "title": "a"}

    @pytest.mark.asyncio
    async def test_or_and_starts_with(self, blog):
        posts = blog.get_repository("posts")
        await posts.create_many(
            [{"title": "1.2"}, {"title": "1.2.3"}, {"title": "1_2"}, {"title": "4"}]
        )

        found = await posts.find(
            filter={"$or": [{"title": {"$startsWith": "1.2."}}, {"title": "4"}]}
        )

        assert [p["title"] for p in found] == ["1.2.3", "4"]
        assert [p["title"] for p in await posts.find(filter={"title": {"$startsWith": "1_"}})] == [
            "1_2"
        ]

    @pytest.mark.asyncio
    async def test_count_and_aggregate(self, blog):
        posts = blog.get_repository("posts")
        await posts.create_many([{"title": "a", "views": 2}, {"title": "b", "views": 7}])

        assert await posts.count() == 2
        assert await posts.count(filter={"views": {"$gt": 2}}) == 1
        assert await posts.aggregate("max", "views") == 7
        assert await posts.aggregate("sum", "views") == 9
        assert await posts.aggregate("max", "views", filter={"title": "missing"}) is None

        with pytest.raises(FilterError):
            await posts.aggregate("median", "views")

    @pytest.mark.asyncio
    async def test_unknown_filter_column(self, blog):
        with pytest.raises(FilterError):
            await blog.get_repository("posts").find(filter={"missing": 1})

    @pytest.mark.asyncio
    async def test_sql_logging_callable(self, blog):
        statements = []

        await blog.get_repository("posts").create({"title": "a"}, logging=statements.append)

        assert len(statements) == 1
        assert statements[0].startswith("INSERT INTO posts")


class TestUpdateAndDestroy:
    @pytest.mark.asyncio
    async def test_update_requires_filter(self, blog):
        with pytest.raises(FilterError):
            await blog.get_repository("posts").update({"title": "x"})

        with pytest.raises(FilterError):
            await blog.get_repository("posts").destroy()

    @pytest.mark.asyncio
    async def test_update_changes_only_matching_rows(self, blog):
        posts = blog.get_repository("posts")
        await posts.create_many([{"title": "a"}, {"title": "b"}])

        updated = await posts.update({"views": 10}, filter={"title": "a"})

        assert [p["id"] for p in updated] == [1]
        assert (await posts.find_one(filter_by_tk=1))["views"] == 10
        assert (await posts.find_one(filter_by_tk=2))["views"] == 0

    @pytest.mark.asyncio
    async def test_record_save(self, blog):
        posts = blog.get_repository("posts")
        post = await posts.create({"title": "a"})

        post["title"] = "b"
        await post.save()

        assert (await posts.find_one(filter_by_tk=post["id"]))["title"] == "b"
        assert post.changed() == []

    @pytest.mark.asyncio
    async def test_destroy(self, blog):
        posts = blog.get_repository("posts")
        await posts.create_many([{"title": "a"}, {"title": "b"}, {"title": "c"}])

        assert await posts.destroy(filter={"title": ["a", "b"]}) == 2
        assert await posts.destroy(filter_by_tk=99) == 0
        assert [p["title"] for p in await posts.find()] == ["c"]


class TestHooks:
    @pytest.mark.asyncio
    async def test_create_hook_order(self, blog):
        calls = []

        def recorder(name):
            async def hook(record, options):
                calls.append(name)

            return hook

        for event in (
            HookEvent.BEFORE_CREATE,
            HookEvent.AFTER_CREATE,
            HookEvent.AFTER_CREATE_WITH_ASSOCIATIONS,
        ):
            blog.on(event, recorder(event), collection="posts")

        await blog.get_repository("posts").create({"title": "a"})
        await blog.get_repository("tags").create({"name": "t"})

        assert calls == ["before_create", "after_create", "after_create_with_associations"]

    @pytest.mark.asyncio
    async def test_before_hook_can_set_values(self, blog):
        async def default_title(record, options):
            record["title"] = "untitled"
            options.add_field("title")

        blog.on(HookEvent.BEFORE_CREATE, default_title, collection="posts")

        post = await blog.get_repository("posts").create({})

        assert (await blog.get_repository("posts").find_one(filter_by_tk=post["id"]))[
            "title"
        ] == "untitled"

    @pytest.mark.asyncio
    async def test_before_hook_aborts_and_rolls_back(self, blog):
        async def reject(record, options):
            raise ValueError("rejected")

        blog.on(HookEvent.BEFORE_UPDATE, reject, collection="posts")
        posts = blog.get_repository("posts")
        await posts.create({"title": "a"})

        with pytest.raises(ValueError):
            await posts.update({"title": "b"}, filter_by_tk=1)

        assert (await posts.find_one(filter_by_tk=1))["title"] == "a"

    @pytest.mark.asyncio
    async def test_hooks_false_bypasses(self, blog):
        calls = []

        async def hook(record, options):
            calls.append(record)

        blog.on(HookEvent.BEFORE_CREATE, hook, collection="posts")
        blog.on(HookEvent.AFTER_FIND, hook, collection="posts")
        posts = blog.get_repository("posts")

        await posts.create({"title": "a"}, hooks=False)
        await posts.find(hooks=False)

        assert calls == []

    @pytest.mark.asyncio
    async def test_hook_options_carry_transaction(self, blog):
        seen = []

        async def hook(record, options):
            seen.append(options.transaction)

        blog.on(HookEvent.AFTER_CREATE, hook, collection="posts")

        async with blog.connection() as conn:
            await blog.get_repository("posts").create({"title": "a"}, transaction=conn)

        assert seen == [conn]


class TestAssociations:
    @pytest.mark.asyncio
    async def test_belongs_to_by_key_and_mapping(self, blog):
        users = blog.get_repository("users")
        posts = blog.get_repository("posts")
        ada = await users.create({"name": "ada"})

        by_key = await posts.create({"title": "a", "user": ada["id"]})
        by_mapping = await posts.create({"title": "b", "user": {"name": "bob"}})

        assert by_key["userId"] == ada["id"]
        assert by_mapping["userId"] == 2
        assert await users.count() == 2

    @pytest.mark.asyncio
    async def test_has_many_create_and_replace(self, blog):
        users = blog.get_repository("users")
        posts = blog.get_repository("posts")

        ada = await users.create({"name": "ada", "posts": [{"title": "a"}, {"title": "b"}]})
        assert [p["userId"] for p in await posts.find()] == [ada["id"], ada["id"]]

        other = await posts.create({"title": "c"})
        await users.update({"posts": [1, other["id"]]}, filter_by_tk=ada["id"])

        owned = await posts.find(filter={"userId": ada["id"]})
        assert [p["id"] for p in owned] == [1, 3]
        assert (await posts.find_one(filter_by_tk=2))["userId"] is None

    @pytest.mark.asyncio
    async def test_has_one_is_set(self, blog):
        users = blog.get_repository("users")
        profiles = blog.get_repository("profiles")

        ada = await users.create({"name": "ada", "profile": {"bio": "first"}})
        await users.update({"profile": {"bio": "second"}}, filter_by_tk=ada["id"])

        assert [p["userId"] for p in await profiles.find()] == [None, ada["id"]]

    @pytest.mark.asyncio
    async def test_belongs_to_many(self, blog):
        tags = blog.get_repository("tags")
        posts = blog.get_repository("posts")
        news = await tags.create({"name": "news"})

        post = await posts.create({"title": "a", "tags": [news["id"], {"name": "tech"}]})
        rows = await blog.execute_sql('SELECT "postId", "tagId" FROM "postsTags" ORDER BY "tagId"')
        assert rows == [{"postId": post["id"], "tagId": 1}, {"postId": post["id"], "tagId": 2}]

        await posts.update({"tags": [2]}, filter_by_tk=post["id"])
        rows = await blog.execute_sql('SELECT "tagId" FROM "postsTags"')
        assert rows == [{"tagId": 2}]

        await posts.destroy(filter_by_tk=post["id"])
        assert await blog.execute_sql('SELECT * FROM "postsTags"') == []

    @pytest.mark.asyncio
    async def test_appends(self, blog):
        users = blog.get_repository("users")
        posts = blog.get_repository("posts")
        await users.create(
            {
                "name": "ada",
                "posts": [{"title": "a", "tags": [{"name": "news"}]}, {"title": "b"}],
            }
        )

        (user,) = await users.find(appends=["posts.tags", "profile"])

        assert [p["title"] for p in user["posts"]] == ["a", "b"]
        assert [t["name"] for t in user["posts"][0]["tags"]] == ["news"]
        assert user["posts"][1]["tags"] == []
        assert user["profile"] is None

        (post, _) = await posts.find(appends=["user"])
        assert post["user"]["name"] == "ada"
        assert post.to_dict()["user"]["name"] == "ada"

    @pytest.mark.asyncio
    async def test_unknown_append(self, blog):
        await blog.get_repository("users").create({"name": "ada"})

        with pytest.raises(AssociationNotFoundError):
            await blog.get_repository("users").find(appends=["comments"])


class TestSortField:
    @pytest.mark.asyncio
    async def test_sortable_assigns_positions(self, db):
        db.collection(
            {"name": "tasks", "sortable": True, "fields": [{"type": "string", "name": "title"}]}
        )
        await db.sync()
        tasks = db.get_repository("tasks")

        await tasks.create_many([{"title": "a"}, {"title": "b"}, {"title": "c", "sort": 10}])
        last = await tasks.create({"title": "d"})

        assert [t["sort"] for t in await tasks.find()] == [1, 2, 10, 11]
        assert last["sort"] == 11

    @pytest.mark.asyncio
    async def test_scoped_sort(self, db):
        db.collection(
            {
                "name": "tasks",
                "sortable": {"name": "position", "scopeKey": "listId"},
                "fields": [{"type": "integer", "name": "listId"}],
            }
        )
        await db.sync()
        tasks = db.get_repository("tasks")

        await tasks.create_many([{"listId": 1}, {"listId": 1}, {"listId": 2}])

        assert [t["position"] for t in await tasks.find()] == [1, 2, 1]

    @pytest.mark.asyncio
    async def test_removing_sort_field_removes_hook(self, db):
        tasks = db.collection({"name": "tasks", "sortable": True})

        tasks.remove_field("sort")
        await db.sync()
        record = await tasks.repository.create({})

        assert "sort" not in record
        assert db.hooks.get_hooks_for_event(HookEvent.BEFORE_CREATE) == []
