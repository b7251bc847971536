"""Tests for the naming helpers."""

import pytest

from nocobase.domain.services.naming import camelize, md5, pluralize, singularize, underscore


@pytest.mark.parametrize(
    "word,expected",
    [
        ("user", "users"),
        ("users", "users"),
        ("category", "categories"),
        ("box", "boxes"),
        ("branch", "branches"),
        ("day", "days"),
        ("person", "people"),
        ("data", "data"),
        ("blogPost", "blogPosts"),
    ],
)
def test_pluralize(word, expected):
    assert pluralize(word) == expected


@pytest.mark.parametrize(
    "word,expected",
    [
        ("posts", "post"),
        ("post", "post"),
        ("categories", "category"),
        ("boxes", "box"),
        ("classes", "class"),
        ("people", "person"),
        ("children", "child"),
        ("news", "news"),
        ("blogPosts", "blogPost"),
    ],
)
def test_singularize(word, expected):
    assert singularize(word) == expected


@pytest.mark.parametrize(
    "text,expected",
    [
        ("user_id", "userId"),
        ("posts_tags", "postsTags"),
        ("parent-id", "parentId"),
        ("categories_tags", "categoriesTags"),
        ("already", "already"),
    ],
)
def test_camelize(text, expected):
    assert camelize(text) == expected


@pytest.mark.parametrize(
    "text,expected",
    [
        ("postsTags_postId", "posts_tags_post_id"),
        ("users_name", "users_name"),
        ("HTTPServer", "http_server"),
    ],
)
def test_underscore(text, expected):
    assert underscore(text) == expected


def test_md5_is_stable_hex():
    digest = md5("posts_tags_post_id_tag_id")

    assert digest == md5("posts_tags_post_id_tag_id")
    assert len(digest) == 32
    assert int(digest, 16) >= 0
