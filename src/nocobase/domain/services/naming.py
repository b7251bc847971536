"""Naming helpers for generated identifiers.

Derives association targets, foreign keys, join collection names and index
names from collection and field names (``posts`` + ``tags`` -> ``postsTags``,
``belongsTo user`` -> ``userId``).
"""

import hashlib
import re

UNCOUNTABLE = frozenset({
    "data",
    "equipment",
    "fish",
    "information",
    "info",
    "metadata",
    "news",
    "series",
    "sheep",
    "species",
})

IRREGULAR = {
    "child": "children",
    "foot": "feet",
    "goose": "geese",
    "man": "men",
    "mouse": "mice",
    "person": "people",
    "tooth": "teeth",
    "woman": "women",
}

# First matching rule wins
PLURAL_RULES = [
    (re.compile(r"([^aeiouy]|qu)y$", re.IGNORECASE), r"\1ies"),
    (re.compile(r"(x|ch|ss|sh)$", re.IGNORECASE), r"\1es"),
    (re.compile(r"s$", re.IGNORECASE), "s"),
]

SINGULAR_RULES = [
    (re.compile(r"([^aeiouy]|qu)ies$", re.IGNORECASE), r"\1y"),
    (re.compile(r"(x|ch|ss|sh)es$", re.IGNORECASE), r"\1"),
    (re.compile(r"(ss)$", re.IGNORECASE), r"\1"),
    (re.compile(r"s$", re.IGNORECASE), ""),
]

CAMELIZE_PATTERN = re.compile(r"[-_\s]+(.)?")


def _last_word(word: str) -> tuple[str, str]:
    """Split camelCase/snake_case words into (head, last word)."""
    match = re.search(r"([A-Z]?[a-z]+|[A-Z]+)$", word)
    if not match:
        return "", word
    return word[: match.start()], match.group(0)


def _swap_irregular(word: str, mapping: dict[str, str]) -> str | None:
    head, last = _last_word(word)
    replacement = mapping.get(last.lower())
    if replacement is None:
        return None
    if last[:1].isupper():
        replacement = replacement.capitalize()
    return head + replacement


def pluralize(word: str) -> str:
    """Plural form of an English word; words already ending in ``s`` are kept.

    Examples:
        >>> pluralize("user")
        'users'
        >>> pluralize("category")
        'categories'
        >>> pluralize("users")
        'users'
    """
    _, last = _last_word(word)
    if last.lower() in UNCOUNTABLE:
        return word
    if last.lower() in IRREGULAR.values():
        return word
    irregular = _swap_irregular(word, IRREGULAR)
    if irregular is not None:
        return irregular
    for pattern, replacement in PLURAL_RULES:
        if pattern.search(word):
            return pattern.sub(replacement, word)
    return word + "s"


def singularize(word: str) -> str:
    """Singular form of an English word.

    Examples:
        >>> singularize("posts")
        'post'
        >>> singularize("categories")
        'category'
        >>> singularize("post")
        'post'
    """
    _, last = _last_word(word)
    if last.lower() in UNCOUNTABLE:
        return word
    irregular = _swap_irregular(word, {v: k for k, v in IRREGULAR.items()})
    if irregular is not None:
        return irregular
    if last.lower() in IRREGULAR:
        return word
    for pattern, replacement in SINGULAR_RULES:
        if pattern.search(word):
            return pattern.sub(replacement, word)
    return word


def camelize(text: str) -> str:
    """Join ``_``/``-``/space separated parts, upper-casing each following letter.

    The first letter keeps its case: ``post_id`` -> ``postId``.
    """
    return CAMELIZE_PATTERN.sub(
        lambda m: m.group(1).upper() if m.group(1) else "", text.strip()
    )


def underscore(text: str) -> str:
    """Lower-case snake_case form: ``postsTags_a`` -> ``posts_tags_a``."""
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", text)
    text = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", text)
    return text.replace("-", "_").lower()


def md5(text: str) -> str:
    """Hex md5 digest, used to shorten over-long generated identifiers."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()
