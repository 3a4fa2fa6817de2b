"""
Post slugs.

A slug is derived from the post title and must be unique across all posts.
Collisions are resolved by adding the author's username, then a counter:

    hello-world
    hello-world-by-alice
    hello-world-by-alice-2, hello-world-by-alice-3, ...

The check and the later insert are not atomic. Two requests racing on the same
title can both see a slug as free; the unique index on post.slug rejects the
second insert with DuplicateKeyError.
"""

import re
from typing import Callable

from pymongo.database import Database

MAX_BASE_LENGTH = 100
FALLBACK_SLUG = "post"

_UNSAFE = re.compile(r"[^A-Za-z0-9_\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")


def generate_slug(title: str) -> str:
    s = (title or "").lower().strip()
    s = _UNSAFE.sub("", s)
    s = _WHITESPACE.sub("-", s)
    s = _HYPHENS.sub("-", s)
    return s[:MAX_BASE_LENGTH] or FALLBACK_SLUG


def resolve_slug(title: str, username: str, exists: Callable[[str], bool]) -> str:
    """Return the first free slug for title, asking exists() about each candidate."""
    base = generate_slug(title)
    if not exists(base):
        return base

    slug = f"{base}-by-{username}"
    counter = 2
    while exists(slug):
        slug = f"{base}-by-{username}-{counter}"
        counter += 1
    return slug


def slug_exists_in(db: Database) -> Callable[[str], bool]:
    def exists(slug: str) -> bool:
        return db["post"].find_one({"slug": slug}, {"_id": 1}) is not None
    return exists
