"""
Sample data for development.

    python -m seed

Seeding is skipped when the post collection already has documents.
"""

import logging
from datetime import timedelta

from pymongo.database import Database

from config import Settings, configure_logging
from database import connect, create_document, disconnect, ensure_indexes, now
from schemas import Comment, Post, User, collection_name
from slugs import resolve_slug, slug_exists_in

logger = logging.getLogger(__name__)

SAMPLE_USERS = [
    {
        "oid": "sample-user-001",
        "email": "alice@example.com",
        "display_name": "Alice Johnson",
        "username": "alice",
        "bio": "Full-stack developer passionate about Azure and cloud architecture.",
    },
    {
        "oid": "sample-user-002",
        "email": "bob@example.com",
        "display_name": "Bob Smith",
        "username": "bob",
        "bio": "DevOps engineer with 5 years of AWS experience, now learning Azure.",
    },
    {
        "oid": "sample-user-003",
        "email": "carol@example.com",
        "display_name": "Carol Williams",
        "username": "carol",
        "bio": "Cloud architect specializing in hybrid cloud solutions.",
        "role": "admin",
    },
]

SAMPLE_POSTS = [
    {
        "author": "alice",
        "title": "Getting Started with Azure App Service",
        "content": "<p>Azure App Service is a fully managed platform for building, deploying "
                   "and scaling web applications.</p>",
        "excerpt": "A first look at App Service for people coming from AWS.",
        "tags": ["azure", "app-service", "paas"],
        "status": "published",
        "days_ago": 10,
    },
    {
        "author": "bob",
        "title": "Moving from VMs to PaaS",
        "content": "<p>Lift-and-shift is only the first step. Here is what changes when the "
                   "platform manages the servers for you.</p>",
        "excerpt": "What changes when you stop managing servers.",
        "tags": ["migration", "paas"],
        "status": "published",
        "days_ago": 4,
    },
    {
        "author": "carol",
        "title": "Cosmos DB for MongoDB vCore",
        "content": "<p>Notes on connection strings, TLS and retryable writes.</p>",
        "tags": ["cosmosdb", "mongodb"],
        "status": "draft",
        "days_ago": 1,
    },
]

SAMPLE_COMMENTS = [
    ("bob", 0, "Great overview, the deployment slot section helped a lot."),
    ("carol", 0, "Worth mentioning the health check path setting too."),
    ("alice", 1, "We did exactly this last quarter. Good write-up!"),
]


def seed_database(db: Database) -> bool:
    """Insert the sample data. Returns False when the database already had posts."""
    if db[collection_name(Post)].count_documents({}) > 0:
        logger.info("Posts already present, skipping seed")
        return False

    users = {}
    for data in SAMPLE_USERS:
        user = User(**data)
        users[user.username] = create_document(db, collection_name(User), user)

    posts = []
    exists = slug_exists_in(db)
    for data in SAMPLE_POSTS:
        author = users[data["author"]]
        published_at = now() - timedelta(days=data["days_ago"]) if data["status"] == "published" else None
        post = Post(
            title=data["title"],
            slug=resolve_slug(data["title"], author["username"], exists),
            content=data["content"],
            excerpt=data.get("excerpt"),
            author=author["_id"],
            status=data["status"],
            tags=data["tags"],
            published_at=published_at,
        )
        posts.append(create_document(db, collection_name(Post), post))

    for username, post_index, content in SAMPLE_COMMENTS:
        comment = Comment(post=posts[post_index]["_id"], author=users[username]["_id"], content=content)
        create_document(db, collection_name(Comment), comment)

    logger.info("Seeded %d users, %d posts, %d comments", len(users), len(posts), len(SAMPLE_COMMENTS))
    return True


def main() -> None:
    settings = Settings()
    configure_logging(settings)
    client = connect(settings)
    try:
        db = client[settings.resolved_database_name]
        ensure_indexes(db)
        seed_database(db)
    finally:
        disconnect(client)


if __name__ == "__main__":
    main()
