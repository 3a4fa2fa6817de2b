import logging
import math
import os
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Path, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from pymongo import DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import AuthenticatedUser, TokenValidator, get_current_user, get_optional_user
from config import Settings, configure_logging
from database import (
    connect,
    create_document,
    database_state,
    disconnect,
    ensure_indexes,
    get_db,
    now,
    update_document,
)
from errors import ApiError, register_error_handlers
from sanitize import sanitize_email, sanitize_html, sanitize_plain, sanitize_tag_value
from schemas import DELETED_COMMENT_CONTENT, Comment, Post, User
from seed import seed_database
from slugs import resolve_slug, slug_exists_in

logger = logging.getLogger("blogapp")

AUTHOR_FIELDS = {"display_name": 1, "username": 1, "avatar_url": 1}
AUTHOR_DETAIL_FIELDS = {**AUTHOR_FIELDS, "bio": 1, "oid": 1}
PUBLIC_PROFILE_FIELDS = {"display_name": 1, "username": 1, "bio": 1, "avatar_url": 1, "created_at": 1}


# ---------- Utilities ----------

def object_id(id_str: str) -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise ApiError.bad_request("Invalid id")
    return ObjectId(id_str)


def serialize(value: Any) -> Any:
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        d = {}
        for k, v in value.items():
            if k == "_id":
                d["id"] = str(v)
            else:
                d[k] = serialize(v)
        return d
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def populate_authors(db: Database, docs: List[dict], fields: Dict[str, int] = AUTHOR_FIELDS) -> List[dict]:
    """Replace each doc's author ObjectId with the author's public fields."""
    ids = list({d["author"] for d in docs})
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": ids}}, fields)}
    for d in docs:
        d["author"] = users.get(d["author"])
    return docs


def page_of(db: Database, collection: str, query: dict, sort: list, page: int, limit: int, key: str) -> dict:
    items = list(db[collection].find(query).sort(sort).skip((page - 1) * limit).limit(limit))
    total = db[collection].count_documents(query)
    return {
        key: serialize(populate_authors(db, items)),
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit),
    }


def empty_page(key: str, page: int, limit: int) -> dict:
    return {key: [], "total": 0, "page": page, "limit": limit, "total_pages": 0}


def username_from_email(email: str) -> str:
    return re.sub(r"[^a-z0-9_-]", "", email.split("@")[0].lower())


def find_or_create_user(db: Database, identity: AuthenticatedUser, **extra) -> dict:
    user = db["user"].find_one({"oid": identity.oid})
    if user:
        return user
    profile = User(
        oid=identity.oid,
        email=identity.email,
        display_name=sanitize_plain(identity.name) or "Unknown",
        username=username_from_email(identity.email),
        **extra,
    )
    doc = create_document(db, "user", profile)
    logger.info("New user created: oid=%s email=%s", identity.oid, sanitize_email(identity.email))
    return doc


def require_author(db: Database, author_id: ObjectId, identity: AuthenticatedUser, message: str) -> None:
    author = db["user"].find_one({"_id": author_id}, {"oid": 1})
    if not author or author.get("oid") != identity.oid:
        raise ApiError.forbidden(message)


def increment_view_count(db: Database, post_id: ObjectId) -> None:
    try:
        db["post"].update_one({"_id": post_id}, {"$inc": {"view_count": 1}})
    except PyMongoError as e:
        logger.error("Failed to increment view count for %s: %s", post_id, e)


def validate_changes(model: type, doc: dict, changes: Dict[str, Any]) -> None:
    """Check the stored document with changes applied against its collection schema."""
    model.model_validate({**{k: doc[k] for k in model.model_fields if k in doc}, **changes})


# ---------- Schemas (API layer) ----------

class PostCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    excerpt: Optional[str] = Field(None, max_length=500)
    tags: Optional[List[str]] = None
    status: Optional[Literal["draft", "published"]] = None
    featured_image_url: Optional[HttpUrl] = None


class PostUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    excerpt: Optional[str] = Field(None, max_length=500)
    tags: Optional[List[str]] = None
    status: Optional[Literal["draft", "published", "archived"]] = None
    featured_image_url: Optional[HttpUrl] = None


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=1, max_length=2000)
    parent_comment_id: Optional[str] = Field(None, description="Comment being replied to")


class CommentUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=1, max_length=2000)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[HttpUrl] = None


def clean_tags(tags: Optional[List[str]]) -> List[str]:
    return [t for t in (sanitize_tag_value(t) for t in tags or []) if t]


# ---------- Health ----------

health = APIRouter(tags=["health"])


@health.get("/health")
def health_check(request: Request):
    timestamp = datetime.now(timezone.utc).isoformat()
    if database_state(request.app.state.client) == "connected":
        return {"status": "healthy", "timestamp": timestamp}
    return JSONResponse(status_code=503, content={
        "status": "unhealthy",
        "reason": "Database not connected",
        "timestamp": timestamp,
    })


@health.get("/health/detailed")
def health_detailed(request: Request):
    db_state = database_state(request.app.state.client)
    healthy = db_state == "connected"
    body = {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "pid": os.getpid(),
        "components": {
            "database": {"status": "healthy" if healthy else "unhealthy", "state": db_state},
            "api": {"status": "healthy"},
        },
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


@health.get("/ready")
def ready(request: Request):
    if database_state(request.app.state.client) == "connected":
        return {"ready": True}
    return JSONResponse(status_code=503, content={"ready": False, "reason": "Database not ready"})


@health.get("/live")
def live():
    return {"live": True}


# ---------- Posts ----------

api = APIRouter(prefix="/api")


@api.get("/posts", tags=["posts"])
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    tag: Optional[str] = None,
    author: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"status": "published"}
    if tag and tag.strip():
        query["tags"] = tag.strip().lower()
    if author and author.strip():
        user = db["user"].find_one({"username": author.strip()}, {"_id": 1})
        if not user:
            return empty_page("posts", page, limit)
        query["author"] = user["_id"]

    return page_of(db, "post", query, [("published_at", DESCENDING)], page, limit, "posts")


@api.get("/posts/my", tags=["posts"])
def list_my_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    status: Optional[Literal["draft", "published", "all"]] = None,
    identity: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = db["user"].find_one({"oid": identity.oid}, {"_id": 1})
    if not user:
        return empty_page("posts", page, limit)

    query: Dict[str, Any] = {"author": user["_id"]}
    if status and status != "all":
        query["status"] = status
    return page_of(db, "post", query, [("updated_at", DESCENDING)], page, limit, "posts")


@api.get("/posts/{slug}", tags=["posts"])
def get_post(
    slug: str,
    background_tasks: BackgroundTasks,
    identity: Optional[AuthenticatedUser] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    post = db["post"].find_one({"slug": slug.strip()})
    if not post:
        raise ApiError.not_found("Post")

    author = db["user"].find_one({"_id": post["author"]}, AUTHOR_DETAIL_FIELDS)
    # Drafts and archived posts look missing to everyone but the author
    if post["status"] != "published":
        if identity is None or author is None or author.get("oid") != identity.oid:
            raise ApiError.not_found("Post")

    background_tasks.add_task(increment_view_count, db, post["_id"])
    post["author"] = author
    return serialize(post)


@api.post("/posts", status_code=201, tags=["posts"])
def create_post(
    data: PostCreate,
    identity: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = find_or_create_user(db, identity)
    slug = resolve_slug(data.title, user["username"], slug_exists_in(db))

    status = data.status or "draft"
    post = Post(
        title=sanitize_plain(data.title),
        slug=slug,
        content=sanitize_html(data.content),
        excerpt=sanitize_plain(data.excerpt) or None,
        author=user["_id"],
        status=status,
        tags=clean_tags(data.tags),
        featured_image_url=str(data.featured_image_url) if data.featured_image_url else None,
        published_at=now() if status == "published" else None,
    )
    # A concurrent create can still take the slug; the unique index turns that into a 409
    doc = create_document(db, "post", post)
    logger.info("Post created: id=%s slug=%s author=%s", doc["_id"], slug, user["_id"])

    populate_authors(db, [doc])
    return serialize(doc)


@api.put("/posts/{slug}", tags=["posts"])
def update_post(
    slug: str,
    data: PostUpdate,
    identity: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = db["post"].find_one({"slug": slug.strip()})
    if not post:
        raise ApiError.not_found("Post")
    require_author(db, post["author"], identity, "You can only edit your own posts")

    changes: Dict[str, Any] = {}
    if data.title:
        changes["title"] = sanitize_plain(data.title)
    if data.content:
        changes["content"] = sanitize_html(data.content)
    if data.excerpt is not None:
        changes["excerpt"] = sanitize_plain(data.excerpt)
    if data.tags is not None:
        changes["tags"] = clean_tags(data.tags)
    if "featured_image_url" in data.model_fields_set:
        changes["featured_image_url"] = str(data.featured_image_url) if data.featured_image_url else None
    if data.status:
        changes["status"] = data.status
        if data.status == "published" and not post.get("published_at"):
            changes["published_at"] = now()

    validate_changes(Post, post, changes)

    updated = update_document(db, "post", {"_id": post["_id"]}, changes)
    if updated is None:
        raise ApiError.not_found("Post")
    logger.info("Post updated: id=%s", post["_id"])

    populate_authors(db, [updated])
    return serialize(updated)


@api.delete("/posts/{slug}", status_code=204, tags=["posts"])
def delete_post(
    slug: str,
    identity: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = db["post"].find_one({"slug": slug.strip()})
    if not post:
        raise ApiError.not_found("Post")
    require_author(db, post["author"], identity, "You can only delete your own posts")

    db["post"].delete_one({"_id": post["_id"]})
    logger.info("Post deleted: id=%s", post["_id"])
    return Response(status_code=204)


# ---------- Comments ----------

@api.get("/posts/{slug}/comments", tags=["comments"])
def list_comments(
    slug: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    db: Database = Depends(get_db),
):
    post = db["post"].find_one({"slug": slug.strip(), "status": "published"}, {"_id": 1})
    if not post:
        raise ApiError.not_found("Post")

    query = {"post": post["_id"], "is_deleted": False, "parent_comment": None}
    return page_of(db, "comment", query, [("created_at", DESCENDING)], page, limit, "comments")


@api.post("/posts/{slug}/comments", status_code=201, tags=["comments"])
def add_comment(
    slug: str,
    payload: CommentCreate,
    identity: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = db["post"].find_one({"slug": slug.strip(), "status": "published"}, {"_id": 1})
    if not post:
        raise ApiError.not_found("Post")

    user = find_or_create_user(db, identity)

    parent_id = None
    if payload.parent_comment_id:
        parent = db["comment"].find_one({
            "_id": object_id(payload.parent_comment_id),
            "post": post["_id"],
            "is_deleted": False,
        })
        if not parent:
            raise ApiError.not_found("Parent comment")
        # Replies to replies join the top-level thread
        parent_id = parent.get("parent_comment") or parent["_id"]

    comment = Comment(
        post=post["_id"],
        author=user["_id"],
        content=sanitize_html(payload.content),
        parent_comment=parent_id,
    )
    doc = create_document(db, "comment", comment)
    logger.info("Comment created: id=%s post=%s", doc["_id"], post["_id"])

    populate_authors(db, [doc])
    return serialize(doc)


def _own_comment(db: Database, comment_id: str, identity: AuthenticatedUser, message: str) -> dict:
    comment = db["comment"].find_one({"_id": object_id(comment_id)})
    if not comment or comment.get("is_deleted"):
        raise ApiError.not_found("Comment")
    require_author(db, comment["author"], identity, message)
    return comment


@api.put("/comments/{comment_id}", tags=["comments"])
def update_comment(
    comment_id: str,
    payload: CommentUpdate,
    identity: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    comment = _own_comment(db, comment_id, identity, "You can only edit your own comments")
    changes = {"content": sanitize_html(payload.content), "is_edited": True}
    validate_changes(Comment, comment, changes)

    updated = update_document(db, "comment", {"_id": comment["_id"]}, changes)
    logger.info("Comment updated: id=%s", comment["_id"])

    populate_authors(db, [updated])
    return serialize(updated)


@api.delete("/comments/{comment_id}", status_code=204, tags=["comments"])
def delete_comment(
    comment_id: str,
    identity: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    comment = _own_comment(db, comment_id, identity, "You can only delete your own comments")
    # Comments are soft-deleted so reply threads keep their parent
    update_document(db, "comment", {"_id": comment["_id"]}, {
        "is_deleted": True,
        "content": DELETED_COMMENT_CONTENT,
    })
    logger.info("Comment deleted: id=%s", comment["_id"])
    return Response(status_code=204)


# ---------- Users ----------

@api.get("/users/me", tags=["users"])
def get_me(identity: AuthenticatedUser = Depends(get_current_user), db: Database = Depends(get_db)):
    user = db["user"].find_one({"oid": identity.oid})
    if not user:
        user = find_or_create_user(db, identity, last_login_at=now())
        return serialize(user)

    db["user"].update_one({"oid": identity.oid}, {"$set": {"last_login_at": now()}})
    return serialize(user)


@api.put("/users/me", tags=["users"])
def update_me(
    data: ProfileUpdate,
    identity: AuthenticatedUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = db["user"].find_one({"oid": identity.oid})
    if not user:
        raise ApiError.not_found("User")

    changes: Dict[str, Any] = {}
    if data.display_name:
        changes["display_name"] = sanitize_plain(data.display_name)
    if data.bio is not None:
        changes["bio"] = sanitize_plain(data.bio)
    if "avatar_url" in data.model_fields_set:
        changes["avatar_url"] = str(data.avatar_url) if data.avatar_url else None
    validate_changes(User, user, changes)

    user = update_document(db, "user", {"oid": identity.oid}, changes)
    if not user:
        raise ApiError.not_found("User")
    logger.info("User profile updated: oid=%s", identity.oid)
    return serialize(user)


@api.get("/users/{username}", tags=["users"])
def get_user(username: str = Path(..., min_length=3, max_length=30), db: Database = Depends(get_db)):
    user = db["user"].find_one({"username": username.strip(), "is_active": True}, PUBLIC_PROFILE_FIELDS)
    if not user:
        raise ApiError.not_found("User")
    return serialize(user)


# ---------- App ----------

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    owns_client = app.state.client is None
    if owns_client:
        app.state.client = connect(settings)
        app.state.db = app.state.client[settings.resolved_database_name]
        try:
            ensure_indexes(app.state.db)
        except PyMongoError:
            logger.exception("Failed to connect to database")
            raise

    if settings.seed_on_startup:
        try:
            seed_database(app.state.db)
        except PyMongoError:
            logger.exception("Seeding sample data failed")

    logger.info("Blog API started (environment=%s)", settings.environment)
    yield
    logger.info("Shutting down Blog API")
    if owns_client:
        disconnect(app.state.client)
        app.state.client = None


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[MongoClient] = None,
    token_validator: Optional[TokenValidator] = None,
) -> FastAPI:
    """Build the API. A client passed in is used as-is and never closed by the app."""
    settings = settings or Settings()

    app = FastAPI(title="Blog API", lifespan=lifespan)
    app.state.settings = settings
    app.state.started_at = time.monotonic()
    app.state.client = client
    app.state.db = client[settings.resolved_database_name] if client is not None else None
    app.state.token_validator = token_validator or TokenValidator.from_settings(settings)
    if client is not None:
        ensure_indexes(app.state.db)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code,
                    (time.perf_counter() - start) * 1000)
        return response

    register_error_handlers(app)

    app.include_router(health)
    # Static Web Apps only proxies /api/* to the backend
    app.include_router(health, prefix="/api")
    app.include_router(api)
    return app


if __name__ == "__main__":
    settings = Settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
