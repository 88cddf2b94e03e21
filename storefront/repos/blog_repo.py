# storefront/repos/blog_repo.py
import json
import math
import os
import re
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.blog_post import BlogPostModel
from storefront.domain.errors import ConflictError
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_AUTHOR = "Sarcasm Mugs Team"
DEFAULT_CATEGORY = "general"
EXCERPT_LENGTH = 160

BLOG_FIELDS = (
    "id", "slug", "title", "content", "excerpt", "featured_image", "category", "tags",
    "meta_title", "meta_description", "author", "published_at", "updated_at", "is_published",
)
MUTABLE_FIELDS = (
    "title", "content", "excerpt", "featured_image", "category", "tags",
    "meta_title", "meta_description", "author", "is_published",
)


def slugify(text: str) -> str:
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    return text.strip("-")


def new_post_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Column values for a new post, with the derived defaults filled in."""
    content = data["content"]
    excerpt = data.get("excerpt") or (content[:EXCERPT_LENGTH] + "..." if content else "")
    return {
        "slug": slugify(data["title"]),
        "title": data["title"],
        "content": content,
        "excerpt": excerpt,
        "featured_image": data.get("featured_image") or "",
        "category": data.get("category") or DEFAULT_CATEGORY,
        "tags": list(data.get("tags") or []),
        "meta_title": data.get("meta_title") or data["title"],
        "meta_description": data.get("meta_description") or excerpt,
        "author": data.get("author") or DEFAULT_AUTHOR,
    }


def changed_fields(updates: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in updates.items() if k in MUTABLE_FIELDS and v is not None}
    if changes.get("title"):
        changes["slug"] = slugify(changes["title"])
    return changes


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit),
    }


class BlogRepo(ABC):
    """Storage for blog posts. Implementations: SqlBlogRepo, JsonBlogRepo."""

    @abstractmethod
    def list(self, page: int = 1, limit: int = 10, category: str | None = None,
             is_published: bool = True) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get(self, identifier: str) -> Dict[str, Any] | None:
        """Post by id or slug."""

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def update(self, post_id: str, updates: Dict[str, Any]) -> Dict[str, Any] | None:
        ...

    @abstractmethod
    def delete(self, post_id: str) -> bool:
        ...

    @abstractmethod
    def categories(self) -> List[str]:
        ...


class SqlBlogRepo(BlogRepo):
    def __init__(self, db: Session):
        self.db = db

    def list(self, page=1, limit=10, category=None, is_published=True):
        page, limit = max(int(page), 1), max(int(limit), 1)

        conditions = [BlogPostModel.is_published == is_published]
        if category:
            conditions.append(BlogPostModel.category == category)

        posts = self.db.execute(
            select(BlogPostModel)
            .where(*conditions)
            .order_by(BlogPostModel.published_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).scalars().all()
        total = self.db.execute(
            select(func.count()).select_from(BlogPostModel).where(*conditions)
        ).scalar_one()

        return {
            "posts": [self._to_dict(p) for p in posts],
            "pagination": _pagination(page, limit, total),
        }

    def get(self, identifier):
        post = self.db.execute(
            select(BlogPostModel).where(
                (BlogPostModel.id == identifier) | (BlogPostModel.slug == identifier)
            )
        ).scalars().first()
        return self._to_dict(post) if post else None

    def create(self, data):
        post = BlogPostModel(**new_post_fields(data))
        self.db.add(post)
        self._commit(post.slug)
        self.db.refresh(post)
        return self._to_dict(post)

    def update(self, post_id, updates):
        post = self.db.get(BlogPostModel, post_id)
        if not post:
            return None

        for field, value in changed_fields(updates).items():
            setattr(post, field, value)
        self._commit(post.slug)
        self.db.refresh(post)
        return self._to_dict(post)

    def delete(self, post_id):
        post = self.db.get(BlogPostModel, post_id)
        if not post:
            return False
        self.db.delete(post)
        self.db.commit()
        return True

    def categories(self):
        return list(self.db.execute(
            select(BlogPostModel.category)
            .where(BlogPostModel.is_published.is_(True))
            .distinct()
            .order_by(BlogPostModel.category)
        ).scalars().all())

    def _commit(self, slug: str):
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(f"A post with slug '{slug}' already exists") from e

    @staticmethod
    def _to_dict(post: BlogPostModel) -> Dict[str, Any]:
        return {field: getattr(post, field) for field in BLOG_FIELDS}


class JsonBlogRepo(BlogRepo):
    """Posts kept in a single JSON array on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def list(self, page=1, limit=10, category=None, is_published=True):
        page, limit = max(int(page), 1), max(int(limit), 1)

        posts = [
            p for p in self._load()
            if p.get("is_published", True) == is_published
            and (not category or p.get("category") == category)
        ]
        posts.sort(key=lambda p: p.get("published_at") or "", reverse=True)
        start = (page - 1) * limit

        return {
            "posts": posts[start:start + limit],
            "pagination": _pagination(page, limit, len(posts)),
        }

    def get(self, identifier):
        return next(
            (p for p in self._load() if identifier in (p.get("id"), p.get("slug"))),
            None,
        )

    def create(self, data):
        now = self._now()
        post = {
            "id": str(uuid.uuid4()),
            **new_post_fields(data),
            "published_at": now,
            "updated_at": now,
            "is_published": True,
        }
        with self._lock:
            posts = self._load()
            self._check_slug(posts, post["slug"], post["id"])
            posts.append(post)
            self._save(posts)
        return post

    def update(self, post_id, updates):
        with self._lock:
            posts = self._load()
            post = next((p for p in posts if p.get("id") == post_id), None)
            if post is None:
                return None

            changes = changed_fields(updates)
            if "slug" in changes:
                self._check_slug(posts, changes["slug"], post_id)
            post.update(changes)
            post["updated_at"] = self._now()
            self._save(posts)
        return post

    def delete(self, post_id):
        with self._lock:
            posts = self._load()
            remaining = [p for p in posts if p.get("id") != post_id]
            if len(remaining) == len(posts):
                return False
            self._save(remaining)
        return True

    def categories(self):
        return sorted({
            p.get("category") or DEFAULT_CATEGORY
            for p in self._load()
            if p.get("is_published", True)
        })

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _check_slug(posts, slug, post_id):
        if any(p.get("slug") == slug and p.get("id") != post_id for p in posts):
            raise ConflictError(f"A post with slug '{slug}' already exists")

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        with self.path.open(encoding="utf-8") as f:
            return json.load(f)

    def _save(self, posts: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(posts, f, indent=2, ensure_ascii=False)
        os.replace(tmp, self.path)


def build_blog_repo_factory(storage: str, data_file: str | Path) -> Callable[[Session], BlogRepo]:
    """Pick the blog backend once at startup."""
    if storage == "json":
        logger.info(f"Blog posts stored in {data_file}")
        repo = JsonBlogRepo(data_file)
        return lambda db: repo
    if storage == "sql":
        return SqlBlogRepo
    raise ValueError(f"Unknown BLOG_STORAGE '{storage}' (expected 'sql' or 'json')")
