import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text, Boolean, JSON

from storefront.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class BlogPostModel(Base):
    __tablename__ = "blog_posts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug = Column(String(255), unique=True, index=True, nullable=False)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False)
    excerpt = Column(Text, nullable=True)
    featured_image = Column(String(500), nullable=True)
    category = Column(String(100), index=True, nullable=False, default="general")
    tags = Column(JSON, nullable=False, default=list)
    meta_title = Column(String(500), nullable=True)
    meta_description = Column(Text, nullable=True)
    author = Column(String(255), nullable=True)

    published_at = Column(DateTime(timezone=True), index=True, nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
    is_published = Column(Boolean, nullable=False, default=True)
