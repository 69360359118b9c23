"""
Direct database access that bypasses the Supabase REST layer.

Holds the compression settings and image metadata tables and gives the image
library a last-resort path to the posts table when Supabase is unreachable.
"""
import os
import json
import uuid
import logging
from datetime import datetime, timezone
from typing import Dict, List

from dotenv import load_dotenv
from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    Float,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PostgreSQL_UUID
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator, CHAR

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")


# Custom UUID type that works with both SQLite and PostgreSQL
class GUID(TypeDecorator):
    """Platform-independent GUID type.
    Uses PostgreSQL's UUID type, otherwise uses CHAR(36), storing as stringified hex values.
    """
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgreSQL_UUID())
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    connect_args=(
        {"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
    ),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class CompressionSettings(Base):
    __tablename__ = "compression_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(GUID(), nullable=True, index=True)  # NULL = global settings
    compression_enabled = Column(Boolean, nullable=False, default=True)
    auto_compress = Column(Boolean, nullable=False, default=True)
    size_threshold_kb = Column(Integer, nullable=False, default=500)
    dimension_threshold_px = Column(Integer, nullable=False, default=2000)
    quality_preset = Column(String(20), nullable=False, default="balanced")
    custom_quality = Column(Integer, nullable=False, default=75)
    convert_photos_to_webp = Column(Boolean, nullable=False, default=True)
    preserve_png_for_graphics = Column(Boolean, nullable=False, default=True)
    always_preserve_format = Column(Boolean, nullable=False, default=False)
    enable_legacy_compression = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> Dict:
        return {
            "compression_enabled": self.compression_enabled,
            "auto_compress": self.auto_compress,
            "size_threshold_kb": self.size_threshold_kb,
            "dimension_threshold_px": self.dimension_threshold_px,
            "quality_preset": self.quality_preset,
            "custom_quality": self.custom_quality,
            "convert_photos_to_webp": self.convert_photos_to_webp,
            "preserve_png_for_graphics": self.preserve_png_for_graphics,
            "always_preserve_format": self.always_preserve_format,
            "enable_legacy_compression": self.enable_legacy_compression,
        }


class ImageMetadata(Base):
    __tablename__ = "image_metadata"

    id = Column(Integer, primary_key=True, index=True)
    path = Column(String, nullable=False, index=True)
    mime_type = Column(String(50), nullable=False)
    file_size_bytes = Column(Integer, nullable=False)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    is_public = Column(Boolean, nullable=False, default=True)
    is_compressed = Column(Boolean, nullable=False, default=False)
    original_size_bytes = Column(Integer, nullable=True)
    compressed_size_bytes = Column(Integer, nullable=True)
    compression_ratio = Column(Float, nullable=True)
    compression_quality = Column(String(20), nullable=True)
    original_format = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


def create_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def test_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Direct database connection failed: {str(e)}")
        return False


def _json_value(value):
    # sqlite hands JSON columns back as text
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def fetch_posts_for_images() -> List[Dict]:
    """
    Read posts straight from the database for image scanning.

    Raises SQLAlchemyError when the table is missing or the connection fails.
    """
    query = text(
        "SELECT id, title, slug, cover_image_url, content_rich, created_at "
        "FROM posts ORDER BY created_at DESC"
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()

    posts = []
    for row in rows:
        created_at = row["created_at"]
        posts.append({
            "id": str(row["id"]),
            "title": row["title"],
            "slug": row["slug"],
            "cover_image_url": row["cover_image_url"],
            "content_rich": _json_value(row["content_rich"]),
            "created_at": created_at.isoformat() if isinstance(created_at, datetime) else created_at,
        })
    return posts
