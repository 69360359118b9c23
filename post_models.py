from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from enum import Enum


# Enums
class PostStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    PRIVATE = "private"
    SYSTEM = "system"
    ARCHIVED = "archived"


def _check_http_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if not v:
        return None
    if not (v.startswith("http://") or v.startswith("https://") or v.startswith("/uploads/")):
        raise ValueError("Must be an http(s) URL")
    return v


# Request Models
class CreatePostRequest(BaseModel):
    title: str = Field(..., max_length=120)
    content_rich: Dict[str, Any]
    content_html: Optional[str] = None
    excerpt: Optional[str] = Field(None, max_length=500)
    slug: Optional[str] = Field(None, max_length=120)
    cover_image_url: Optional[str] = None
    cover_image_alt: Optional[str] = Field(None, max_length=500)
    status: PostStatus = PostStatus.DRAFT
    label_ids: Optional[List[str]] = None
    author_id: Optional[str] = None  # required when using the admin token

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, v):
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v

    @field_validator("cover_image_url")
    @classmethod
    def validate_cover_url(cls, v):
        return _check_http_url(v)


class UpdatePostRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=120)
    content_rich: Optional[Dict[str, Any]] = None
    content_html: Optional[str] = None
    excerpt: Optional[str] = Field(None, max_length=500)
    slug: Optional[str] = Field(None, max_length=120)
    cover_image_url: Optional[str] = None
    cover_image_alt: Optional[str] = Field(None, max_length=500)
    status: Optional[PostStatus] = None
    label_ids: Optional[List[str]] = None
    regenerateSlug: bool = False

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip() if v else v

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, v):
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v

    @field_validator("cover_image_url")
    @classmethod
    def validate_cover_url(cls, v):
        return _check_http_url(v)


class LabelRequest(BaseModel):
    name: str = Field(..., max_length=50)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Name is required")
        return v.strip()
