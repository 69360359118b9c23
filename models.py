from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any


# Images
class ImageMetadataRequest(BaseModel):
    path: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)
    file_size_bytes: int = Field(..., gt=0)
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    alt_text: Optional[str] = Field(None, max_length=500)
    title: Optional[str] = Field(None, max_length=120)
    is_public: bool = True
    owner_id: Optional[str] = None


class UpdateImageRequest(BaseModel):
    alt_text: Optional[str] = Field(None, max_length=500)
    title: Optional[str] = Field(None, max_length=120)

    @field_validator("alt_text")
    @classmethod
    def validate_alt_text(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Alt text cannot be empty")
        return v.strip() if v else v


class DeduplicateRequest(BaseModel):
    dryRun: bool = False


# Compression
class CompressionSettingsUpdate(BaseModel):
    compression_enabled: Optional[bool] = None
    auto_compress: Optional[bool] = None
    size_threshold_kb: Optional[int] = Field(None, ge=0)
    dimension_threshold_px: Optional[int] = Field(None, ge=0)
    quality_preset: Optional[str] = None
    custom_quality: Optional[int] = None
    convert_photos_to_webp: Optional[bool] = None
    preserve_png_for_graphics: Optional[bool] = None
    always_preserve_format: Optional[bool] = None
    enable_legacy_compression: Optional[bool] = None


class CompressUrlRequest(BaseModel):
    url: Optional[str] = None
    quality: Optional[Any] = None  # preset name or 10-100
    format: Optional[str] = None


# Admin
class DeleteUserRequest(BaseModel):
    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))


# Navbar
class NavbarLabelRequest(BaseModel):
    label: str = Field(..., max_length=30)

    @field_validator("label")
    @classmethod
    def validate_label(cls, v):
        if not v or not v.strip():
            raise ValueError("Label is required")
        return v.strip()


# Page layouts
class CardPoint(BaseModel):
    x: float
    y: float


class LayoutCard(BaseModel):
    id: str
    points: List[CardPoint] = []

    model_config = {"extra": "allow"}


class LayoutSettings(BaseModel):
    scrollRatio: float = 2
    scrollSpeed: float = 1
    wallpaperPosition: float = 0
    alignmentMargin: float = 1

    model_config = {"extra": "allow"}


class SaveLayoutSlotRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=60)
    cards: List[LayoutCard] = []
    settings: LayoutSettings = Field(default_factory=LayoutSettings)


class RenameLayoutSlotRequest(BaseModel):
    name: str = Field(..., max_length=60)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class WallpaperRequest(BaseModel):
    url: str = Field(..., min_length=1)
    alt: str = Field("", max_length=500)
    blur: float = Field(0, ge=0, le=50)
    opacity: float = Field(1, ge=0, le=1)

    model_config = {"extra": "allow"}


class UniversalWallpaperRequest(BaseModel):
    page_id: str = Field(..., min_length=1, max_length=60)


class NavbarItem(BaseModel):
    id: str
    label: str
    path: str
    hidden: bool = False
    order: int = 0


def model_dump_set(model: BaseModel) -> Dict[str, Any]:
    """Only the fields the client actually sent"""
    return model.model_dump(exclude_unset=True)
