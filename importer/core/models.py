"""
Pydantic domain models for the importer.

These models represent the data flowing through the import pipeline:
Listing → TranslatedProduct → (ProcessedImage, SizeChart) → FinalProduct
→ PublishedProduct → PipelineResult
"""

import base64
import binascii
import re
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationInfo,
    field_validator,
    model_validator,
)

# Closed palette every translated colour is mapped onto for filtering.
STANDARD_COLORS: tuple[str, ...] = (
    "Black",
    "White",
    "Blue",
    "Navy",
    "Red",
    "Green",
    "Yellow",
    "Orange",
    "Pink",
    "Purple",
    "Brown",
    "Beige",
    "Gray",
    "Gold",
    "Silver",
    "Bronze",
    "Rose Gold",
    "Multicolor",
    "Clear",
)

CATCH_ALL_COLOR = "Multicolor"

_DATA_URI_PATTERN = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)


class Gender(StrEnum):
    """Target gender published as product metadata."""
    MALE = "Male"
    FEMALE = "Female"
    UNISEX = "Unisex"


# ─── Source Models ────────────────────────────────────────────


class SkuProperties(BaseModel):
    """Raw property pairs of a marketplace SKU (source language)."""

    color: str = Field(default="")
    size: str = Field(default="")


class Sku(BaseModel):
    """A purchasable marketplace variant. Prices are in source major units."""

    sku_id: str
    price: float = Field(default=0.0, ge=0)
    stock: int = Field(default=0, ge=0)
    properties: SkuProperties = Field(default_factory=SkuProperties)
    image: str | None = None


class Listing(BaseModel):
    """Canonical listing record produced by the Source Connector."""

    model_config = ConfigDict(frozen=True)

    item_id: str = Field(..., min_length=1)
    title: str = Field(default="")
    description: str = Field(default="")
    description_images: list[str] = Field(default_factory=list)
    price: float = Field(default=0.0, ge=0)
    currency: str = Field(default="CNY", max_length=3)
    images: list[str] = Field(default_factory=list)
    skus: list[Sku] = Field(default_factory=list)
    shop_name: str = Field(default="")
    category: str | None = None
    category_path: str | None = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now())

    @property
    def distinct_colors(self) -> list[str]:
        """Every distinct non-empty raw colour across all SKUs, first-seen order."""
        return list(dict.fromkeys(s.properties.color for s in self.skus if s.properties.color))

    @property
    def is_complete(self) -> bool:
        return bool(self.item_id and self.title)


# ─── Translation Models ───────────────────────────────────────


class ColorTranslation(BaseModel):
    """AI-provided mapping for one raw colour string."""

    original: str
    english: str
    standard: str | None = None


class TranslatedVariant(BaseModel):
    """A SKU after translation, cleaning and price conversion."""

    sku_id: str
    size: str
    color: str
    color_standardized: str
    price_source: float = Field(default=0.0, ge=0)
    price_target: int = Field(default=0, ge=0)
    stock: int = Field(default=0, ge=0)
    image: str | None = None


class TranslatedProduct(BaseModel):
    """English product text plus translated variants."""

    title: str
    description: str = Field(default="")
    vendor: str = Field(default="")
    product_type: str = Field(default="")
    gender: Gender = Gender.UNISEX
    variants: list[TranslatedVariant] = Field(default_factory=list)
    original: Listing

    @property
    def colors(self) -> list[str]:
        return list(dict.fromkeys(v.color for v in self.variants if v.color))

    @property
    def sizes(self) -> list[str]:
        return list(dict.fromkeys(v.size for v in self.variants))


class GeneratedCopy(BaseModel):
    """Storefront title and HTML body written by the copy prompt."""

    title: str
    body_html: str


# ─── Image Models ─────────────────────────────────────────────


class ImageClassification(StrEnum):
    """Outcome of the per-image vision check."""
    DELETE = "delete"
    REMOVE_BACKGROUND = "remove_background"
    USABLE = "usable"

    @classmethod
    def parse(cls, label: str) -> "ImageClassification":
        """Map a label returned by the AI onto the closed set.

        Raises:
            ValueError: If the label is not a known synonym.
        """
        normalized = (label or "").strip().lower().replace("-", "_").replace(" ", "_")
        aliases = {
            "delete": cls.DELETE,
            "remove": cls.REMOVE_BACKGROUND,
            "remove_background": cls.REMOVE_BACKGROUND,
            "fine": cls.USABLE,
            "usable": cls.USABLE,
        }
        if normalized not in aliases:
            raise ValueError(f"Unknown image classification: {label!r}")
        return aliases[normalized]


class ClassifiedImage(BaseModel):
    url: str
    classification: ImageClassification
    reason: str = Field(default="")


class ProcessedImageRef(BaseModel):
    """
    A processed image: either a hosted URL or inline binary content.

    Exactly one of ``url`` / ``data`` is set. Downstream code asks
    ``is_inline`` instead of sniffing strings.
    """

    url: str | None = None
    data: bytes | None = None
    media_type: str = Field(default="image/png")

    @model_validator(mode="after")
    def exactly_one_source(self) -> "ProcessedImageRef":
        if (self.url is None) == (self.data is None):
            raise ValueError("ProcessedImageRef needs exactly one of url or data")
        return self

    @classmethod
    def from_url(cls, url: str) -> "ProcessedImageRef":
        match = _DATA_URI_PATTERN.match(url)
        if match:
            return cls.from_data_uri(url)
        return cls(url=url)

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str = "image/png") -> "ProcessedImageRef":
        return cls(data=data, media_type=media_type)

    @classmethod
    def from_data_uri(cls, uri: str) -> "ProcessedImageRef":
        match = _DATA_URI_PATTERN.match(uri)
        if not match:
            raise ValueError("Not a base64 image data URI")
        try:
            data = base64.b64decode(match.group(2), validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 payload in data URI: {e}") from e
        return cls(data=data, media_type=match.group(1))

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    def base64_payload(self) -> str:
        if self.data is None:
            raise ValueError("Hosted image reference has no inline payload")
        return base64.b64encode(self.data).decode("ascii")

    def as_src(self) -> str:
        """URL for hosted images, a ``data:`` URI for inline ones."""
        if self.url is not None:
            return self.url
        return f"data:{self.media_type};base64,{self.base64_payload()}"

    def describe(self) -> str:
        """Short form for log lines (never dumps inline payloads)."""
        if self.url is not None:
            return self.url[:80]
        return f"<inline {self.media_type}, {len(self.data or b'')} bytes>"


class ImageCandidate(BaseModel):
    """An image queued for classification; ``colors`` is None for shared images."""

    url: str
    colors: list[str] | None = None

    @property
    def is_shared(self) -> bool:
        return not self.colors


class ProcessedImage(BaseModel):
    original_url: str
    processed: ProcessedImageRef
    position: int = Field(..., ge=1)
    variant_colors: list[str] | None = None


# ─── Size Chart Models ────────────────────────────────────────


class SizeChartType(StrEnum):
    """Garment category that decides which measurement columns apply."""
    TOPS = "tops"
    BOTTOMS = "bottoms"
    OUTERWEAR = "outerwear"
    DRESSES = "dresses"
    SHOES = "shoes"
    ACCESSORIES = "accessories"


_LEADING_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _leading_number(value: Any) -> Any:
    """Read the leading number from text such as ``"170cm"``; non-text passes through."""
    if isinstance(value, str):
        match = _LEADING_NUMBER.search(value)
        return float(match.group()) if match else None
    return value


class _Measurement(BaseModel):
    """Base for per-size rows. Unknown columns are ignored; cm unless noted."""

    size: str

    @field_validator("*", mode="before")
    @classmethod
    def _coerce(cls, value: Any, info: ValidationInfo) -> Any:
        if info.field_name in ("size", "notes"):
            return None if value is None else str(value).strip()
        return _leading_number(value)


class UpperBodyMeasurement(_Measurement):
    length: float | None = None
    chest: float | None = None
    shoulder: float | None = None
    sleeve: float | None = None


class BottomsMeasurement(_Measurement):
    waist: float | None = None
    hip: float | None = None
    inseam: float | None = None
    length: float | None = None


class DressMeasurement(_Measurement):
    bust: float | None = None
    waist: float | None = None
    hip: float | None = None
    length: float | None = None


class ShoeMeasurement(_Measurement):
    eu_size: float | None = None
    us_size: float | None = None
    uk_size: float | None = None
    foot_length_cm: float | None = None


class AccessoryMeasurement(_Measurement):
    notes: str | None = None


class ModelInfo(BaseModel):
    height_cm: float | None = None
    weight_kg: float | None = None
    bust_cm: float | None = None
    waist_cm: float | None = None
    hip_cm: float | None = None
    size_worn: str | None = None

    @field_validator("height_cm", "weight_kg", "bust_cm", "waist_cm", "hip_cm", mode="before")
    @classmethod
    def _strip_units(cls, value: Any) -> Any:
        return _leading_number(value)

    @field_validator("size_worn", mode="before")
    @classmethod
    def _size_as_text(cls, value: Any) -> Any:
        return None if value is None else str(value)


class _SizeChartBase(BaseModel):
    model_info: ModelInfo | None = None
    fit_notes: str | None = None
    source_image_url: str | None = None


class TopsSizeChart(_SizeChartBase):
    type: Literal["tops"] = "tops"
    measurements: list[UpperBodyMeasurement] = Field(default_factory=list)


class OuterwearSizeChart(_SizeChartBase):
    type: Literal["outerwear"] = "outerwear"
    measurements: list[UpperBodyMeasurement] = Field(default_factory=list)


class BottomsSizeChart(_SizeChartBase):
    type: Literal["bottoms"] = "bottoms"
    measurements: list[BottomsMeasurement] = Field(default_factory=list)


class DressesSizeChart(_SizeChartBase):
    type: Literal["dresses"] = "dresses"
    measurements: list[DressMeasurement] = Field(default_factory=list)


class ShoesSizeChart(_SizeChartBase):
    type: Literal["shoes"] = "shoes"
    measurements: list[ShoeMeasurement] = Field(default_factory=list)


class AccessoriesSizeChart(_SizeChartBase):
    type: Literal["accessories"] = "accessories"
    measurements: list[AccessoryMeasurement] = Field(default_factory=list)


SizeChart = Annotated[
    Union[
        TopsSizeChart,
        OuterwearSizeChart,
        BottomsSizeChart,
        DressesSizeChart,
        ShoesSizeChart,
        AccessoriesSizeChart,
    ],
    Field(discriminator="type"),
]

SIZE_CHART_ADAPTER: TypeAdapter = TypeAdapter(SizeChart)


class SizeChartExtraction(BaseModel):
    """What the description images yielded. All fields empty is a normal outcome."""

    size_chart: SizeChart | None = None
    materials: str | None = None
    care_instructions: str | None = None

    @property
    def found(self) -> bool:
        return self.size_chart is not None


# ─── Final Product Models ─────────────────────────────────────


class FinalVariant(BaseModel):
    option1: str  # Size
    option2: str  # Color
    price: str
    sku: str
    inventory_quantity: int = Field(default=0, ge=0)
    inventory_management: str = Field(default="shopify")


class FinalImage(BaseModel):
    image: ProcessedImageRef
    position: int = Field(..., ge=1)
    variant_colors: list[str] | None = None


class ProductMetafields(BaseModel):
    gender: Gender
    colors: list[str] = Field(default_factory=list)
    size_chart: SizeChart | None = None
    materials: str | None = None
    care_instructions: str | None = None


class FinalProduct(BaseModel):
    """The single unit handed to the Commerce Publisher."""

    title: str = Field(..., min_length=1)
    body_html: str = Field(default="")
    vendor: str = Field(default="")
    product_type: str = Field(default="")
    tags: list[str] = Field(default_factory=list)
    variants: list[FinalVariant] = Field(..., min_length=1)
    images: list[FinalImage] = Field(default_factory=list)
    metafields: ProductMetafields


# ─── Publish / Result Models ──────────────────────────────────


class ImageUploadStatus(StrEnum):
    UPLOADED = "uploaded"
    FAILED = "failed"


class ImageUploadResult(BaseModel):
    position: int
    status: ImageUploadStatus
    attempts: int = Field(default=1, ge=1)
    image_id: int | None = None
    variant_ids: list[int] = Field(default_factory=list)
    error: str = Field(default="")


class PublishedProduct(BaseModel):
    """Outcome of a successful Commerce Publisher run."""

    product_id: int
    url: str
    variant_ids_by_color: dict[str, list[int]] = Field(default_factory=dict)
    image_results: list[ImageUploadResult] = Field(default_factory=list)
    metafields_written: list[str] = Field(default_factory=list)

    @property
    def uploaded_count(self) -> int:
        return sum(1 for r in self.image_results if r.status == ImageUploadStatus.UPLOADED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.image_results if r.status == ImageUploadStatus.FAILED)


class PipelineResult(BaseModel):
    """Result of one item's run. Created once, never mutated."""

    model_config = ConfigDict(frozen=True)

    success: bool
    item_id: str
    product_id: int | None = None
    product_url: str | None = None
    error: str | None = None
    processing_time_ms: int = Field(default=0, ge=0)


class BatchReport(BaseModel):
    """Durable record of a batch run, written as JSON next to the catalog."""

    brand: str
    timestamp: datetime
    total_time_ms: int = Field(default=0, ge=0)
    results: list[PipelineResult] = Field(default_factory=list)

    @property
    def successful(self) -> list[PipelineResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[PipelineResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> dict:
        return {
            "brand": self.brand,
            "timestamp": self.timestamp.isoformat(),
            "totalTimeMs": self.total_time_ms,
            "results": [r.model_dump(exclude_none=True) for r in self.results],
        }
