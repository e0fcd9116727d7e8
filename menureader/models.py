"""Data models shared by the pipeline and the storage layer."""

from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str) -> datetime:
    # fromisoformat() on older interpreters does not accept a trailing "Z"
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class DishRecord:
    """A single dish recovered from a menu photo."""

    original_name: str
    translated_name: str | None = None
    description: str | None = None
    price: str | None = None
    confidence: float = 0.95
    category: str | None = None
    image_search_query: str | None = None
    index: int = 0  # ordinal assigned at extraction time

    def __post_init__(self) -> None:
        if not self.original_name or not self.original_name.strip():
            raise ValueError("original_name must not be empty")
        clamped = min(max(float(self.confidence), 0.0), 1.0)
        object.__setattr__(self, "confidence", clamped)

    @property
    def display_name(self) -> str:
        return self.translated_name or self.original_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "originalName": self.original_name,
            "translatedName": self.translated_name,
            "description": self.description,
            "price": self.price,
            "confidence": self.confidence,
            "category": self.category,
            "imageSearchQuery": self.image_search_query,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: int | None = None) -> DishRecord:
        """Build a record from the camelCase wire format.

        Raises:
            ValueError: If ``originalName`` is missing or blank.
        """
        name = _optional_str(data.get("originalName"))
        if name is None:
            raise ValueError("originalName is required")
        confidence = data.get("confidence", 0.95)
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            confidence = 0.95
        return cls(
            original_name=name,
            translated_name=_optional_str(data.get("translatedName")),
            description=_optional_str(data.get("description")),
            price=_optional_str(data.get("price")),
            confidence=confidence,
            category=_optional_str(data.get("category")),
            image_search_query=_optional_str(data.get("imageSearchQuery")),
            index=int(data.get("index", 0)) if index is None else index,
        )


@dataclass(frozen=True)
class AnalysisResult:
    items: tuple[DishRecord, ...]
    processing_time_seconds: float = 0.0
    confidence: float = 0.0
    detected_language: str = "auto"

    @classmethod
    def from_items(
        cls,
        items: list[DishRecord] | tuple[DishRecord, ...],
        processing_time_seconds: float = 0.0,
        detected_language: str = "auto",
    ) -> AnalysisResult:
        """Build a result whose confidence is the mean item confidence."""
        items = tuple(items)
        confidence = (
            sum(i.confidence for i in items) / len(items) if items else 0.0
        )
        return cls(
            items=items,
            processing_time_seconds=processing_time_seconds,
            confidence=confidence,
            detected_language=detected_language,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [i.to_dict() for i in self.items],
            "processingTimeSeconds": self.processing_time_seconds,
            "confidence": self.confidence,
            "detectedLanguage": self.detected_language,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisResult:
        return cls(
            items=tuple(
                DishRecord.from_dict(item) for item in data.get("items", [])
            ),
            processing_time_seconds=float(data.get("processingTimeSeconds", 0.0)),
            confidence=float(data.get("confidence", 0.0)),
            detected_language=data.get("detectedLanguage", "auto"),
        )


@dataclass
class DishImage:
    title: str
    image_url: str
    thumbnail_url: str
    dish_name: str
    source_url: str | None = None
    width: int | None = None
    height: int | None = None
    is_loaded: bool = False
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "title": self.title,
            "imageURL": self.image_url,
            "thumbnailURL": self.thumbnail_url,
            "sourceURL": self.source_url,
            "width": self.width,
            "height": self.height,
            "dishName": self.dish_name,
            "isLoaded": self.is_loaded,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DishImage:
        return cls(
            id=uuid.UUID(data["id"]) if data.get("id") else uuid.uuid4(),
            title=data.get("title", ""),
            image_url=data["imageURL"],
            thumbnail_url=data.get("thumbnailURL") or data["imageURL"],
            source_url=data.get("sourceURL"),
            width=data.get("width"),
            height=data.get("height"),
            dish_name=data.get("dishName", ""),
            is_loaded=bool(data.get("isLoaded", False)),
        )


class LoadStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class ImageLoadingState:
    """Per-dish image loading state."""

    status: LoadStatus = LoadStatus.IDLE
    images: tuple[DishImage, ...] = ()
    error: str | None = None

    @classmethod
    def idle(cls) -> ImageLoadingState:
        return cls()

    @classmethod
    def loading(cls) -> ImageLoadingState:
        return cls(status=LoadStatus.LOADING)

    @classmethod
    def loaded(cls, images: list[DishImage]) -> ImageLoadingState:
        return cls(status=LoadStatus.LOADED, images=tuple(images))

    @classmethod
    def failed(cls, error: str) -> ImageLoadingState:
        return cls(status=LoadStatus.FAILED, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.status in (LoadStatus.LOADED, LoadStatus.FAILED)


@dataclass
class PersistedMenuRecord:
    """An analysis result as stored in the menu history."""

    result: AnalysisResult
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    scan_date: datetime = field(default_factory=_utcnow)
    is_favorite: bool = False
    thumbnail_data: bytes | None = None
    dish_images: dict[int, list[DishImage]] = field(default_factory=dict)

    @property
    def items(self) -> tuple[DishRecord, ...]:
        return self.result.items

    def to_dict(self) -> dict[str, Any]:
        data = self.result.to_dict()
        data.update(
            {
                "id": str(self.id),
                "scanDate": self.scan_date.isoformat(),
                "isFavorite": self.is_favorite,
                "thumbnailData": (
                    base64.b64encode(self.thumbnail_data).decode("ascii")
                    if self.thumbnail_data
                    else None
                ),
                "dishImages": {
                    str(idx): [img.to_dict() for img in images]
                    for idx, images in self.dish_images.items()
                },
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PersistedMenuRecord:
        thumb = data.get("thumbnailData")
        return cls(
            result=AnalysisResult.from_dict(data),
            id=uuid.UUID(data["id"]),
            scan_date=_parse_datetime(data["scanDate"]),
            is_favorite=bool(data.get("isFavorite", False)),
            thumbnail_data=base64.b64decode(thumb) if thumb else None,
            dish_images={
                int(idx): [DishImage.from_dict(img) for img in images]
                for idx, images in (data.get("dishImages") or {}).items()
            },
        )


@dataclass
class UserProfile:
    target_language: str = "en"
    allergens: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"targetLanguage": self.target_language, "allergens": self.allergens}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        return cls(
            target_language=data.get("targetLanguage", "en"),
            allergens=list(data.get("allergens", [])),
        )


@dataclass
class CartItem:
    dish_name: str
    translated_name: str | None = None
    price: str | None = None
    quantity: int = 1
    added_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dishName": self.dish_name,
            "translatedName": self.translated_name,
            "price": self.price,
            "quantity": self.quantity,
            "addedAt": self.added_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CartItem:
        return cls(
            dish_name=data["dishName"],
            translated_name=data.get("translatedName"),
            price=data.get("price"),
            quantity=int(data.get("quantity", 1)),
            added_at=_parse_datetime(data["addedAt"]),
        )

    @classmethod
    def from_dish(cls, dish: DishRecord, quantity: int = 1) -> CartItem:
        return cls(
            dish_name=dish.original_name,
            translated_name=dish.translated_name,
            price=dish.price,
            quantity=quantity,
        )
