"""Tests for data models and their wire format."""

from datetime import timezone

import pytest

from menureader.exceptions import (
    AlreadyInProgressError,
    ConfigurationError,
    RateLimitedError,
    ServerError,
    TransportError,
    UnauthorizedError,
)
from menureader.models import (
    AnalysisResult,
    DishRecord,
    ImageLoadingState,
    LoadStatus,
    PersistedMenuRecord,
)


class TestDishRecord:
    def test_blank_name_rejected(self):
        with pytest.raises(ValueError):
            DishRecord(original_name="  ")

    def test_confidence_clamped(self):
        assert DishRecord(original_name="a", confidence=-0.5).confidence == 0.0
        assert DishRecord(original_name="a", confidence=1.7).confidence == 1.0

    def test_display_name(self):
        assert DishRecord(original_name="炒饭").display_name == "炒饭"
        assert DishRecord(original_name="炒饭", translated_name="Fried Rice").display_name == "Fried Rice"

    def test_camel_case_wire_names(self):
        data = DishRecord(original_name="炒饭", image_search_query="fried rice").to_dict()
        assert data["originalName"] == "炒饭"
        assert data["imageSearchQuery"] == "fried rice"

    def test_bad_confidence_defaults(self):
        record = DishRecord.from_dict({"originalName": "a", "confidence": "high"})
        assert record.confidence == 0.95


class TestAnalysisResult:
    def test_mean_confidence(self):
        result = AnalysisResult.from_items(
            [DishRecord(original_name="a", confidence=0.6), DishRecord(original_name="b", confidence=1.0)]
        )
        assert result.confidence == pytest.approx(0.8)

    def test_empty_confidence(self):
        assert AnalysisResult.from_items([]).confidence == 0.0


class TestPersistedMenuRecord:
    def test_flat_document_with_zulu_date(self):
        record = PersistedMenuRecord(
            result=AnalysisResult.from_items([DishRecord(original_name="a")])
        )
        data = record.to_dict()
        assert set(data) >= {"items", "confidence", "id", "scanDate", "isFavorite", "thumbnailData"}
        data["scanDate"] = "2026-01-02T03:04:05Z"
        loaded = PersistedMenuRecord.from_dict(data)
        assert loaded.scan_date.tzinfo == timezone.utc
        assert loaded.scan_date.hour == 3


class TestImageLoadingState:
    def test_states(self):
        assert ImageLoadingState.idle().status is LoadStatus.IDLE
        assert ImageLoadingState.loading().is_terminal is False
        assert ImageLoadingState.loaded([]).is_terminal is True
        failed = ImageLoadingState.failed("boom")
        assert failed.status is LoadStatus.FAILED
        assert failed.error == "boom"


class TestErrors:
    def test_retryable_flags(self):
        assert TransportError().retryable is True
        assert RateLimitedError().retryable is True
        assert UnauthorizedError().retryable is False
        assert ServerError(502).retryable is False

    def test_suggestions(self):
        assert "ネットワーク接続を確認してください" in TransportError().suggestions
        assert AlreadyInProgressError().suggestions

    def test_configuration_error_lists_missing(self):
        err = ConfigurationError(missing=["A", "B"])
        assert err.user_message == "必要な設定がありません: A, B"
        assert str(err) == err.user_message

    def test_timeout_message(self):
        assert TransportError(timeout=True).user_message == "リクエストがタイムアウトしました"
