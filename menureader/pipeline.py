"""Menu analysis pipeline: preprocessing, recognition, extraction, images."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from .cancellation import CancellationToken
from .exceptions import (
    AlreadyInProgressError,
    AnalysisCancelledError,
    MenuReaderError,
)
from .extraction import extract, extract_detected_language
from .models import (
    AnalysisResult,
    DishImage,
    DishRecord,
    ImageLoadingState,
    PersistedMenuRecord,
)
from .preprocess import DEFAULT_MAX_DIMENSION, make_thumbnail, prepare_image
from .ratelimit import IntervalGate
from .vision import VisionBackend

logger = logging.getLogger(__name__)


class AnalysisStage(Enum):
    IDLE = ("idle", 0.0, "待機中")
    PREPROCESSING = ("preprocessing", 0.1, "画像を前処理しています")
    TEXT_RECOGNITION = ("text_recognition", 0.3, "文字を認識しています")
    MENU_EXTRACTION = ("menu_extraction", 0.6, "メニューを抽出しています")
    IMAGE_SEARCH = ("image_search", 0.8, "料理の画像を検索しています")
    COMPLETED = ("completed", 1.0, "完了しました")
    FAILED = ("failed", 0.0, "エラーが発生しました")

    def __init__(self, key: str, progress: float, description: str) -> None:
        self.key = key
        self.progress = progress
        self.description = description


class EventKind(Enum):
    STAGE = "stage"
    ITEM = "item"


@dataclass(frozen=True)
class PipelineEvent:
    kind: EventKind
    stage: AnalysisStage
    item_index: int | None = None
    item_state: ImageLoadingState | None = None
    message: str | None = None

    @property
    def progress(self) -> float:
        return self.stage.progress


Listener = Callable[[PipelineEvent], None]


class ImageSearcher(Protocol):
    async def search_dish_images(
        self,
        record: DishRecord,
        count: int = 3,
        cancel_token: CancellationToken | None = None,
    ) -> list[DishImage]: ...

    async def test_connection(self) -> bool: ...


class ResultRecorder(Protocol):
    def save_result(self, record: PersistedMenuRecord) -> None: ...


@dataclass
class AnalysisOutcome:
    result: AnalysisResult
    images: dict[int, list[DishImage]] = field(default_factory=dict)
    states: dict[int, ImageLoadingState] = field(default_factory=dict)
    record: PersistedMenuRecord | None = None

    def images_by_name(self) -> dict[str, list[DishImage]]:
        """Map each dish's original name to its images (later duplicates win)."""
        return {
            item.original_name: self.images.get(item.index, [])
            for item in self.result.items
        }


@dataclass
class ServiceHealth:
    configured: bool
    vision_ok: bool
    search_ok: bool
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.configured and self.vision_ok and self.search_ok


class MenuAnalysisPipeline:
    """Drive a menu photo through recognition and image enrichment.

    Only one run may be active at a time. Observers receive a
    :class:`PipelineEvent` on every stage transition and every per-dish
    image state change.

    Example:
        >>> pipeline = MenuAnalysisPipeline(backend, search, recorder=manager)
        >>> outcome = await pipeline.analyze(photo_bytes, "ja")
    """

    def __init__(
        self,
        recognizer: VisionBackend,
        image_search: ImageSearcher | None = None,
        *,
        recorder: ResultRecorder | None = None,
        gate: IntervalGate | None = None,
        concurrency: int = 3,
        max_dimension: int = DEFAULT_MAX_DIMENSION,
        search_count: int = 3,
        configured: Callable[[], bool] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._recognizer = recognizer
        self._image_search = image_search
        self._recorder = recorder
        self._gate = gate or IntervalGate()
        self._concurrency = concurrency
        self._max_dimension = max_dimension
        self._search_count = search_count
        self._configured = configured
        self._listeners: list[Listener] = []

        self._running = False
        self._stage = AnalysisStage.IDLE
        self._error: str | None = None
        self._image_states: dict[int, ImageLoadingState] = {}
        self._images: dict[int, list[DishImage]] = {}
        self._result: AnalysisResult | None = None
        self._cancel_token: CancellationToken | None = None

    # --- observation -----------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: PipelineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Pipeline listener failed")

    @property
    def stage(self) -> AnalysisStage:
        return self._stage

    @property
    def progress(self) -> float:
        return self._stage.progress

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def result(self) -> AnalysisResult | None:
        return self._result

    @property
    def image_states(self) -> dict[int, ImageLoadingState]:
        return dict(self._image_states)

    def _set_stage(self, stage: AnalysisStage, message: str | None = None) -> None:
        self._stage = stage
        logger.info("Analysis stage: %s", stage.key)
        self._emit(PipelineEvent(EventKind.STAGE, stage, message=message))

    def _set_item(self, index: int, state: ImageLoadingState) -> None:
        self._image_states[index] = state
        self._emit(
            PipelineEvent(EventKind.ITEM, self._stage, item_index=index, item_state=state)
        )

    # --- control ---------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation of the active run, if any."""
        if self._cancel_token is not None:
            self._cancel_token.cancel()

    def reset(self) -> None:
        """Return to Idle and clear results. No effect while running."""
        if self._running:
            logger.warning("reset() ignored while an analysis is running")
            return
        self._error = None
        self._result = None
        self._image_states.clear()
        self._images.clear()
        self._set_stage(AnalysisStage.IDLE)

    def _begin(self, cancel_token: CancellationToken | None) -> CancellationToken:
        if self._running:
            raise AlreadyInProgressError()
        self._running = True
        self._error = None
        self._result = None
        self._image_states = {}
        self._images = {}
        self._cancel_token = cancel_token or CancellationToken()
        return self._cancel_token

    def _fail(self, exc: BaseException) -> None:
        message = (
            exc.user_message if isinstance(exc, MenuReaderError) else str(exc)
        ) or exc.__class__.__name__
        self._error = message
        logger.error("Analysis failed: %s", message)
        self._set_stage(AnalysisStage.FAILED, message=message)

    # --- runs ------------------------------------------------------------

    async def analyze(
        self,
        image: bytes,
        target_language: str = "en",
        cancel_token: CancellationToken | None = None,
    ) -> AnalysisOutcome:
        """Run the full pipeline on a menu photo.

        Raises:
            AlreadyInProgressError: If another run is active. The active
                run's state is left untouched.
            MenuReaderError: Any recognition or preprocessing failure, after
                the pipeline has moved to ``FAILED``.
        """
        token = self._begin(cancel_token)
        started = time.monotonic()
        try:
            self._set_stage(AnalysisStage.PREPROCESSING)
            token.raise_if_cancelled()
            prepared = prepare_image(image, self._max_dimension)
            thumbnail = make_thumbnail(image)

            self._set_stage(AnalysisStage.TEXT_RECOGNITION)
            token.raise_if_cancelled()
            reply = await self._recognizer.recognize(
                prepared.data, prepared.mime_type, target_language, token
            )

            self._set_stage(AnalysisStage.MENU_EXTRACTION)
            token.raise_if_cancelled()
            result = AnalysisResult.from_items(
                extract(reply.text),
                processing_time_seconds=time.monotonic() - started,
                detected_language=extract_detected_language(reply.text),
            )
            self._result = result

            if self._image_search is not None and result.items:
                self._set_stage(AnalysisStage.IMAGE_SEARCH)
                await self._search_all(result.items, token)

            token.raise_if_cancelled()
            result = AnalysisResult.from_items(
                result.items,
                processing_time_seconds=time.monotonic() - started,
                detected_language=result.detected_language,
            )
            self._result = result
            record = PersistedMenuRecord(
                result=result,
                thumbnail_data=thumbnail,
                dish_images={k: list(v) for k, v in self._images.items()},
            )
            self._record(record)
            self._set_stage(AnalysisStage.COMPLETED)
            return AnalysisOutcome(
                result=result,
                images=dict(self._images),
                states=dict(self._image_states),
                record=record,
            )
        except (Exception, asyncio.CancelledError) as e:
            self._fail(AnalysisCancelledError() if isinstance(e, asyncio.CancelledError) else e)
            raise
        finally:
            self._running = False
            self._cancel_token = None

    async def analyze_text_only(
        self,
        image: bytes,
        target_language: str = "en",
        cancel_token: CancellationToken | None = None,
    ) -> AnalysisOutcome:
        """Recognize and extract dishes without searching for photos."""
        saved, self._image_search = self._image_search, None
        try:
            return await self.analyze(image, target_language, cancel_token)
        finally:
            self._image_search = saved

    def _record(self, record: PersistedMenuRecord) -> None:
        if self._recorder is None:
            return
        try:
            self._recorder.save_result(record)
        except MenuReaderError:
            logger.exception("Failed to save analysis result %s", record.id)

    async def _search_all(
        self, items: tuple[DishRecord, ...], token: CancellationToken
    ) -> None:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def search_one(record: DishRecord) -> None:
            async with semaphore:
                token.raise_if_cancelled()
                self._set_item(record.index, ImageLoadingState.loading())
                try:
                    await self._gate.wait(token)
                    images = await self._image_search.search_dish_images(
                        record, self._search_count, token
                    )
                except AnalysisCancelledError:
                    raise
                except Exception as e:
                    logger.warning(
                        "Image search failed for %s: %s", record.original_name, e
                    )
                    self._images[record.index] = []
                    message = e.user_message if isinstance(e, MenuReaderError) else str(e)
                    self._set_item(record.index, ImageLoadingState.failed(message))
                    return
                self._images[record.index] = images
                self._set_item(record.index, ImageLoadingState.loaded(images))

        results = await asyncio.gather(
            *(search_one(r) for r in items), return_exceptions=True
        )
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome

    # --- health ----------------------------------------------------------

    async def check_health(self) -> ServiceHealth:
        """Probe configuration and both remote endpoints."""
        configured = self._configured() if self._configured is not None else True
        errors: dict[str, str] = {}

        vision_ok = False
        try:
            vision_ok = await self._recognizer.test_connection()
        except MenuReaderError as e:
            errors["vision"] = e.user_message

        search_ok = False
        if self._image_search is None:
            errors["search"] = "画像検索が設定されていません"
        else:
            try:
                search_ok = await self._image_search.test_connection()
            except MenuReaderError as e:
                errors["search"] = e.user_message

        return ServiceHealth(
            configured=configured,
            vision_ok=vision_ok,
            search_ok=search_ok,
            errors=errors,
        )
