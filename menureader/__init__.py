"""Read restaurant menus from photos: recognition, translation and dish images."""

from .api import ApiRequest, ResilientClient
from .cancellation import CancellationToken
from .config import MenuReaderConfig, load_config
from .extraction import build_search_query, clean_search_query, extract
from .models import (
    AnalysisResult,
    CartItem,
    DishImage,
    DishRecord,
    ImageLoadingState,
    LoadStatus,
    PersistedMenuRecord,
    UserProfile,
)
from .offline import ConnectivityMonitor, HttpUploader, OfflineManager
from .pipeline import (
    AnalysisOutcome,
    AnalysisStage,
    MenuAnalysisPipeline,
    PipelineEvent,
)
from .ratelimit import IntervalGate
from .search import ImageSearchService
from .storage import ImageCache, KeyValueStore, MenuStorage, ProfileStore
from .vision import VisionBackend, create_backend

__all__ = [
    "ApiRequest",
    "ResilientClient",
    "CancellationToken",
    "MenuReaderConfig",
    "load_config",
    "extract",
    "build_search_query",
    "clean_search_query",
    "AnalysisResult",
    "CartItem",
    "DishImage",
    "DishRecord",
    "ImageLoadingState",
    "LoadStatus",
    "PersistedMenuRecord",
    "UserProfile",
    "ConnectivityMonitor",
    "HttpUploader",
    "OfflineManager",
    "AnalysisOutcome",
    "AnalysisStage",
    "MenuAnalysisPipeline",
    "PipelineEvent",
    "IntervalGate",
    "ImageSearchService",
    "ImageCache",
    "KeyValueStore",
    "MenuStorage",
    "ProfileStore",
    "VisionBackend",
    "create_backend",
]
