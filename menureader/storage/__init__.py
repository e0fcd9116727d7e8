"""SQLite-backed persistence for menu history, profile, cart and image cache."""

from .image_cache import ImageCache
from .kvstore import KeyValueStore
from .menus import MenuStorage, Page
from .profile import ProfileStore, default_target_language
from .schema import ensure_schema

__all__ = [
    "ImageCache",
    "KeyValueStore",
    "MenuStorage",
    "Page",
    "ProfileStore",
    "default_target_language",
    "ensure_schema",
]
