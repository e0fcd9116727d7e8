"""User profile and cart persistence."""

from __future__ import annotations

import locale
import logging
import threading

from ..config import SUPPORTED_LANGUAGES
from ..models import CartItem, UserProfile
from .kvstore import KeyValueStore

logger = logging.getLogger(__name__)

PROFILE_KEY = "userProfile"
CART_KEY = "cartItems"


def default_target_language() -> str:
    """Return the system locale's language if supported, else ``"en"``."""
    try:
        code = locale.getlocale()[0] or ""
    except ValueError:
        code = ""
    lang = code.split("_")[0].split("-")[0].lower()
    return lang if lang in SUPPORTED_LANGUAGES else "en"


class ProfileStore:
    """Manages the userProfile and cartItems keys."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = threading.RLock()

    def load_profile(self) -> UserProfile:
        raw = self._store.get(PROFILE_KEY)
        if not isinstance(raw, dict):
            return UserProfile(target_language=default_target_language())
        return UserProfile.from_dict(raw)

    def save_profile(self, profile: UserProfile) -> None:
        if profile.target_language not in SUPPORTED_LANGUAGES:
            raise ValueError(
                f"未対応の言語です: {profile.target_language!r} "
                f"({' / '.join(SUPPORTED_LANGUAGES)} から選択してください)"
            )
        self._store.set(PROFILE_KEY, profile.to_dict())

    def load_cart(self) -> list[CartItem]:
        items: list[CartItem] = []
        for raw in self._store.get(CART_KEY, []) or []:
            try:
                items.append(CartItem.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable cart item: %s", e)
        return items

    def add_to_cart(self, item: CartItem) -> list[CartItem]:
        """Add ``item``, merging quantities with an existing line for the same dish."""
        with self._lock:
            cart = self.load_cart()
            for existing in cart:
                if existing.dish_name == item.dish_name:
                    existing.quantity += item.quantity
                    break
            else:
                cart.append(item)
            self._store.set(CART_KEY, [c.to_dict() for c in cart])
        return cart

    def remove_from_cart(self, dish_name: str) -> bool:
        with self._lock:
            cart = self.load_cart()
            kept = [c for c in cart if c.dish_name != dish_name]
            if len(kept) == len(cart):
                return False
            self._store.set(CART_KEY, [c.to_dict() for c in kept])
        return True

    def clear_cart(self) -> None:
        self._store.set(CART_KEY, [])
