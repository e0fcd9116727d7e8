"""Dish photo lookup through the Custom Search JSON API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .api import ApiRequest, ResilientClient
from .cancellation import CancellationToken
from .config import DEFAULT_SEARCH_URL
from .exceptions import ConfigurationError, StorageError
from .extraction import build_search_query
from .models import DishImage, DishRecord

if TYPE_CHECKING:
    from .storage import ImageCache

logger = logging.getLogger(__name__)

MAX_RESULTS = 10


def _parse_items(payload: Any, dish_name: str) -> list[DishImage]:
    if not isinstance(payload, dict):
        raise TypeError("response is not an object")
    images: list[DishImage] = []
    for item in payload.get("items") or []:
        link = item.get("link")
        if not link:
            continue
        meta = item.get("image") or {}
        images.append(
            DishImage(
                title=item.get("title", ""),
                image_url=link,
                thumbnail_url=meta.get("thumbnailLink") or link,
                source_url=meta.get("contextLink") or item.get("displayLink"),
                width=meta.get("width"),
                height=meta.get("height"),
                dish_name=dish_name,
            )
        )
    return images


class ImageSearchService:
    """Finds representative photos for dishes."""

    def __init__(
        self,
        client: ResilientClient,
        api_key: str = "",
        engine_id: str = "",
        base_url: str = DEFAULT_SEARCH_URL,
        cache: ImageCache | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._api_key = api_key
        self._engine_id = engine_id
        self._base_url = base_url

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._engine_id)

    def build_request(self, query: str, count: int) -> ApiRequest:
        if not self.is_configured:
            missing = []
            if not self._api_key:
                missing.append("GOOGLE_SEARCH_API_KEY")
            if not self._engine_id:
                missing.append("GOOGLE_SEARCH_ENGINE_ID")
            raise ConfigurationError(missing=missing)
        return ApiRequest(
            method="GET",
            url=self._base_url,
            params={
                "key": self._api_key,
                "cx": self._engine_id,
                "q": query,
                "searchType": "image",
                "num": str(max(1, min(count, MAX_RESULTS))),
                "safe": "active",
                "imgType": "photo",
                "imgSize": "medium",
            },
        )

    async def search_images(
        self,
        query: str,
        count: int = 3,
        *,
        dish_name: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[DishImage]:
        """Search photos for ``query``; at most 10 results are requested."""
        request = self.build_request(query, count)
        name = dish_name or query
        images = await self._client.execute(
            request, lambda payload: _parse_items(payload, name), cancel_token=cancel_token
        )
        logger.debug("Image search", extra={"query": query, "results": len(images)})
        return images

    async def search_dish_images(
        self,
        record: DishRecord,
        count: int = 3,
        cancel_token: CancellationToken | None = None,
    ) -> list[DishImage]:
        """Search photos for ``record``, answering from the cache when possible.

        Only non-empty results are cached.
        """
        query = build_search_query(record)
        if self._cache is not None:
            cached = self._cache.get(query, count)
            if cached is not None:
                logger.debug("Image cache hit", extra={"query": query})
                return cached
        images = await self.search_images(
            query,
            count,
            dish_name=record.display_name,
            cancel_token=cancel_token,
        )
        if self._cache is not None and images:
            try:
                self._cache.put(query, count, images)
            except StorageError as e:
                logger.warning("Failed to cache images for %r: %s", query, e)
        return images

    async def test_connection(self) -> bool:
        images = await self.search_images("pizza", 1)
        return bool(images)
