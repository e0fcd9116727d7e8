"""Tests for the image search service (mocked HTTP transport)."""

import httpx
import pytest

from menureader.api import ResilientClient
from menureader.exceptions import ConfigurationError, ServerError
from menureader.models import DishRecord
from menureader.search import ImageSearchService
from menureader.storage import ImageCache

PAYLOAD = {
    "items": [
        {
            "title": "Kung Pao Chicken recipe",
            "link": "https://img.example.com/kpc.jpg",
            "displayLink": "img.example.com",
            "image": {
                "width": 640,
                "height": 480,
                "thumbnailLink": "https://thumb.example.com/kpc.jpg",
                "contextLink": "https://recipes.example.com/kpc",
            },
        },
        {"title": "no link"},
        {
            "title": "Bare",
            "link": "https://img.example.com/bare.jpg",
            "displayLink": "img.example.com",
        },
    ]
}


async def _no_sleep(seconds):
    pass


def _service(handler, api_key="k", engine_id="cx1"):
    client = ResilientClient(transport=httpx.MockTransport(handler), sleep=_no_sleep)
    return ImageSearchService(client, api_key=api_key, engine_id=engine_id)


class TestSearchImages:
    @pytest.mark.asyncio
    async def test_query_parameters(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={"items": []})

        await _service(handler).search_images("pizza", 3)
        assert seen == {
            "key": "k",
            "cx": "cx1",
            "q": "pizza",
            "searchType": "image",
            "num": "3",
            "safe": "active",
            "imgType": "photo",
            "imgSize": "medium",
        }

    @pytest.mark.asyncio
    async def test_count_capped_at_ten(self):
        seen = {}

        def handler(request):
            seen["num"] = request.url.params["num"]
            return httpx.Response(200, json={})

        images = await _service(handler).search_images("pizza", 50)
        assert seen["num"] == "10"
        assert images == []

    @pytest.mark.asyncio
    async def test_parses_items(self):
        images = await _service(lambda r: httpx.Response(200, json=PAYLOAD)).search_images(
            "kpc", dish_name="Kung Pao Chicken"
        )
        assert len(images) == 2
        first, second = images
        assert first.image_url == "https://img.example.com/kpc.jpg"
        assert first.thumbnail_url == "https://thumb.example.com/kpc.jpg"
        assert first.source_url == "https://recipes.example.com/kpc"
        assert (first.width, first.height) == (640, 480)
        assert first.dish_name == "Kung Pao Chicken"
        assert first.is_loaded is False
        assert second.thumbnail_url == second.image_url
        assert second.source_url == "img.example.com"

    @pytest.mark.asyncio
    async def test_server_error_propagates(self):
        with pytest.raises(ServerError):
            await _service(lambda r: httpx.Response(500)).search_images("pizza")

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        service = _service(lambda r: httpx.Response(200, json={}), api_key="", engine_id="")
        assert service.is_configured is False
        with pytest.raises(ConfigurationError) as exc_info:
            await service.search_images("pizza")
        assert exc_info.value.missing == ["GOOGLE_SEARCH_API_KEY", "GOOGLE_SEARCH_ENGINE_ID"]


class TestSearchDishImages:
    @pytest.mark.asyncio
    async def test_uses_built_query_and_display_name(self):
        seen = {}

        def handler(request):
            seen["q"] = request.url.params["q"]
            return httpx.Response(200, json=PAYLOAD)

        record = DishRecord(original_name="宫保鸡丁", translated_name="Kung Pao Chicken: $12")
        images = await _service(handler).search_dish_images(record, 2)
        assert seen["q"] == "Kung Pao Chicken food dish"
        assert images[0].dish_name == "Kung Pao Chicken: $12"

    @pytest.mark.asyncio
    async def test_cached_results_skip_the_api(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=PAYLOAD)

        cache = ImageCache(tmp_path / "cache.db")
        client = ResilientClient(transport=httpx.MockTransport(handler), sleep=_no_sleep)
        service = ImageSearchService(client, api_key="k", engine_id="cx1", cache=cache)
        record = DishRecord(original_name="宫保鸡丁", translated_name="Kung Pao Chicken")

        first = await service.search_dish_images(record, 2)
        second = await service.search_dish_images(record, 2)
        cache.close()

        assert len(calls) == 1
        assert [img.image_url for img in second] == [img.image_url for img in first]

    @pytest.mark.asyncio
    async def test_empty_results_not_cached(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"items": []})

        cache = ImageCache(tmp_path / "cache.db")
        client = ResilientClient(transport=httpx.MockTransport(handler), sleep=_no_sleep)
        service = ImageSearchService(client, api_key="k", engine_id="cx1", cache=cache)
        record = DishRecord(original_name="Mystery")

        await service.search_dish_images(record, 2)
        await service.search_dish_images(record, 2)
        assert cache.count() == 0
        cache.close()

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_test_connection(self):
        seen = {}

        def handler(request):
            seen["q"] = request.url.params["q"]
            return httpx.Response(200, json=PAYLOAD)

        assert await _service(handler).test_connection() is True
        assert seen["q"] == "pizza"
