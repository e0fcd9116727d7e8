"""Gemini REST backend for menu recognition."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any

from ..api import ApiRequest, ResilientClient
from ..cancellation import CancellationToken
from ..config import DEFAULT_GEMINI_MODEL, DEFAULT_GEMINI_URL
from ..exceptions import ConfigurationError, ContentBlockedError, DecodingError
from . import RecognizedText, VisionBackend
from .prompts import build_menu_prompt

logger = logging.getLogger(__name__)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
_BLOCKING_PROBABILITIES = frozenset({"HIGH", "MEDIUM"})


@dataclass
class SafetyRating:
    category: str
    probability: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SafetyRating:
        return cls(category=data["category"], probability=data["probability"])


@dataclass
class Candidate:
    text: str
    finish_reason: str | None = None
    safety_ratings: list[SafetyRating] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Candidate:
        parts = (data.get("content") or {}).get("parts") or []
        return cls(
            text="".join(p.get("text", "") for p in parts),
            finish_reason=data.get("finishReason"),
            safety_ratings=[
                SafetyRating.from_dict(r) for r in data.get("safetyRatings") or []
            ],
        )


@dataclass
class GeminiResponse:
    candidates: list[Candidate]
    block_reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeminiResponse:
        if not isinstance(data, dict):
            raise TypeError("response is not an object")
        feedback = data.get("promptFeedback") or {}
        return cls(
            candidates=[Candidate.from_dict(c) for c in data.get("candidates") or []],
            block_reason=feedback.get("blockReason"),
        )


def check_safety(response: GeminiResponse) -> None:
    """Raise :class:`ContentBlockedError` if the reply was filtered."""
    if response.block_reason:
        raise ContentBlockedError(
            f"プロンプトがブロックされました: {response.block_reason}"
        )
    for candidate in response.candidates:
        if candidate.finish_reason == "SAFETY":
            raise ContentBlockedError()
        for rating in candidate.safety_ratings:
            if rating.probability in _BLOCKING_PROBABILITIES:
                raise ContentBlockedError(
                    f"安全フィルタにより解析がブロックされました ({rating.category})"
                )


class GeminiVisionBackend(VisionBackend):
    """Read menus using Google Gemini's ``generateContent`` endpoint."""

    def __init__(
        self,
        client: ResilientClient,
        api_key: str = "",
        model: str = DEFAULT_GEMINI_MODEL,
        base_url: str = DEFAULT_GEMINI_URL,
        temperature: float = 0.7,
        top_k: int = 40,
        top_p: float = 0.95,
        max_output_tokens: int = 2048,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._generation_config = {
            "temperature": temperature,
            "topK": top_k,
            "topP": top_p,
            "maxOutputTokens": max_output_tokens,
        }

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/{self._model}:generateContent"

    def build_request(
        self, prompt: str, image: bytes | None = None, mime_type: str = "image/jpeg"
    ) -> ApiRequest:
        if not self._api_key:
            raise ConfigurationError(
                "Gemini APIキーが設定されていません。"
                "設定ファイルまたは GEMINI_API_KEY 環境変数を確認してください。",
                missing=["GEMINI_API_KEY"],
            )
        parts: list[dict[str, Any]] = [{"text": prompt}]
        if image is not None:
            parts.append(
                {
                    "inlineData": {
                        "mimeType": mime_type,
                        "data": base64.b64encode(image).decode("ascii"),
                    }
                }
            )
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": dict(self._generation_config),
            "safetySettings": [
                {"category": c, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
                for c in SAFETY_CATEGORIES
            ],
        }
        return ApiRequest(
            method="POST",
            url=self.endpoint,
            params={"key": self._api_key},
            json=body,
            headers={"Content-Type": "application/json"},
        )

    async def _generate(
        self, request: ApiRequest, cancel_token: CancellationToken | None
    ) -> RecognizedText:
        response: GeminiResponse = await self._client.execute(
            request, GeminiResponse.from_dict, cancel_token=cancel_token
        )
        check_safety(response)
        if not response.candidates:
            raise DecodingError("応答に候補が含まれていません")
        first = response.candidates[0]
        logger.debug(
            "Gemini reply",
            extra={"chars": len(first.text), "finish_reason": first.finish_reason},
        )
        return RecognizedText(text=first.text, finish_reason=first.finish_reason)

    async def recognize(
        self,
        image: bytes,
        mime_type: str,
        target_language: str,
        cancel_token: CancellationToken | None = None,
    ) -> RecognizedText:
        request = self.build_request(
            build_menu_prompt(target_language), image, mime_type
        )
        return await self._generate(request, cancel_token)

    async def generate_text(
        self, prompt: str, cancel_token: CancellationToken | None = None
    ) -> RecognizedText:
        return await self._generate(self.build_request(prompt), cancel_token)
