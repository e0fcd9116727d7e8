"""Vision backend base class, data types, and factory."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..api import ResilientClient
    from ..cancellation import CancellationToken
    from ..config import MenuReaderConfig


@dataclass
class RecognizedText:
    text: str  # raw model reply
    finish_reason: str | None = None


class VisionBackend(ABC):
    """Abstract base for reading menu photos with a vision-language model."""

    @abstractmethod
    async def recognize(
        self,
        image: bytes,
        mime_type: str,
        target_language: str,
        cancel_token: CancellationToken | None = None,
    ) -> RecognizedText:
        """Send a menu photo to the model and return its raw reply."""
        ...

    @abstractmethod
    async def generate_text(
        self, prompt: str, cancel_token: CancellationToken | None = None
    ) -> RecognizedText:
        """Send a text-only prompt (used by analysis without images and by
        health checks)."""
        ...

    async def test_connection(self) -> bool:
        """Return True if a minimal prompt gets a non-empty reply."""
        from .prompts import HEALTH_CHECK_PROMPT

        reply = await self.generate_text(HEALTH_CHECK_PROMPT)
        return bool(reply.text.strip())


def create_backend(
    config: MenuReaderConfig, client: ResilientClient, backend: str = "gemini"
) -> VisionBackend:
    """Create a vision backend based on configuration."""
    match backend:
        case "gemini":
            from .gemini import GeminiVisionBackend

            return GeminiVisionBackend(
                client,
                api_key=config.gemini.api_key,
                model=config.gemini.model,
                base_url=config.gemini.base_url,
                temperature=config.gemini.temperature,
                top_k=config.gemini.top_k,
                top_p=config.gemini.top_p,
                max_output_tokens=config.gemini.max_output_tokens,
            )
        case _:
            raise ValueError(
                f"不明なVisionバックエンド: {backend!r}  (gemini を指定してください)"
            )
