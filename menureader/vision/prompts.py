"""Prompt templates for menu recognition."""

from __future__ import annotations

LANGUAGE_NAMES = {
    "en": "English",
    "zh": "Chinese (Simplified)",
    "ja": "Japanese",
    "ko": "Korean",
    "fr": "French",
    "es": "Spanish",
    "de": "German",
    "it": "Italian",
}

_MENU_PROMPT = """\
You are reading a photo of a restaurant menu.
List every dish on the menu and translate it into {language}.

Return only JSON in this exact shape, with no other text:
{{
  "detectedLanguage": "ISO 639-1 code of the menu's language",
  "items": [
    {{
      "originalName": "dish name exactly as printed",
      "translatedName": "dish name in {language}",
      "description": "short description in {language}, or null",
      "price": "price as printed including currency, or null",
      "category": "appetizer / main / dessert / drink / other, in {language}",
      "confidence": 0.0-1.0,
      "imageSearchQuery": "short English query for a photo of the dish"
    }}
  ]
}}

Keep the menu order. Use a confidence of 0.8-1.0 for clearly legible
entries, 0.5-0.8 when partly legible, and below 0.5 when guessing.
If the image is not a menu, return {{"items": []}}.
"""

HEALTH_CHECK_PROMPT = "Hello, please respond with 'OK' if you can read this."


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def build_menu_prompt(target_language: str) -> str:
    """Return the recognition prompt asking for output in ``target_language``."""
    return _MENU_PROMPT.format(language=language_name(target_language))
