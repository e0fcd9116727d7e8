"""Recover dish records from free-form vision model output.

The model is asked for ``{"items": [...]}`` JSON, but replies often wrap it
in prose or Markdown fences, or ignore the format entirely. Extraction runs a
fixed cascade of strategies, from strict to loose. A strategy returns
``None`` when it cannot interpret the text; a list, even an empty one, is a
definitive answer and ends the cascade.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterable

from .models import DishRecord

logger = logging.getLogger(__name__)

Strategy = Callable[[str], "list[DishRecord] | None"]

_PRICE_BODY = r"\d+(?:[.,]\d{1,2})?"

# Currency-prefixed ($12.99, ¥800), currency-suffixed (12.99€) and CJK unit
# suffixed (38元, 800円, 20块) prices.
PRICE = re.compile(
    rf"(?:[$¥￥€£]\s?{_PRICE_BODY}"
    rf"|{_PRICE_BODY}\s?(?:[$¥￥€£]|元|円|块))"
)

_NAME_COLON_PRICE = re.compile(rf"^(?P<name>.+?)\s*[:：]\s*(?P<price>{PRICE.pattern})\s*$")
_NAME_SPACE_PRICE = re.compile(rf"^(?P<name>.+?)\s+(?P<price>{PRICE.pattern})\s*$")

_FENCE = re.compile(r"```(?:json|JSON)?")
_JSON_MEMBER = re.compile(r'^"[^"]*"\s*:')
_BARE_DECIMAL = re.compile(r"\b\d+[.,]\d+\b")

_BOILERPLATE_MARKERS = (
    # English
    "analyze",
    "analysis",
    "format",
    "json",
    "menu items",
    "here is",
    "here are",
    "extract",
    # Chinese
    "分析",
    "格式",
    "菜单",
    "以下是",
    # Japanese
    "解析",
    "形式",
    "メニュー",
    "以下は",
)

_STOPWORDS = frozenset(
    {
        "with", "and", "the", "for", "from", "served", "our", "its", "this",
        "that", "are", "has", "have", "your", "you", "very", "fresh",
    }
)


# --- JSON strategies ------------------------------------------------------


def _find_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring, honouring string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            ch = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : pos + 1]
        start = text.find("{", start + 1)
    return None


def _records_from_document(doc: Any) -> list[DishRecord] | None:
    """Records of an ``{"items": [...]}`` document; ``None`` for any other shape."""
    if not isinstance(doc, dict) or not isinstance(doc.get("items"), list):
        return None
    records: list[DishRecord] = []
    for raw in doc["items"]:
        if not isinstance(raw, dict):
            continue
        try:
            records.append(DishRecord.from_dict(raw, index=len(records)))
        except ValueError:
            logger.debug("Skipping malformed item: %r", raw)
    return records


def balanced_json(text: str) -> list[DishRecord] | None:
    """Strategy 1: parse the first balanced JSON object in ``text``."""
    candidate = _find_balanced_object(text)
    if candidate is None:
        return None
    try:
        doc = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return _records_from_document(doc)


def fenced_json(text: str) -> list[DishRecord] | None:
    """Strategy 2: strip Markdown code fences and reparse the remainder."""
    cleaned = _FENCE.sub("", text).strip()
    if not cleaned:
        return None
    try:
        doc = json.loads(cleaned)
    except json.JSONDecodeError:
        candidate = _find_balanced_object(cleaned)
        if candidate is None:
            return None
        try:
            doc = json.loads(candidate)
        except json.JSONDecodeError:
            return None
    return _records_from_document(doc)


# --- line strategies ------------------------------------------------------


def _parse_line(line: str, index: int, bare_confidence: float) -> DishRecord | None:
    for pattern in (_NAME_COLON_PRICE, _NAME_SPACE_PRICE):
        m = pattern.match(line)
        if m:
            name = m.group("name").strip(" -*•:：")
            if name:
                return DishRecord(
                    original_name=name,
                    price=m.group("price").strip(),
                    confidence=0.8,
                    index=index,
                )
    name = line.strip(" -*•")
    if len(name) < 2:
        return None
    return DishRecord(original_name=name, confidence=bare_confidence, index=index)


def _parse_lines(lines: Iterable[str], bare_confidence: float) -> list[DishRecord]:
    records: list[DishRecord] = []
    for raw in lines:
        line = raw.strip()
        # JSON punctuation and members from a reply the JSON strategies rejected
        if len(line) < 2 or line[0] in "{}[]`" or _JSON_MEMBER.match(line):
            continue
        record = _parse_line(line, len(records), bare_confidence)
        if record is not None:
            records.append(record)
    return records


def line_patterns(text: str) -> list[DishRecord] | None:
    """Strategy 3: treat each line as ``name: price``, ``name price`` or a name."""
    return _parse_lines(text.splitlines(), bare_confidence=0.7) or None


def _is_boilerplate(line: str) -> bool:
    lowered = line.lower()
    if lowered.startswith(("{", "}", "[", "]", "```")):
        return True
    return any(marker in lowered for marker in _BOILERPLATE_MARKERS)


def keyword_filtered_lines(text: str) -> list[DishRecord] | None:
    """Strategy 4: like :func:`line_patterns`, minus prompt echoes and
    formatting chatter."""
    lines = [l for l in text.splitlines() if not _is_boilerplate(l.strip())]
    return _parse_lines(lines, bare_confidence=0.7) or None


STRATEGIES: tuple[Strategy, ...] = (
    balanced_json,
    fenced_json,
    line_patterns,
    keyword_filtered_lines,
)


def first_success(
    strategies: Iterable[Strategy], text: str
) -> list[DishRecord]:
    """Return the first strategy result that is not ``None``, or an empty list.

    Strategies that raise are logged and skipped.
    """
    for strategy in strategies:
        try:
            records = strategy(text)
        except Exception:
            logger.exception("Extraction strategy %s failed", strategy.__name__)
            continue
        if records is not None:
            logger.debug(
                "Extracted %d items via %s", len(records), strategy.__name__
            )
            return records
    return []


def extract(raw_text: str) -> list[DishRecord]:
    """Convert a raw model response into ordered dish records.

    Never raises; an unrecoverable response yields an empty list.
    """
    if not raw_text or not raw_text.strip():
        return []
    return first_success(STRATEGIES, raw_text)


def extract_detected_language(raw_text: str) -> str:
    """Return the ``detectedLanguage`` field of a JSON reply, or ``"auto"``."""
    candidate = _find_balanced_object(_FENCE.sub("", raw_text or ""))
    if candidate is None:
        return "auto"
    try:
        doc = json.loads(candidate)
    except json.JSONDecodeError:
        return "auto"
    if isinstance(doc, dict):
        lang = doc.get("detectedLanguage")
        if isinstance(lang, str) and lang.strip():
            return lang.strip()
    return "auto"


# --- search query helpers -------------------------------------------------


def clean_search_query(name: str) -> str:
    """Strip prices and punctuation from a dish name and add a food hint."""
    text = PRICE.sub(" ", name)
    text = _BARE_DECIMAL.sub(" ", text)
    text = "".join(ch if ch.isalnum() or ch.isspace() else " " for ch in text)
    text = " ".join(text.split())
    if not text:
        return ""
    return f"{text} food dish"


def _description_keywords(description: str | None, limit: int = 2) -> list[str]:
    if not description:
        return []
    words = re.findall(r"\w+", description.lower())
    keywords: list[str] = []
    for word in words:
        if len(word) > 2 and word not in _STOPWORDS and word not in keywords:
            keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def build_search_query(record: DishRecord) -> str:
    """Build the image search query for ``record``.

    An explicit ``imageSearchQuery`` from the model wins. Otherwise the
    display name is cleaned and enriched with the category and up to two
    description keywords.
    """
    if record.image_search_query:
        return record.image_search_query
    base = clean_search_query(record.display_name)
    if not base:
        base = clean_search_query(record.original_name) or record.original_name
    extras: list[str] = []
    if record.category:
        extras.append(record.category)
    extras.extend(_description_keywords(record.description))
    if extras:
        return f"{base} {' '.join(extras)}"
    return base
