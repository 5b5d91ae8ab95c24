"""Best-effort extraction of quiz JSON from free-form model output.

Location order: whole string, fenced ```json block, first balanced
``{...}``/``[...]`` substring. Each candidate is tried as-is and then after
the repair pipeline (control characters, trailing commas, raw newlines in
strings). Repairs are lossy; when nothing parses the result is ``None`` /
an empty list, never an exception.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterator, Union

from .types import CATEGORIES, DIFFICULTIES, QuizItem

logger = logging.getLogger(__name__)

FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
TRAILING_COMMA = re.compile(r",\s*([}\]])")

OPTION_COUNT = 4
LETTERS = "ABCD"
PLACEHOLDER_OPTIONS = ("정답", "오답 1", "오답 2", "오답 3")
PLACEHOLDER_PREFIX = "[자동 생성]"


def strip_control_characters(text: str) -> str:
    return CONTROL_CHARS.sub("", text)


def remove_trailing_commas(text: str) -> str:
    return TRAILING_COMMA.sub(r"\1", text)


def collapse_string_newlines(text: str) -> str:
    """Replace raw line breaks and tabs inside string literals with a space."""
    out = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch in "\r\n\t":
                if out and out[-1] != " ":
                    out.append(" ")
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


REPAIR_STEPS = (strip_control_characters, remove_trailing_commas, collapse_string_newlines)


def repair_json(text: str) -> str:
    for step in REPAIR_STEPS:
        text = step(text)
    return text


def find_balanced_json(text: str) -> Union[str, None]:
    """Return the first balanced ``{...}`` or ``[...]`` substring, string-aware."""
    closers = {"{": "}", "[": "]"}
    for start, ch in enumerate(text):
        if ch not in closers:
            continue
        stack = [closers[ch]]
        in_string = False
        escaped = False
        for pos in range(start + 1, len(text)):
            c = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif c == "\\":
                    escaped = True
                elif c == '"':
                    in_string = False
                continue
            if c == '"':
                in_string = True
            elif c in closers:
                stack.append(closers[c])
            elif c in "}]":
                if c != stack[-1]:
                    break
                stack.pop()
                if not stack:
                    return text[start : pos + 1]
    return None


def _candidates(text: str) -> Iterator[str]:
    yield text.strip()
    for match in FENCED_BLOCK.finditer(text):
        yield match.group(1)
    balanced = find_balanced_json(text)
    if balanced:
        yield balanced


def extract_json(text: str) -> Union[dict, list, None]:
    if not text or not text.strip():
        return None
    for candidate in _candidates(text):
        for attempt in (candidate, repair_json(candidate)):
            try:
                data = json.loads(attempt)
            except json.JSONDecodeError:
                continue
            if isinstance(data, (dict, list)):
                return data
    # Control characters can hide the structure from the scan; retry on repaired text
    balanced = find_balanced_json(repair_json(text))
    if balanced:
        try:
            data = json.loads(balanced)
        except json.JSONDecodeError:
            return None
        if isinstance(data, (dict, list)):
            return data
    return None


def quiz_payload_items(payload: Any) -> Union[list, None]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("quiz", "questions", "items"):
            if isinstance(payload.get(key), list):
                return payload[key]
        if "question" in payload and ("options" in payload or "choices" in payload):
            return [payload]
    return None


def _first_text(item: dict, keys: tuple[str, ...]) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _option_text(option: Any) -> str:
    if isinstance(option, dict):
        for key in ("text", "label", "value", "content"):
            if option.get(key) is not None:
                return str(option[key]).strip()
        return ""
    return str(option).strip()


def _coerce_index(value: Any, options: list[str]) -> Union[int, None]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        token = value.strip().rstrip(".)")
        if len(token) == 1 and token.upper() in LETTERS:
            return LETTERS.index(token.upper())
        if token.lstrip("-").isdigit():
            return int(token)
        lowered = value.strip().lower()
        for idx, option in enumerate(options):
            if option.lower() == lowered:
                return idx
    return None


def raw_correct_index(item: dict, options: list[str]) -> Union[int, None]:
    for key in ("correctIndex", "correct_index", "correct", "answer"):
        if key in item:
            index = _coerce_index(item[key], options)
            if index is not None:
                return index
    return None


def clamp_index(index: Union[int, None]) -> int:
    if index is None:
        return 0
    return max(0, min(OPTION_COUNT - 1, index))


def normalize_difficulty(value: Any) -> str:
    d = str(value or "").strip().lower()
    if "easy" in d or "쉬움" in d or d == "1":
        return "easy"
    if "hard" in d or "어려움" in d or d == "3":
        return "hard"
    return DIFFICULTIES[1]


def normalize_category(value: Any) -> str:
    c = str(value or "").strip().lower()
    if "recall" in c or "기억" in c:
        return "recall"
    if "application" in c or "적용" in c:
        return "application"
    return CATEGORIES[1]


def fallback_question(title: str, number: int) -> str:
    return f"{title or '학습'} 관련 문제 {number}"


def normalize_quiz_item(item: Any, index: int, title: str = "") -> Union[QuizItem, None]:
    """Map one raw item onto QuizItem; ``None`` when it cannot carry 4 options."""
    if not isinstance(item, dict):
        return None
    raw_options = None
    for key in ("options", "choices", "answers"):
        if isinstance(item.get(key), list):
            raw_options = item[key]
            break
    options = [_option_text(o) for o in raw_options or []]
    if len(options) < OPTION_COUNT:
        logger.warning(
            "quiz item %d discarded: %d options (need %d)", index + 1, len(options), OPTION_COUNT
        )
        return None
    options = options[:OPTION_COUNT]

    raw_index = raw_correct_index(item, options)
    question = _first_text(item, ("question", "q", "text")) or fallback_question(title, index + 1)
    return QuizItem(
        id=str(item.get("id") or f"quiz-{index + 1}"),
        question=question,
        options=options,
        correct_index=clamp_index(raw_index),
        explanation=_first_text(item, ("explanation", "hint", "reason")),
        difficulty=normalize_difficulty(item.get("difficulty")),
        category=normalize_category(item.get("category")),
        is_placeholder=bool(item.get("isPlaceholder") or item.get("is_placeholder")),
        raw_correct_index=raw_index,
    )


def normalize_quiz_payload(payload: Any, title: str = "") -> list[QuizItem]:
    raw_items = quiz_payload_items(payload)
    if raw_items is None:
        return []
    items = []
    for idx, raw in enumerate(raw_items):
        item = normalize_quiz_item(raw, idx, title)
        if item is not None:
            items.append(item)
    return items


def parse_quiz(raw_text: str, title: str = "") -> list[QuizItem]:
    payload = extract_json(raw_text)
    if payload is None:
        logger.warning("no JSON found in model output (%d chars)", len(raw_text or ""))
        return []
    return normalize_quiz_payload(payload, title)


def create_placeholder(title: str, number: int) -> QuizItem:
    return QuizItem(
        id=f"placeholder-{number}",
        question=f"{PLACEHOLDER_PREFIX} {fallback_question(title, number)}",
        options=list(PLACEHOLDER_OPTIONS),
        correct_index=0,
        is_placeholder=True,
        raw_correct_index=0,
    )


def fill_with_placeholders(items: list[QuizItem], title: str, minimum: int) -> list[QuizItem]:
    filled = list(items)
    while len(filled) < minimum:
        filled.append(create_placeholder(title, len(filled) + 1))
    return filled
