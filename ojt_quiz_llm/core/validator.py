from __future__ import annotations

import logging

from .parser import OPTION_COUNT, PLACEHOLDER_PREFIX
from .types import QuizItem, ValidationIssue, ValidationReport

logger = logging.getLogger(__name__)

MIN_QUESTION_LENGTH = 10
MIN_QUIZ_ITEMS = 4


def _answer_out_of_range(item: QuizItem) -> bool:
    if item.raw_correct_index is not None and not 0 <= item.raw_correct_index < OPTION_COUNT:
        return True
    return not 0 <= item.correct_index < max(len(item.options), 1)


def validate_quiz(items: list[QuizItem]) -> ValidationReport:
    """Advisory quality check; the caller decides what to do with the issues."""
    if not items:
        return ValidationReport(
            valid=False,
            issues=[ValidationIssue("empty", "퀴즈가 비어있습니다")],
            stats={"total": 0, "placeholders": 0, "short_questions": 0, "duplicates": 0, "valid_count": 0},
        )

    issues: list[ValidationIssue] = []
    if len(items) < MIN_QUIZ_ITEMS:
        issues.append(
            ValidationIssue(
                "insufficient", f"퀴즈 {len(items)}개 (최소 {MIN_QUIZ_ITEMS}개 필요)"
            )
        )

    placeholders = short_questions = duplicates = 0
    seen: set[str] = set()
    for idx, item in enumerate(items):
        number = idx + 1
        question = item.question or ""
        if item.is_placeholder or PLACEHOLDER_PREFIX in question:
            placeholders += 1
            issues.append(ValidationIssue("placeholder", f"문제 {number}: 자동 생성된 더미 문제입니다.", idx))

        if len(question.strip()) < MIN_QUESTION_LENGTH:
            short_questions += 1
            issues.append(
                ValidationIssue(
                    "short_question", f"문제 {number}: 질문이 너무 짧습니다 ({len(question)}자).", idx
                )
            )

        key = question.strip().lower()
        if key in seen:
            duplicates += 1
            issues.append(ValidationIssue("duplicate", f"문제 {number}: 중복된 문제입니다.", idx))
        seen.add(key)

        if len(item.options) != OPTION_COUNT:
            issues.append(
                ValidationIssue("invalid_options", f"문제 {number}: 보기가 {OPTION_COUNT}개가 아닙니다.", idx)
            )

        if _answer_out_of_range(item):
            issues.append(ValidationIssue("invalid_answer", f"문제 {number}: 정답 인덱스가 잘못되었습니다.", idx))

        unique_options = {option.strip().lower() for option in item.options}
        if len(unique_options) < len(item.options):
            issues.append(
                ValidationIssue("duplicate_options", f"문제 {number}: 중복된 선택지가 있습니다.", idx)
            )

    stats = {
        "total": len(items),
        "placeholders": placeholders,
        "short_questions": short_questions,
        "duplicates": duplicates,
        "valid_count": len(items) - placeholders - duplicates,
    }
    if issues:
        logger.info("quiz validation found %d issue(s) in %d item(s)", len(issues), len(items))
    return ValidationReport(valid=not issues, issues=issues, stats=stats)
