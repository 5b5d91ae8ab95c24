import sys, pathlib; sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

from ojt_quiz_llm.core.parser import fill_with_placeholders, normalize_quiz_item
from ojt_quiz_llm.core.types import QuizItem
from ojt_quiz_llm.core.validator import validate_quiz

QUESTIONS = [
    "신입사원 교육은 몇 주 동안 진행되나요?",
    "사내 보안 교육을 이수해야 하는 시점은 언제인가요?",
    "멘토 면담 결과는 어디에 기록하나요?",
    "업무 메일 서명에 반드시 포함할 항목은 무엇인가요?",
]


def make_items(questions=QUESTIONS):
    return [
        QuizItem(id=f"q{i}", question=q, options=["가", "나", "다", "라"], correct_index=i % 4)
        for i, q in enumerate(questions)
    ]


def test_clean_set_is_valid():
    report = validate_quiz(make_items())
    assert report.valid
    assert report.issues == []
    assert report.stats["total"] == 4
    assert report.stats["valid_count"] == 4


def test_empty_set():
    report = validate_quiz([])
    assert not report.valid
    assert [i.type for i in report.issues] == ["empty"]
    assert report.stats["total"] == 0


def test_single_duplicate_is_reported_once():
    questions = list(QUESTIONS)
    questions[2] = "  " + QUESTIONS[0].upper() + " "
    report = validate_quiz(make_items(questions))
    assert report.count("duplicate") == 1
    assert report.stats["duplicates"] == 1
    duplicate = [i for i in report.issues if i.type == "duplicate"][0]
    assert duplicate.index == 2
    assert report.stats["valid_count"] == 3


def test_insufficient_items():
    report = validate_quiz(make_items(QUESTIONS[:2]))
    assert report.count("insufficient") == 1
    assert not report.valid


def test_placeholders_are_flagged():
    items = fill_with_placeholders(make_items(QUESTIONS[:2]), "온보딩", 4)
    report = validate_quiz(items)
    assert report.stats["placeholders"] == 2
    assert report.flagged_indices() == [2, 3]


def test_short_question():
    items = make_items()
    items[1].question = "짧은 질문"
    report = validate_quiz(items)
    assert report.count("short_question") == 1
    assert report.stats["short_questions"] == 1


def test_invalid_answer_survives_clamping():
    raw = {"question": QUESTIONS[0], "options": ["가", "나", "다", "라"], "correctIndex": 7}
    items = make_items()
    items[0] = normalize_quiz_item(raw, 0)
    assert items[0].correct_index == 3
    report = validate_quiz(items)
    assert report.count("invalid_answer") == 1
    assert report.flagged_indices() == [0]


def test_option_problems():
    items = make_items()
    items[0].options = ["가", "나", "다"]
    items[1].options = ["같음", "같음", "다름", "또 다름"]
    report = validate_quiz(items)
    assert report.count("invalid_options") == 1
    assert report.count("duplicate_options") == 1


def test_report_serialization():
    data = validate_quiz([]).to_dict()
    assert data["valid"] is False
    assert data["issues"][0]["type"] == "empty"
    assert data["issues"][0]["index"] is None
