from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Union


class FailureKind(str, Enum):
    RATE_LIMIT = "transient-rate-limit"
    UNAVAILABLE = "transient-unavailable"
    CLIENT = "permanent-client-error"
    AUTH = "permanent-auth-error"
    EMPTY = "empty-response"
    NETWORK = "network-error"
    PARSE = "parse-failure"


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    model: str
    api_key: str = ""
    temperature: float = 0.3
    max_tokens: int = 8192
    timeout_seconds: float = 60.0
    supports_url_context: bool = False
    supports_json_mode: bool = False


@dataclass(frozen=True)
class SourceRef:
    kind: str
    uri: str
    name: Union[str, None] = None
    mime_type: Union[str, None] = None
    size_bytes: Union[int, None] = None
    expires_at: Union[str, None] = None
    text: Union[str, None] = None

    def describe(self) -> str:
        if self.kind == "file":
            label = self.name or self.uri
            return f"Source file: {label} ({self.mime_type or 'unknown type'}) {self.uri}"
        return f"Source URL: {self.uri}"


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    temperature: Union[float, None] = None
    max_tokens: Union[int, None] = None
    source: Union[SourceRef, None] = None

    def with_embedded_source(self) -> "GenerationRequest":
        """Copy of the request with the source reference written into the prompt."""
        if self.source is None:
            return self
        parts = [self.prompt, "", self.source.describe()]
        if self.source.text:
            parts += ["", "Source content:", self.source.text]
        return replace(self, prompt="\n".join(parts), source=None)


@dataclass(frozen=True)
class GenerationResult:
    text: str
    provider: str
    fallback_used: bool = False


@dataclass
class RetryState:
    max_retries: int
    attempt_index: int = 0
    delays_ms: list[int] = field(default_factory=list)


DIFFICULTIES = ("easy", "medium", "hard")
CATEGORIES = ("recall", "comprehension", "application")


@dataclass
class QuizItem:
    id: str
    question: str
    options: list[str]
    correct_index: int = 0
    explanation: str = ""
    difficulty: str = "medium"
    category: str = "comprehension"
    is_placeholder: bool = False
    raw_correct_index: Union[int, None] = None

    @property
    def answer(self) -> str:
        if 0 <= self.correct_index < len(self.options):
            return self.options[self.correct_index]
        return ""

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "QuizItem":
        """Load an item as stored, without normalization."""
        correct = data.get("correctIndex", data.get("correct_index", 0))
        return cls(
            id=str(data.get("id") or f"quiz-{index + 1}"),
            question=str(data.get("question") or ""),
            options=[str(o) for o in data.get("options") or []],
            correct_index=correct if isinstance(correct, int) else 0,
            explanation=str(data.get("explanation") or ""),
            difficulty=str(data.get("difficulty") or "medium"),
            category=str(data.get("category") or "comprehension"),
            is_placeholder=bool(data.get("isPlaceholder", data.get("is_placeholder", False))),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "question": self.question,
            "options": list(self.options),
            "correctIndex": self.correct_index,
            "answer": self.answer,
            "explanation": self.explanation,
            "difficulty": self.difficulty,
            "category": self.category,
            "isPlaceholder": self.is_placeholder,
        }


@dataclass(frozen=True)
class ValidationIssue:
    type: str
    message: str
    index: Union[int, None] = None


@dataclass
class ValidationReport:
    valid: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    def flagged_indices(self) -> list[int]:
        return sorted({issue.index for issue in self.issues if issue.index is not None})

    def count(self, issue_type: str) -> int:
        return sum(1 for issue in self.issues if issue.type == issue_type)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "issues": [
                {"type": i.type, "message": i.message, "index": i.index} for i in self.issues
            ],
            "stats": dict(self.stats),
        }
