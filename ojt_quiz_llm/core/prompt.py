from __future__ import annotations

from dataclasses import dataclass, field

from .prompt_loader import load_prompt

TEXT_CONTENT_LIMIT = 12000
REGENERATE_CONTENT_LIMIT = 8000


@dataclass
class QuizPromptContext:
    title: str
    quiz_count: int
    content: str = ""
    url: str = ""
    from_file: bool = False


def render_quiz_prompt(ctx: QuizPromptContext) -> str:
    prompt = load_prompt("quiz_only").format(quiz_count=ctx.quiz_count)
    if ctx.title:
        prompt += f'\n\n문서 제목: "{ctx.title}"'
    if ctx.url:
        return prompt + f"\n\n콘텐츠 URL: {ctx.url}"
    if ctx.from_file:
        return prompt + "\n\n위 문서의 내용을 기반으로 퀴즈를 생성해주세요."
    return prompt + f"\n\n## 입력 텍스트\n{ctx.content[:TEXT_CONTENT_LIMIT]}"


@dataclass
class RegeneratePromptContext:
    content: str
    count: int
    existing_questions: list[str] = field(default_factory=list)


def render_regenerate_prompt(ctx: RegeneratePromptContext) -> str:
    return load_prompt("regenerate").format(
        count=ctx.count,
        existing_questions="\n".join(ctx.existing_questions) or "(없음)",
        content=ctx.content[:REGENERATE_CONTENT_LIMIT],
    )
