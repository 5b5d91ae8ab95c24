from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Optional

from .errors import AllProvidersFailedError, ProviderError
from .ingest import ContentIngestor, title_from_url, validate_url
from .orchestrator import FallbackOrchestrator
from .parser import (
    extract_json,
    fill_with_placeholders,
    normalize_quiz_payload,
    parse_quiz,
    quiz_payload_items,
)
from .prompt import (
    QuizPromptContext,
    RegeneratePromptContext,
    render_quiz_prompt,
    render_regenerate_prompt,
)
from .types import GenerationRequest, QuizItem, SourceRef, ValidationReport
from .validator import validate_quiz

logger = logging.getLogger(__name__)

DEFAULT_QUIZ_COUNT = 10


@dataclass
class QuizOutcome:
    items: list[QuizItem]
    validation: ValidationReport
    provider: str
    fallback_used: bool
    parse_failed: bool = False
    source: Optional[SourceRef] = None

    def to_dict(self) -> dict:
        source = None
        if self.source is not None:
            source = {
                "kind": self.source.kind,
                "uri": self.source.uri,
                "name": self.source.name,
                "mime_type": self.source.mime_type,
                "expires_at": self.source.expires_at,
            }
        return {
            "quiz": [item.to_dict() for item in self.items],
            "validation": self.validation.to_dict(),
            "provider": self.provider,
            "fallback_used": self.fallback_used,
            "parse_failed": self.parse_failed,
            "source": source,
        }


class QuizGenerator:
    """Prompt → orchestrator → parser → validator for one quiz set."""

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        ingestor: Optional[ContentIngestor] = None,
        fill_placeholders: bool = True,
        default_count: int = DEFAULT_QUIZ_COUNT,
    ) -> None:
        self.orchestrator = orchestrator
        self.ingestor = ingestor
        self.fill_placeholders = fill_placeholders
        self.default_count = default_count

    async def generate_from_text(
        self,
        content: str,
        title: str,
        quiz_count: Optional[int] = None,
        *,
        provider: Optional[str] = None,
        use_fallback: bool = True,
        cancel: Optional[asyncio.Event] = None,
    ) -> QuizOutcome:
        count = quiz_count or self.default_count
        prompt = render_quiz_prompt(QuizPromptContext(title=title, quiz_count=count, content=content))
        return await self._run(
            GenerationRequest(prompt=prompt), title, count, None, provider, use_fallback, cancel
        )

    async def generate_from_url(
        self,
        url: str,
        title: Optional[str] = None,
        quiz_count: Optional[int] = None,
        *,
        fetch_text: bool = False,
        provider: Optional[str] = None,
        use_fallback: bool = True,
        cancel: Optional[asyncio.Event] = None,
    ) -> QuizOutcome:
        if self.ingestor is not None:
            source = await self.ingestor.ingest_url(url, fetch_text=fetch_text)
        else:
            source = SourceRef(kind="url", uri=validate_url(url), name=title_from_url(url))
        title = title or source.name or ""
        return await self.generate_from_source(
            source, title, quiz_count, provider=provider, use_fallback=use_fallback, cancel=cancel
        )

    async def generate_from_file(
        self,
        path: Path,
        quiz_count: Optional[int] = None,
        *,
        title: Optional[str] = None,
        provider: Optional[str] = None,
        use_fallback: bool = True,
        cancel: Optional[asyncio.Event] = None,
    ) -> QuizOutcome:
        if self.ingestor is None:
            raise RuntimeError("File sources need a ContentIngestor")
        source = await self.ingestor.ingest_file(Path(path))
        return await self.generate_from_source(
            source,
            title or Path(path).stem,
            quiz_count,
            provider=provider,
            use_fallback=use_fallback,
            cancel=cancel,
        )

    async def generate_from_source(
        self,
        source: SourceRef,
        title: str,
        quiz_count: Optional[int] = None,
        *,
        provider: Optional[str] = None,
        use_fallback: bool = True,
        cancel: Optional[asyncio.Event] = None,
    ) -> QuizOutcome:
        count = quiz_count or self.default_count
        ctx = QuizPromptContext(
            title=title,
            quiz_count=count,
            url=source.uri if source.kind == "url" else "",
            from_file=source.kind == "file",
        )
        request = GenerationRequest(prompt=render_quiz_prompt(ctx), source=source)
        return await self._run(request, title, count, source, provider, use_fallback, cancel)

    async def _run(
        self,
        request: GenerationRequest,
        title: str,
        quiz_count: int,
        source: Optional[SourceRef],
        provider: Optional[str],
        use_fallback: bool,
        cancel: Optional[asyncio.Event],
    ) -> QuizOutcome:
        result = await self.orchestrator.generate(
            request, use_fallback=use_fallback, active=provider, cancel=cancel
        )
        payload = extract_json(result.text)
        # JSON without a quiz list counts as a parse failure, not an empty quiz
        parse_failed = payload is None or quiz_payload_items(payload) is None
        items = [] if parse_failed else normalize_quiz_payload(payload, title)
        if parse_failed:
            logger.warning("provider=%s produced text that is not quiz JSON", result.provider)
        elif self.fill_placeholders and len(items) < quiz_count:
            logger.info(
                "provider=%s returned %d/%d items; padding with placeholders",
                result.provider,
                len(items),
                quiz_count,
            )
            items = fill_with_placeholders(items, title, quiz_count)
        report = validate_quiz(items)
        return QuizOutcome(
            items=items,
            validation=report,
            provider=result.provider,
            fallback_used=result.fallback_used,
            parse_failed=parse_failed,
            source=source,
        )

    async def regenerate(
        self,
        content: str,
        items: list[QuizItem],
        indices: Iterable[int],
        *,
        provider: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> list[QuizItem]:
        """Replace the items at ``indices``; on provider failure the set is returned unchanged."""
        targets = sorted({i for i in indices if 0 <= i < len(items)})
        if not targets:
            return list(items)
        existing = [item.question for i, item in enumerate(items) if i not in targets]
        prompt = render_regenerate_prompt(
            RegeneratePromptContext(content=content, count=len(targets), existing_questions=existing)
        )
        request = GenerationRequest(prompt=prompt, temperature=0.5, max_tokens=4096)
        try:
            result = await self.orchestrator.generate(request, active=provider, cancel=cancel)
        except (ProviderError, AllProvidersFailedError) as exc:
            logger.warning("quiz regeneration failed, keeping existing items: %s", exc)
            return list(items)

        fresh = parse_quiz(result.text)
        updated = list(items)
        for target, item in zip(targets, fresh):
            updated[target] = replace(item, id=items[target].id)
        logger.info("regenerated %d/%d flagged item(s) via %s", min(len(fresh), len(targets)), len(targets), result.provider)
        return updated
