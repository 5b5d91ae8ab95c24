from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from ..core.errors import (
    AllProvidersFailedError,
    BlockedTargetError,
    GenerationCancelledError,
    IngestError,
    ProviderError,
    SourceRejectedError,
    UnknownProviderError,
)
from ..core.ingest import validate_url
from ..core.logging_utils import configure_logging
from ..core.provider_config import provider_config_loader
from ..core.quiz_generator import DEFAULT_QUIZ_COUNT, QuizGenerator
from ..core.types import QuizItem
from ..core.validator import validate_quiz

# Load environment variables from .env file
load_dotenv()
configure_logging()

logger = logging.getLogger(__name__)

PROXY_TIMEOUT_SECONDS = 5.0
PROXY_MAX_BYTES = 10 * 1024 * 1024
PROXY_CACHE_TTL = 300
PROXY_MAX_REDIRECTS = 5
PROXY_ALLOWED_CONTENT_TYPES = (
    "text/html",
    "text/plain",
    "application/json",
    "application/xml",
    "text/xml",
    "application/xhtml+xml",
)
PROXY_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

app = FastAPI(title="ojt-quiz-llm")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
    max_age=86400,
)


@lru_cache(maxsize=1)
def _get_generator() -> QuizGenerator:
    return QuizGenerator(
        provider_config_loader.build_orchestrator(),
        ingestor=provider_config_loader.build_ingestor(),
    )


def _proxy_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=PROXY_TIMEOUT_SECONDS, follow_redirects=False)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@app.exception_handler(AllProvidersFailedError)
async def _all_failed(_, exc: AllProvidersFailedError) -> JSONResponse:
    attempts = [{"provider": name, "reason": reason} for name, reason in exc.attempts]
    return _error(502, str(exc), attempts=attempts)


@app.exception_handler(ProviderError)
async def _provider_failed(_, exc: ProviderError) -> JSONResponse:
    return _error(502, str(exc), provider=exc.provider, kind=exc.kind.value)


@app.exception_handler(SourceRejectedError)
async def _source_rejected(_, exc: SourceRejectedError) -> JSONResponse:
    return _error(400, str(exc))


@app.exception_handler(IngestError)
async def _ingest_failed(_, exc: IngestError) -> JSONResponse:
    return _error(400, str(exc))


@app.exception_handler(UnknownProviderError)
async def _unknown_provider(_, exc: UnknownProviderError) -> JSONResponse:
    return _error(400, str(exc))


@app.exception_handler(GenerationCancelledError)
async def _cancelled(_, exc: GenerationCancelledError) -> JSONResponse:
    return _error(499, str(exc))


class GenerateRequest(BaseModel):
    text: Optional[str] = None
    url: Optional[str] = None
    title: str = ""
    quiz_count: int = Field(DEFAULT_QUIZ_COUNT, ge=1, le=50)
    provider: Optional[str] = None
    use_fallback: bool = True
    fetch_text: bool = False


class ValidateRequest(BaseModel):
    quiz: list[dict]


class RegenerateRequest(BaseModel):
    content: str
    quiz: list[dict]
    indices: list[int]
    provider: Optional[str] = None


@app.get("/api/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/providers")
async def list_providers() -> dict:
    orchestrator = _get_generator().orchestrator
    statuses = await orchestrator.check_all_status()
    return {
        "default": orchestrator.default_provider,
        "fallback_chain": list(orchestrator.fallback_chain),
        "providers": statuses,
    }


@app.post("/api/quiz/generate")
async def generate_quiz(req: GenerateRequest) -> dict:
    if not req.text and not req.url:
        raise HTTPException(status_code=400, detail="Provide text or url")
    generator = _get_generator()
    if req.url:
        outcome = await generator.generate_from_url(
            req.url,
            title=req.title or None,
            quiz_count=req.quiz_count,
            fetch_text=req.fetch_text,
            provider=req.provider,
            use_fallback=req.use_fallback,
        )
    else:
        outcome = await generator.generate_from_text(
            req.text,
            req.title,
            req.quiz_count,
            provider=req.provider,
            use_fallback=req.use_fallback,
        )
    return outcome.to_dict()


@app.post("/api/quiz/upload")
async def upload_quiz_source(
    file: UploadFile = File(...),
    title: str = Form(""),
    quiz_count: int = Form(DEFAULT_QUIZ_COUNT, ge=1, le=50),
    provider: Optional[str] = Form(None),
) -> dict:
    generator = _get_generator()
    if generator.ingestor is None:
        raise HTTPException(status_code=400, detail="File uploads are not configured")
    content = await file.read()
    # browsers send octet-stream for unknown types; fall back to the extension
    mime = file.content_type if file.content_type != "application/octet-stream" else None
    source = await generator.ingestor.ingest_bytes(content, file.filename or "upload", mime or None)
    outcome = await generator.generate_from_source(
        source, title or source.name or "", quiz_count, provider=provider
    )
    return outcome.to_dict()


@app.post("/api/quiz/validate")
def validate_items(req: ValidateRequest) -> dict:
    items = [QuizItem.from_dict(raw, idx) for idx, raw in enumerate(req.quiz)]
    return validate_quiz(items).to_dict()


@app.post("/api/quiz/regenerate")
async def regenerate_items(req: RegenerateRequest) -> dict:
    items = [QuizItem.from_dict(raw, idx) for idx, raw in enumerate(req.quiz)]
    updated = await _get_generator().regenerate(
        req.content, items, req.indices, provider=req.provider
    )
    return {"quiz": [item.to_dict() for item in updated], "validation": validate_quiz(updated).to_dict()}


class _ProxyRefusal(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


async def _fetch_capped(client: httpx.AsyncClient, target: str, headers: dict) -> tuple[str, bytes]:
    """Fetch ``target`` following screened redirects, reading at most PROXY_MAX_BYTES."""
    url = target
    for _ in range(PROXY_MAX_REDIRECTS + 1):
        upstream = await client.send(client.build_request("GET", url, headers=headers), stream=True)
        try:
            if upstream.is_redirect:
                # Each redirect hop is screened before it is requested
                url = str(upstream.next_request.url)
                try:
                    validate_url(url)
                except SourceRejectedError as exc:
                    raise _ProxyRefusal(403, f"Redirect rejected: {exc}") from exc
                continue

            try:
                declared = int(upstream.headers.get("Content-Length") or 0)
            except ValueError:
                declared = 0
            if declared > PROXY_MAX_BYTES:
                raise _ProxyRefusal(413, "응답이 너무 큽니다 (최대 10MB)")

            content_type = upstream.headers.get("Content-Type", "")
            if not any(allowed in content_type for allowed in PROXY_ALLOWED_CONTENT_TYPES):
                raise _ProxyRefusal(415, f"허용되지 않는 콘텐츠 타입입니다: {content_type}")

            chunks = []
            received = 0
            async for chunk in upstream.aiter_bytes():
                received += len(chunk)
                if received > PROXY_MAX_BYTES:
                    raise _ProxyRefusal(413, "응답이 너무 큽니다 (최대 10MB)")
                chunks.append(chunk)
            return content_type, b"".join(chunks)
        finally:
            await upstream.aclose()
    raise _ProxyRefusal(502, "Too many redirects")


@app.get("/proxy")
async def cors_proxy(url: Optional[str] = Query(None)) -> Response:
    if not url:
        return _error(400, "URL이 필요합니다")
    try:
        target = validate_url(url)
    except BlockedTargetError as exc:
        return _error(403, str(exc))
    except SourceRejectedError as exc:
        return _error(400, str(exc))

    headers = {
        "User-Agent": PROXY_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
    }
    try:
        async with _proxy_client() as client:
            # The deadline covers every hop and the whole body, not each read
            content_type, body = await asyncio.wait_for(
                _fetch_capped(client, target, headers), timeout=PROXY_TIMEOUT_SECONDS
            )
    except _ProxyRefusal as exc:
        return _error(exc.status_code, str(exc))
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return _error(502, "요청 시간이 초과되었습니다")
    except httpx.HTTPError as exc:
        logger.warning("proxy fetch failed for %s: %s", target, exc)
        return _error(502, f"Upstream fetch failed: {exc}")

    return Response(
        content=body,
        status_code=200,
        media_type=content_type or "text/html; charset=utf-8",
        headers={
            "Cache-Control": f"public, max-age={PROXY_CACHE_TTL}",
            "X-Proxy-Source": "ojt-quiz-llm",
        },
    )
