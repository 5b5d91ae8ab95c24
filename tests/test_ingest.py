import sys, pathlib; sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))
import asyncio

import httpx
import pytest

from ojt_quiz_llm.core.errors import BlockedTargetError, IngestError, SourceRejectedError
from ojt_quiz_llm.core.ingest import (
    MAX_UPLOAD_BYTES,
    ContentIngestor,
    check_upload,
    is_url_allowed,
    title_from_url,
    validate_url,
)


@pytest.mark.parametrize(
    "url",
    [
        "http://127.0.0.1/admin",
        "http://169.254.169.254/latest/meta-data/",
        "http://10.0.0.5/",
        "http://192.168.1.1/router",
        "http://172.16.3.4/",
        "http://localhost:8080/",
        "http://0.0.0.0/",
        "http://[::1]/",
        "http://[::ffff:127.0.0.1]/",
        "http://metadata.google.internal/computeMetadata/v1/",
        "http://db.internal/",
        "http://printer.local/",
    ],
)
def test_blocked_targets(url):
    with pytest.raises(BlockedTargetError):
        validate_url(url)
    assert not is_url_allowed(url)


@pytest.mark.parametrize("url", ["", "ftp://example.com/file", "javascript:alert(1)", "http:///nohost"])
def test_malformed_urls(url):
    with pytest.raises(SourceRejectedError) as exc:
        validate_url(url)
    assert not isinstance(exc.value, BlockedTargetError)


def test_public_url_is_allowed():
    assert validate_url(" https://example.com/docs/onboarding ") == "https://example.com/docs/onboarding"


def recording_client(handler=None):
    calls = []

    def _handler(request):
        calls.append(request)
        if handler is not None:
            return handler(request)
        return httpx.Response(200, text="ok")

    return httpx.AsyncClient(transport=httpx.MockTransport(_handler)), calls


def test_blocked_url_is_rejected_before_any_fetch():
    client, calls = recording_client()
    ingestor = ContentIngestor(proxy_url="https://proxy.example.com", client=client)

    with pytest.raises(SourceRejectedError):
        asyncio.run(ingestor.ingest_url("http://169.254.169.254/latest", fetch_text=True))
    assert calls == []


def test_ingest_url_without_fetch():
    client, calls = recording_client()
    ingestor = ContentIngestor(proxy_url="https://proxy.example.com", client=client)

    source = asyncio.run(ingestor.ingest_url("https://example.com/guides/first-week.html"))

    assert source.kind == "url"
    assert source.uri == "https://example.com/guides/first-week.html"
    assert source.name == "first week"
    assert source.text is None
    assert calls == []


def test_ingest_url_fetches_text_through_proxy():
    def handler(request):
        assert request.url.path == "/proxy"
        assert request.url.params["url"] == "https://example.com/guide"
        return httpx.Response(200, text="<p>Welcome aboard</p>")

    client, calls = recording_client(handler)
    ingestor = ContentIngestor(proxy_url="https://proxy.example.com/", client=client)

    source = asyncio.run(ingestor.ingest_url("https://example.com/guide", fetch_text=True))

    assert source.text == "<p>Welcome aboard</p>"
    assert len(calls) == 1


def test_proxy_failure_keeps_bare_url():
    client, _ = recording_client(lambda request: httpx.Response(502, json={"error": "down"}))
    ingestor = ContentIngestor(proxy_url="https://proxy.example.com", client=client)

    source = asyncio.run(ingestor.ingest_url("https://example.com/guide", fetch_text=True))

    assert source.uri == "https://example.com/guide"
    assert source.text is None


def test_check_upload_rules():
    assert check_upload("guide.pdf", 1024) == "application/pdf"
    assert check_upload("scan.JPG", 10) == "image/jpeg"
    with pytest.raises(IngestError):
        check_upload("installer.exe", 10)
    with pytest.raises(IngestError):
        check_upload("huge.pdf", MAX_UPLOAD_BYTES + 1)


def test_ingest_bytes_uploads_to_gemini_files_api():
    def handler(request):
        assert request.method == "POST"
        assert request.url.path == "/upload/v1beta/files"
        assert request.url.params["key"] == "test-key"
        assert b"%PDF-1.4" in request.content
        return httpx.Response(
            200,
            json={
                "file": {
                    "name": "files/abc123",
                    "uri": "https://generativelanguage.googleapis.com/v1beta/files/abc123",
                    "mimeType": "application/pdf",
                    "sizeBytes": "8",
                    "expirationTime": "2026-10-19T00:00:00Z",
                }
            },
        )

    client, calls = recording_client(handler)
    ingestor = ContentIngestor(gemini_api_key="test-key", client=client)

    source = asyncio.run(ingestor.ingest_bytes(b"%PDF-1.4", "guide.pdf"))

    assert source.kind == "file"
    assert source.uri.endswith("/files/abc123")
    assert source.name == "files/abc123"
    assert source.mime_type == "application/pdf"
    assert source.size_bytes == 8
    assert source.expires_at == "2026-10-19T00:00:00Z"
    assert len(calls) == 1


def test_upload_requires_key_and_checks_type_first():
    client, calls = recording_client()
    ingestor = ContentIngestor(client=client)

    with pytest.raises(IngestError, match="GEMINI_API_KEY"):
        asyncio.run(ingestor.ingest_bytes(b"data", "guide.pdf"))
    with pytest.raises(IngestError, match="Unsupported"):
        asyncio.run(ingestor.ingest_bytes(b"MZ", "tool.exe"))
    assert calls == []


def test_upload_failure_is_an_ingest_error():
    client, _ = recording_client(lambda request: httpx.Response(400, json={"error": {"message": "bad"}}))
    ingestor = ContentIngestor(gemini_api_key="k", client=client)

    with pytest.raises(IngestError, match="400"):
        asyncio.run(ingestor.ingest_bytes(b"hello", "notes.txt"))


def test_ingest_file_reads_from_disk(tmp_path):
    def handler(request):
        return httpx.Response(200, json={"file": {"name": "files/t1", "uri": "https://x/files/t1"}})

    path = tmp_path / "notes.txt"
    path.write_text("첫 주 일정", encoding="utf-8")
    client, _ = recording_client(handler)
    ingestor = ContentIngestor(gemini_api_key="k", client=client)

    source = asyncio.run(ingestor.ingest_file(path))
    assert source.mime_type == "text/plain"
    assert source.size_bytes == path.stat().st_size

    with pytest.raises(IngestError, match="not found"):
        asyncio.run(ingestor.ingest_file(tmp_path / "missing.pdf"))


def test_title_from_url():
    assert title_from_url("https://example.com/docs/onboarding-guide.html") == "onboarding guide"
    assert title_from_url("https://example.com/") == "example.com"


def test_delete_uploaded_file():
    def handler(request):
        assert request.method == "DELETE"
        assert request.url.path == "/v1beta/files/abc123"
        return httpx.Response(200, json={})

    client, calls = recording_client(handler)
    ingestor = ContentIngestor(gemini_api_key="k", client=client)
    asyncio.run(ingestor.delete_file("files/abc123"))
    assert len(calls) == 1

    failing, _ = recording_client(lambda request: httpx.Response(404, json={}))
    with pytest.raises(IngestError, match="404"):
        asyncio.run(ContentIngestor(gemini_api_key="k", client=failing).delete_file("files/gone"))
