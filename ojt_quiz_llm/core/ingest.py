"""URL and file sources for quiz generation.

URLs are screened against loopback, private, link-local and metadata-service
targets before anything is fetched. Files are checked against a MIME
allow-list and a size cap, then uploaded to the Gemini Files API; uploaded
files stay valid for about 48 hours.
"""

from __future__ import annotations

import ipaddress
import logging
import mimetypes
from pathlib import Path
from typing import Union
from urllib.parse import quote, unquote, urlsplit

import httpx

from .errors import BlockedTargetError, IngestError, SourceRejectedError
from .types import SourceRef

logger = logging.getLogger(__name__)

GEMINI_UPLOAD_URL = "https://generativelanguage.googleapis.com/upload/v1beta/files"
GEMINI_FILES_URL = "https://generativelanguage.googleapis.com/v1beta"

MAX_UPLOAD_BYTES = 50 * 1024 * 1024
MAX_SOURCE_TEXT_CHARS = 60_000

SUPPORTED_MIME_TYPES = {
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "txt": "text/plain",
    "html": "text/html",
    "htm": "text/html",
    "csv": "text/csv",
    "json": "application/json",
}

BLOCKED_HOSTNAMES = ("localhost", "0.0.0.0", "metadata.google", "metadata")
BLOCKED_SUFFIXES = (".internal", ".localhost", ".local")


def _blocked_ip(host: str) -> bool:
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_loopback
        or ip.is_private
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_reserved
        or ip.is_multicast
    )


def validate_url(url: str) -> str:
    """Return the URL unchanged if it is safe to fetch, else raise SourceRejectedError."""
    if not url or not isinstance(url, str):
        raise SourceRejectedError("A URL is required")
    try:
        parts = urlsplit(url.strip())
        host = (parts.hostname or "").lower().rstrip(".")
    except ValueError as e:
        raise SourceRejectedError(f"Malformed URL: {url}") from e
    if parts.scheme not in ("http", "https"):
        raise SourceRejectedError(f"Only http/https URLs are allowed: {url}")
    if not host:
        raise SourceRejectedError(f"URL has no host: {url}")
    if (
        host in BLOCKED_HOSTNAMES
        or host.startswith("metadata.google")
        or host.endswith(BLOCKED_SUFFIXES)
        or _blocked_ip(host)
    ):
        raise BlockedTargetError(f"URL targets a blocked address: {host}")
    return url.strip()


def is_url_allowed(url: str) -> bool:
    try:
        validate_url(url)
    except SourceRejectedError:
        return False
    return True


def guess_mime_type(filename: str) -> str:
    ext = Path(filename).suffix.lower().lstrip(".")
    if ext in SUPPORTED_MIME_TYPES:
        return SUPPORTED_MIME_TYPES[ext]
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


def check_upload(filename: str, size_bytes: int, mime_type: Union[str, None] = None) -> str:
    mime = mime_type or guess_mime_type(filename)
    if mime not in SUPPORTED_MIME_TYPES.values():
        raise IngestError(f"Unsupported file type: {mime}")
    if size_bytes > MAX_UPLOAD_BYTES:
        raise IngestError(
            f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)}MB: {size_bytes / 1024 / 1024:.2f}MB"
        )
    return mime


class ContentIngestor:
    def __init__(
        self,
        gemini_api_key: str = "",
        proxy_url: Union[str, None] = None,
        client: Union[httpx.AsyncClient, None] = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.gemini_api_key = gemini_api_key
        self.proxy_url = proxy_url.rstrip("/") if proxy_url else None
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def ingest_url(self, url: str, fetch_text: bool = False) -> SourceRef:
        url = validate_url(url)
        text = None
        if fetch_text and self.proxy_url:
            text = await self._fetch_via_proxy(url)
        return SourceRef(kind="url", uri=url, name=title_from_url(url), text=text)

    async def _fetch_via_proxy(self, url: str) -> Union[str, None]:
        try:
            resp = await self.client.get(f"{self.proxy_url}/proxy?url={quote(url, safe='')}")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            # Providers can still work from the bare URL
            logger.warning("proxy fetch failed for %s: %s", url, e)
            return None
        return resp.text[:MAX_SOURCE_TEXT_CHARS]

    async def ingest_file(self, path: Path, mime_type: Union[str, None] = None) -> SourceRef:
        path = Path(path)
        if not path.is_file():
            raise IngestError(f"File not found: {path}")
        mime = check_upload(path.name, path.stat().st_size, mime_type)
        return await self.ingest_bytes(path.read_bytes(), path.name, mime)

    async def ingest_bytes(
        self, data: bytes, filename: str, mime_type: Union[str, None] = None
    ) -> SourceRef:
        mime = check_upload(filename, len(data), mime_type)
        if not self.gemini_api_key:
            raise IngestError("File upload requires GEMINI_API_KEY")

        try:
            resp = await self.client.post(
                GEMINI_UPLOAD_URL,
                params={"key": self.gemini_api_key},
                files={"file": (filename, data, mime)},
            )
        except httpx.HTTPError as e:
            raise IngestError(f"Upload of {filename} failed: {e}") from e
        if not resp.is_success:
            raise IngestError(f"Upload of {filename} failed ({resp.status_code}): {resp.text[:200]}")

        info = resp.json().get("file") or {}
        if not info.get("uri"):
            raise IngestError(f"Upload of {filename} returned no file URI")
        logger.info("uploaded %s (%s, %d bytes) as %s", filename, mime, len(data), info.get("name"))
        size = info.get("sizeBytes")
        return SourceRef(
            kind="file",
            uri=info["uri"],
            name=info.get("name") or filename,
            mime_type=info.get("mimeType") or mime,
            size_bytes=int(size) if size is not None else len(data),
            expires_at=info.get("expirationTime"),
        )

    async def delete_file(self, name: str) -> None:
        if not self.gemini_api_key:
            raise IngestError("File deletion requires GEMINI_API_KEY")
        try:
            resp = await self.client.delete(
                f"{GEMINI_FILES_URL}/{name}", params={"key": self.gemini_api_key}
            )
        except httpx.HTTPError as e:
            raise IngestError(f"Deleting {name} failed: {e}") from e
        if not resp.is_success:
            raise IngestError(f"Deleting {name} failed ({resp.status_code})")


def title_from_url(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        return "URL 문서"
    segments = [s for s in parts.path.split("/") if s]
    if segments:
        last = segments[-1].rsplit(".", 1)[0] if "." in segments[-1] else segments[-1]
        return unquote(last.replace("-", " ").replace("_", " "))
    return parts.hostname or "URL 문서"
