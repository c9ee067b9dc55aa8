import asyncio
import os
import secrets
from pathlib import Path
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional
from urllib.parse import unquote, urlparse

import httpx

from solver.deadline import Deadline, RetryPolicy, retry_until_deadline
from solver.models import AggregatedContent, log

DOWNLOAD_TIMEOUT = 60.0
UNKNOWN_MEDIA_TYPE = "application/octet-stream"

MEDIA_TYPES = {
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".json": "application/json",
    ".opus": "audio/opus",
    ".mp3": "audio/mp3",
    ".wav": "audio/wav",
    ".m4a": "audio/m4a",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}


def is_file_url(url):
    """Extension heuristic: the path (minus trailing slashes) ends in .xx or longer."""
    try:
        path = urlparse(url).path
    except (TypeError, ValueError):
        return False
    path = path.rstrip("/")
    ext = os.path.splitext(path)[1]
    return len(ext) > 1


def is_page_url(url):
    try:
        scheme = urlparse(url).scheme.lower()
    except (TypeError, ValueError):
        return False
    return scheme in ("http", "https") and not is_file_url(url)


def media_type_for(filename):
    ext = os.path.splitext(filename.lower())[1]
    return MEDIA_TYPES.get(ext, UNKNOWN_MEDIA_TYPE)


def filename_for(url):
    name = os.path.basename(unquote(urlparse(url).path))
    return name or f"file-{secrets.token_hex(3)}"


def _fetchable(url):
    return urlparse(url).scheme.lower() in ("http", "https")


def candidate_files(content: AggregatedContent) -> List[str]:
    """Deduplicated file URLs, in first-seen order."""
    urls: List[str] = [u for u in content.links if is_file_url(u)]
    urls.extend(content.audio)
    urls.extend(content.video)
    urls.extend(content.media_refs())
    urls.extend(content.network_files)
    return list(dict.fromkeys(u for u in urls if u and _fetchable(u)))


async def fetch_bytes(client: httpx.AsyncClient, url: str) -> bytes:
    log("[DOWNLOAD]", "Downloading file:", url)
    resp = await client.get(url, follow_redirects=True)
    resp.raise_for_status()
    return resp.content


Fetcher = Callable[[httpx.AsyncClient, str], Awaitable[bytes]]


async def download_files(
    candidates: Iterable[str],
    downloads_dir: Path,
    *,
    deadline: Optional[Deadline],
    policy: RetryPolicy,
    sleep=asyncio.sleep,
    fetch: Fetcher = fetch_bytes,
    client: Optional[httpx.AsyncClient] = None,
) -> Mapping[str, str]:
    """Download every handled candidate and return a read-only filename -> path map."""
    downloads_dir = Path(downloads_dir)
    downloads_dir.mkdir(parents=True, exist_ok=True)
    registry: Dict[str, str] = {}

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT)
    try:
        for url in candidates:
            if deadline is not None:
                deadline.check("file download")
            filename = filename_for(url)
            mime = media_type_for(filename)
            if mime == UNKNOWN_MEDIA_TYPE:
                log("[SKIP]", "Unsupported file type:", filename, mime)
                continue

            async def _get(url=url):
                return await fetch(client, url)

            data = await retry_until_deadline(
                "DOWNLOAD", _get, deadline=deadline, policy=policy, sleep=sleep
            )
            save_path = downloads_dir / filename
            save_path.write_bytes(data)
            log("[DOWNLOAD]", "Saved:", save_path)
            registry[filename] = str(save_path.resolve())
    finally:
        if own_client:
            await client.aclose()
    return MappingProxyType(registry)


async def upload_files(
    files: Mapping[str, str],
    uploader: Callable[[str, str], Awaitable[Any]],
    *,
    deadline: Optional[Deadline],
    policy: RetryPolicy,
    sleep=asyncio.sleep,
) -> List[Any]:
    """Upload each registry entry in order; one context reference per file."""
    uploads: List[Any] = []
    for filename, path in files.items():
        if deadline is not None:
            deadline.check("file upload")
        mime = media_type_for(filename)

        async def _upload(path=path, mime=mime):
            log("[UPLOAD]", "Uploading File:", path)
            ref = await uploader(path, mime)
            log("[UPLOAD]", "Success:", path)
            return ref

        uploads.append(
            await retry_until_deadline("UPLOAD", _upload, deadline=deadline, policy=policy, sleep=sleep)
        )
    return uploads
