"""Download row-attached images and hand them to media storage."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from urllib.parse import urlparse

import httpx

from company_importer.core.config import get_settings
from company_importer.storage.media_storage import MediaStorage, StoredMedia

logger = logging.getLogger(__name__)

USER_AGENT = "Company-Directory-Importer/1.0"

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
}
URL_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".tiff"}


class MediaFetchError(Exception):
    """One image could not be fetched or stored."""


@dataclass
class MediaFetchResult:
    downloaded: int = 0
    failed: int = 0
    stored: list[StoredMedia] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def guess_extension(content_type: str | None, url: str) -> str:
    """Pick a file extension from the content type, then the URL path."""
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime in CONTENT_TYPE_EXTENSIONS:
            return CONTENT_TYPE_EXTENSIONS[mime]
    ext = posixpath.splitext(urlparse(url).path)[1].lower()
    if ext in URL_EXTENSIONS:
        return ext
    return ".jpg"


class MediaFetcher:
    """Fetch images one by one; a failing image never affects the others."""

    def __init__(
        self,
        storage: MediaStorage | None = None,
        *,
        client: httpx.Client | None = None,
        timeout: float | None = None,
        max_bytes: int | None = None,
    ):
        settings = get_settings()
        self.storage = storage or MediaStorage()
        self.timeout = timeout if timeout is not None else settings.media_timeout_seconds
        self.max_bytes = max_bytes if max_bytes is not None else settings.media_max_bytes
        self._client = client

    def _download(self, client: httpx.Client, url: str) -> tuple[bytes, str | None]:
        if not url or not url.startswith(("http://", "https://")):
            raise MediaFetchError(f"invalid image URL: {url!r}")

        with client.stream("GET", url) as response:
            if response.status_code >= 400:
                raise MediaFetchError(f"HTTP {response.status_code} for {url}")

            content_type = response.headers.get("content-type")
            if not content_type or not content_type.lower().startswith("image/"):
                raise MediaFetchError(f"unexpected content type {content_type!r} for {url}")

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise MediaFetchError(f"image larger than {self.max_bytes} bytes: {url}")

            # Chunked bodies carry no length; stop reading once over the cap
            chunks: list[bytes] = []
            received = 0
            for chunk in response.iter_bytes():
                received += len(chunk)
                if received > self.max_bytes:
                    raise MediaFetchError(f"image larger than {self.max_bytes} bytes: {url}")
                chunks.append(chunk)
        return b"".join(chunks), content_type

    def fetch_one(
        self, client: httpx.Client, url: str, owner_id: int | str, index: int
    ) -> StoredMedia:
        content, content_type = self._download(client, url)
        return self.storage.save(
            content,
            owner_id=owner_id,
            index=index,
            extension=guess_extension(content_type, url),
            source_url=url,
        )

    def fetch_all(
        self, urls: list[str], owner_id: int | str, start_index: int = 0
    ) -> MediaFetchResult:
        """Fetch and store each URL, counting successes and failures."""
        result = MediaFetchResult()
        if not urls:
            return result

        client = self._client or httpx.Client(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        try:
            for offset, url in enumerate(urls):
                try:
                    stored = self.fetch_one(client, url, owner_id, start_index + offset)
                except (httpx.HTTPError, httpx.InvalidURL, MediaFetchError, OSError) as e:
                    result.failed += 1
                    result.errors.append(str(e))
                    logger.warning(f"Image fetch failed for owner {owner_id}: {e}")
                    continue
                result.downloaded += 1
                result.stored.append(stored)
        finally:
            if self._client is None:
                client.close()

        logger.info(
            f"Media for owner {owner_id}: downloaded={result.downloaded}, failed={result.failed}"
        )
        return result
