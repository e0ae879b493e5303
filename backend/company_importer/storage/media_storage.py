"""Abstraction over storage for imported company media (local fs implementation)."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from company_importer.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredMedia:
    source_url: str
    local_url: str
    path: Path
    sort_order: int
    size: int


class MediaStorage:
    """Writes image bytes under ``base_dir`` and maps them to public URLs."""

    def __init__(self, base_dir: str | Path | None = None, url_prefix: str | None = None):
        settings = get_settings()
        self.base_dir = Path(base_dir or settings.media_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.url_prefix = (url_prefix or settings.media_url_prefix).rstrip("/")

    def build_filename(self, owner_id: int | str, index: int, extension: str) -> str:
        return f"{owner_id}_{index}_{uuid.uuid4()}{extension}"

    def save(
        self,
        content: bytes,
        *,
        owner_id: int | str,
        index: int,
        extension: str,
        source_url: str,
    ) -> StoredMedia:
        """Persist image bytes to local disk and return where they landed."""
        filename = self.build_filename(owner_id, index, extension)
        target_path = (self.base_dir / filename).resolve()
        target_path.write_bytes(content)
        logger.debug(f"Stored media {source_url} -> {target_path}")
        return StoredMedia(
            source_url=source_url,
            local_url=f"{self.url_prefix}/{filename}",
            path=target_path,
            sort_order=index,
            size=len(content),
        )

    def delete(self, local_url: str) -> bool:
        """Remove a stored file by its public URL; False when it was not there."""
        filename = local_url.rsplit("/", 1)[-1]
        path = self.base_dir / filename
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete media file {path}: {e}")
            return False
