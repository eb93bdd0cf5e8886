"""
Local filesystem storage for task attachments.
Files land flat in the upload directory, which is also served at /uploads.
"""
from pathlib import Path
from typing import BinaryIO, Optional

import structlog

from ..config import settings
from .provider import StorageProvider, UploadTooLarge


logger = structlog.get_logger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalStorageProvider(StorageProvider):
    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.upload_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        # Stored names are flat; anything path-like is reduced to its last part
        clean_key = Path(key.replace("\\", "/")).name
        if not clean_key or clean_key in (".", ".."):
            raise ValueError("Invalid storage key")
        return self.base_dir / clean_key

    def save(self, stream: BinaryIO, key: str, max_bytes: Optional[int] = None) -> int:
        path = self._get_path(key)
        written = 0
        try:
            with open(path, "wb") as f:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise UploadTooLarge(key)
                    f.write(chunk)
        except Exception:
            # Never leave a partial file behind
            self.delete(key)
            raise
        return written

    def get_path(self, key: str) -> Optional[Path]:
        try:
            path = self._get_path(key)
        except ValueError:
            return None
        return path if path.is_file() else None

    def delete(self, key: str) -> None:
        try:
            path = self._get_path(key)
            if path.exists():
                path.unlink()
        except (OSError, ValueError) as e:
            logger.warning("storage_delete_failed", key=key, error=str(e))
