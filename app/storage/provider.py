from pathlib import Path
from typing import BinaryIO, Optional


class UploadTooLarge(Exception):
    pass


class StorageProvider:
    def save(self, stream: BinaryIO, key: str, max_bytes: Optional[int] = None) -> int:
        """Write the stream under key and return the byte count."""
        raise NotImplementedError

    def get_path(self, key: str) -> Optional[Path]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
