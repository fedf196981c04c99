from pathlib import Path
from typing import BinaryIO, Optional, Union
import os
import shutil
import uuid
from app.config import get_settings
import logging

logger = logging.getLogger(__name__)
settings = get_settings()


class StorageService:
    """
    Binary storage addressed by opaque handles.
    A handle is "<uuid>/<filename>" relative to the upload root.
    """

    def __init__(self, root: Optional[Path] = None, public_url: Optional[str] = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.root.mkdir(parents=True, exist_ok=True)
        if public_url is None:
            public_url = f"{settings.PUBLIC_STORAGE_URL}/{self.root.name}"
        self.public_url = public_url.rstrip("/")

    def upload(self, data: Union[bytes, BinaryIO], filename: str) -> str:
        """
        Store bytes or a file object
        Returns: storage handle
        """
        safe_name = Path(filename).name or "file"
        handle = f"{uuid.uuid4()}/{safe_name}"
        file_path = self.root / handle
        file_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            if isinstance(data, (bytes, bytearray)):
                file_path.write_bytes(data)
            else:
                with open(file_path, "wb") as buffer:
                    shutil.copyfileobj(data, buffer)
        except OSError as e:
            logger.error(f"Failed to store {safe_name}: {e}")
            shutil.rmtree(file_path.parent, ignore_errors=True)
            raise

        logger.info(f"Stored upload: {handle} ({os.path.getsize(file_path)} bytes)")
        return handle

    def get_path(self, handle: str) -> Path:
        path = (self.root / handle).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Invalid storage handle: {handle}")
        return path

    def get_url(self, handle: Optional[str]) -> Optional[str]:
        if not handle:
            return None
        return f"{self.public_url}/{handle}"

    def read(self, handle: str) -> bytes:
        return self.get_path(handle).read_bytes()

    def delete(self, handle: Optional[str]):
        """Remove a stored file and its handle directory"""
        if not handle:
            return
        path = self.get_path(handle)
        if path.parent.exists():
            shutil.rmtree(path.parent)
            logger.info(f"Deleted stored file: {handle}")


_storage: Optional[StorageService] = None


def get_storage() -> StorageService:
    global _storage
    if _storage is None:
        _storage = StorageService()
    return _storage
