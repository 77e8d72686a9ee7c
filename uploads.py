"""
Local-disk storage for report photos.

Files are written under the configured upload directory and served back by the
static mount at ``/uploads``.

Usage:
    storage = UploadStorage("uploads")
    filename = storage.save(upload_file)
"""
import logging
import os
import random
import shutil
import time
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from errors import PersistenceError

logger = logging.getLogger(__name__)

UPLOADS_ROUTE = "uploads"


class StorageError(PersistenceError):
    """Raised when a photo cannot be written to disk."""
    pass


def generate_filename(original_filename: Optional[str]) -> str:
    """
    Build a collision-resistant name keeping the original extension.

    Format: <epoch-milliseconds>-<random integer>.<ext>
    Example: 1718000000000-482913775.jpg
    """
    ext = os.path.splitext(original_filename or "")[1].lower()
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"


class UploadStorage:
    def __init__(self, directory: str):
        self.directory = Path(directory)

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, filename: str) -> Path:
        return self.directory / filename

    def save(self, upload: UploadFile) -> str:
        """
        Write an uploaded file to disk.

        Returns:
            The generated filename (relative to the upload directory)

        Raises:
            StorageError: If the file cannot be written
        """
        self.ensure_directory()
        filename = generate_filename(upload.filename)
        try:
            with open(self.path_for(filename), "wb") as out:
                shutil.copyfileobj(upload.file, out)
        except OSError as e:
            logger.error(f"Failed to store upload {upload.filename}: {e}")
            raise StorageError(f"Upload failed: {e}") from e
        logger.info(f"Stored upload {upload.filename} as {filename}")
        return filename

    def discard(self, filename: str) -> bool:
        try:
            self.path_for(filename).unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Error deleting upload {filename}: {e}")
            return False
        logger.info(f"Discarded upload {filename}")
        return True


def has_file(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(upload.filename)
