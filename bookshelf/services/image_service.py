"""
Cover image cleanup for permanently deleted books.
"""

import logging
from pathlib import Path
from typing import List

from ..domain.models import BookImage
from ..domain.repositories import ImageDeleter

logger = logging.getLogger(__name__)


def get_covers_dir(data_dir: str) -> Path:
    """Return the covers directory under ``data_dir``, creating it if needed."""
    covers_dir = Path(data_dir) / 'covers'
    covers_dir.mkdir(parents=True, exist_ok=True)
    return covers_dir


class LocalImageService(ImageDeleter):
    """Deletes image files stored under the covers directory."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir

    def _resolve(self, storage_path: str) -> Path:
        covers_dir = get_covers_dir(self.data_dir).resolve()
        relative = storage_path.lstrip('/')
        if relative.startswith('covers/'):
            relative = relative[len('covers/'):]
        candidate = (covers_dir / relative).resolve()
        if covers_dir not in candidate.parents:
            raise ValueError(f"Image path escapes covers directory: {storage_path}")
        return candidate

    async def delete_images(self, images: List[BookImage]) -> List[str]:
        """Delete every image file. A file that is already gone is not an error.

        Returns:
            One message per image that could not be deleted.
        """
        errors: List[str] = []
        for image in images or []:
            if not image.storage_path:
                continue
            try:
                path = self._resolve(image.storage_path)
                path.unlink(missing_ok=True)
            except (OSError, ValueError) as e:
                message = f"Failed to delete image {image.storage_path}: {e}"
                logger.error(message)
                errors.append(message)
        return errors
