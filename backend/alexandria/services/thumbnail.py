"""Thumbnail rendering for image model files."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import aiofiles
from PIL import Image, ImageOps, UnidentifiedImageError

from alexandria.core.exceptions import ThumbnailError
from alexandria.core.logging import get_logger
from alexandria.db.models import ThumbnailSize
from alexandria.services.storage import StorageService

logger = get_logger(__name__)

THUMBNAIL_FORMAT = "webp"


@dataclass
class ThumbnailRecord:
    """A rendered thumbnail, ready to be persisted."""

    source_file_id: str
    size_key: ThumbnailSize
    storage_path: Path
    width: int
    height: int
    format: str = THUMBNAIL_FORMAT


class ThumbnailGenerator:
    """Renders grid and detail webp previews of a source image."""

    def __init__(
        self,
        storage: StorageService,
        *,
        grid_size: int = 400,
        detail_size: int = 800,
        quality: int = 80,
    ):
        self.storage = storage
        self.quality = quality
        self.sizes: dict[ThumbnailSize, int] = {
            ThumbnailSize.GRID: grid_size,
            ThumbnailSize.DETAIL: detail_size,
        }

    async def generate_thumbnails(
        self,
        source_image_path: Path,
        model_id: str,
        source_file_id: str,
    ) -> list[ThumbnailRecord]:
        """Render both renditions of an image.

        Each rendition fits inside its square bounding box with the aspect
        ratio preserved and is written under the model's thumbnail directory.

        Raises:
            ThumbnailError: If the source cannot be decoded as a raster image.
        """
        loop = asyncio.get_running_loop()
        rendered = await loop.run_in_executor(None, self._render_sync, Path(source_image_path))

        records: list[ThumbnailRecord] = []
        for size_key, (data, width, height) in rendered.items():
            path = self.storage.thumbnail_path(model_id, source_file_id, size_key)
            await self._save_file(path, data)
            records.append(
                ThumbnailRecord(
                    source_file_id=source_file_id,
                    size_key=size_key,
                    storage_path=path,
                    width=width,
                    height=height,
                )
            )

        logger.debug(
            "thumbnails_generated",
            model_id=model_id,
            source_file_id=source_file_id,
            count=len(records),
        )
        return records

    async def remove_model_thumbnails(self, model_id: str) -> None:
        """Delete every rendition stored for a model."""
        thumb_dir = self.storage.thumbnail_dir(model_id)

        def _do_delete() -> None:
            shutil.rmtree(thumb_dir, ignore_errors=True)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _do_delete)

    def _render_sync(self, source: Path) -> dict[ThumbnailSize, tuple[bytes, int, int]]:
        try:
            with Image.open(source) as img:
                img.load()
                image = ImageOps.exif_transpose(img)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ThumbnailError(f"Cannot decode image {source.name}: {e}") from e

        has_alpha = image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info
        image = image.convert("RGBA" if has_alpha else "RGB")

        rendered: dict[ThumbnailSize, tuple[bytes, int, int]] = {}
        for size_key, box in self.sizes.items():
            resized = ImageOps.contain(image, (box, box), method=Image.Resampling.LANCZOS)
            buffer = BytesIO()
            resized.save(buffer, format="WEBP", quality=self.quality)
            rendered[size_key] = (buffer.getvalue(), resized.width, resized.height)

        return rendered

    async def _save_file(self, path: Path, data: bytes) -> None:
        """Save data to a file, creating directories as needed."""

        def _do_mkdir() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _do_mkdir)

        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
