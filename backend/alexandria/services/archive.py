"""Archive processing: extract, filter, classify and hash model files.

The processor never touches the database. It turns an archive (or, for
folder imports, an existing directory) into a :class:`Manifest` that the
ingestion orchestrator consumes once.
"""

from __future__ import annotations

import asyncio
import lzma
import os
import shutil
import tarfile
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import py7zr
import rarfile

from alexandria.core.exceptions import ArchiveIOError, CorruptArchiveError
from alexandria.core.logging import get_logger
from alexandria.db.models import FileType
from alexandria.utils.file_hash import compute_hash_and_size_sync

logger = get_logger(__name__)

# Checked longest-first so ".tar.gz" wins over a bare suffix match
ARCHIVE_EXTENSIONS = (".tar.gz", ".tgz", ".tar", ".zip", ".rar", ".7z")

# Directory names written by archive tools that never hold model content
RESERVED_DIRECTORIES = frozenset({"__MACOSX"})

# Extension -> (file type, MIME type)
FILE_TYPES: dict[str, tuple[FileType, str]] = {
    ".stl": (FileType.STL, "model/stl"),
    ".jpg": (FileType.IMAGE, "image/jpeg"),
    ".jpeg": (FileType.IMAGE, "image/jpeg"),
    ".png": (FileType.IMAGE, "image/png"),
    ".webp": (FileType.IMAGE, "image/webp"),
    ".tif": (FileType.IMAGE, "image/tiff"),
    ".tiff": (FileType.IMAGE, "image/tiff"),
    ".pdf": (FileType.DOCUMENT, "application/pdf"),
    ".txt": (FileType.DOCUMENT, "text/plain"),
    ".md": (FileType.DOCUMENT, "text/markdown"),
}
DEFAULT_MIME_TYPE = "application/octet-stream"

# Errors raised while reading a malformed container
_CORRUPT_ERRORS: tuple[type[BaseException], ...] = (
    zipfile.BadZipFile,
    zlib.error,
    lzma.LZMAError,
    EOFError,
    tarfile.TarError,
    rarfile.Error,
    py7zr.exceptions.ArchiveError,
    NotImplementedError,
)


@dataclass
class ManifestEntry:
    """One surviving, classified file."""

    absolute_path: Path
    relative_path: str
    filename: str
    file_type: FileType
    mime_type: str
    size_bytes: int
    hash: str


@dataclass
class Manifest:
    """Surviving files of one archive or directory."""

    entries: list[ManifestEntry] = field(default_factory=list)

    @property
    def total_size_bytes(self) -> int:
        return sum(entry.size_bytes for entry in self.entries)

    @property
    def file_count(self) -> int:
        return len(self.entries)


def classify_file(filename: str) -> tuple[FileType, str]:
    """Classify a filename by extension, case-insensitively."""
    ext = os.path.splitext(filename)[1].lower()
    return FILE_TYPES.get(ext, (FileType.OTHER, DEFAULT_MIME_TYPE))


def is_hidden_path(relative_path: str) -> bool:
    """True if any segment is hidden (``.name``) or a reserved tool directory."""
    for part in PurePosixPath(relative_path.replace("\\", "/")).parts:
        if part.startswith(".") or part in RESERVED_DIRECTORIES:
            return True
    return False


def detect_archive_extension(filename: str) -> str | None:
    """Return the archive extension of a filename, longest match first."""
    lowered = filename.lower()
    for ext in ARCHIVE_EXTENSIONS:
        if lowered.endswith(ext):
            return ext
    return None


def strip_archive_extension(filename: str) -> str:
    """Derive a model name from an uploaded archive filename.

    ``Dragon Bust.tar.gz`` gives ``Dragon Bust``; unknown extensions are kept.
    """
    ext = detect_archive_extension(filename)
    if ext is None:
        return filename
    return filename[: -len(ext)] or filename


def _safe_target(extract_dir: Path, member_name: str) -> Path | None:
    """Target path for an archive member, or None if it would escape."""
    name = member_name.replace("\\", "/")
    if name.startswith("/") or PurePosixPath(name).is_absolute():
        return None
    root = os.path.abspath(extract_dir)
    target = os.path.abspath(os.path.join(root, name))
    if not target.startswith(root + os.sep):
        return None
    return Path(target)


def _write_member(src, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "wb") as dst:
        shutil.copyfileobj(src, dst)


class ArchiveProcessor:
    """Extracts archives into scratch directories and builds manifests."""

    async def process_archive(
        self,
        archive_path: Path,
        extract_dir: Path,
        *,
        archive_name: str | None = None,
    ) -> Manifest:
        """Extract an archive and describe its surviving files.

        Args:
            archive_path: Path to the archive on disk.
            extract_dir: Scratch directory to extract into.
            archive_name: Original filename, used to pick the container
                format when the on-disk name has no archive extension.

        Raises:
            CorruptArchiveError: The container cannot be opened or read.
            ArchiveIOError: Writing extracted files failed.
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, self._extract_sync, Path(archive_path), Path(extract_dir), archive_name
        )
        manifest = await loop.run_in_executor(None, self._build_manifest_sync, Path(extract_dir))

        logger.info(
            "archive_processed",
            archive=str(archive_path),
            file_count=manifest.file_count,
            total_size_bytes=manifest.total_size_bytes,
        )
        return manifest

    async def scan_directory(self, directory: Path) -> Manifest:
        """Build a manifest for files already on disk, applying the same filters."""
        directory = Path(directory)
        if not directory.is_dir():
            raise ArchiveIOError(f"Directory not found: {directory}")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._build_manifest_sync, directory)

    def _extract_sync(
        self, archive_path: Path, extract_dir: Path, archive_name: str | None
    ) -> None:
        if not archive_path.is_file():
            raise CorruptArchiveError(f"Archive not found: {archive_path}")

        fmt = detect_archive_extension(archive_name or archive_path.name)
        if fmt is None:
            fmt = self._sniff_format(archive_path)
        if fmt is None:
            raise CorruptArchiveError(
                f"Unsupported archive format: {archive_name or archive_path.name}"
            )

        try:
            extract_dir.mkdir(parents=True, exist_ok=True)
            if fmt == ".zip":
                self._extract_zip(archive_path, extract_dir)
            elif fmt in (".tar.gz", ".tgz", ".tar"):
                self._extract_tar(archive_path, extract_dir)
            elif fmt == ".rar":
                self._extract_rar(archive_path, extract_dir)
            else:
                self._extract_7z(archive_path, extract_dir)
        except (CorruptArchiveError, ArchiveIOError):
            raise
        except _CORRUPT_ERRORS as e:
            raise CorruptArchiveError(f"Failed to read {archive_path.name}: {e}") from e
        except OSError as e:
            raise ArchiveIOError(f"Failed to extract {archive_path.name}: {e}") from e

    def _sniff_format(self, archive_path: Path) -> str | None:
        if zipfile.is_zipfile(archive_path):
            return ".zip"
        if rarfile.is_rarfile(str(archive_path)):
            return ".rar"
        if py7zr.is_7zfile(archive_path):
            return ".7z"
        if tarfile.is_tarfile(archive_path):
            return ".tar"
        return None

    def _extract_zip(self, archive_path: Path, extract_dir: Path) -> None:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for info in zf.infolist():
                if info.flag_bits & 0x1:
                    raise CorruptArchiveError(
                        f"Archive is password protected: {archive_path.name}"
                    )

            for info in zf.infolist():
                if info.is_dir():
                    continue
                # Symlink entries carry S_IFLNK in the high bits of external_attr
                if (info.external_attr >> 16) & 0o170000 == 0o120000:
                    continue
                target = _safe_target(extract_dir, info.filename)
                if target is None:
                    logger.warning("archive_entry_skipped", entry=info.filename, reason="unsafe_path")
                    continue
                with zf.open(info) as src:
                    _write_member(src, target)

    def _extract_tar(self, archive_path: Path, extract_dir: Path) -> None:
        with tarfile.open(archive_path, "r:*") as tf:
            for member in tf.getmembers():
                if not member.isfile():
                    continue
                target = _safe_target(extract_dir, member.name)
                if target is None:
                    logger.warning("archive_entry_skipped", entry=member.name, reason="unsafe_path")
                    continue
                src = tf.extractfile(member)
                if src is None:
                    continue
                with src:
                    _write_member(src, target)

    def _extract_rar(self, archive_path: Path, extract_dir: Path) -> None:
        with rarfile.RarFile(str(archive_path), "r") as rf:
            if rf.needs_password():
                raise CorruptArchiveError(f"Archive is password protected: {archive_path.name}")

            for info in rf.infolist():
                if info.is_dir() or info.is_symlink():
                    continue
                target = _safe_target(extract_dir, info.filename)
                if target is None:
                    logger.warning("archive_entry_skipped", entry=info.filename, reason="unsafe_path")
                    continue
                with rf.open(info) as src:
                    _write_member(src, target)

    def _extract_7z(self, archive_path: Path, extract_dir: Path) -> None:
        with py7zr.SevenZipFile(archive_path, "r") as sz:
            if sz.needs_password():
                raise CorruptArchiveError(f"Archive is password protected: {archive_path.name}")

            safe_names = []
            for name in sz.getnames():
                if _safe_target(extract_dir, name) is None:
                    logger.warning("archive_entry_skipped", entry=name, reason="unsafe_path")
                    continue
                safe_names.append(name)

            if safe_names:
                sz.extract(path=extract_dir, targets=safe_names)

    def _build_manifest_sync(self, root: Path) -> Manifest:
        manifest = Manifest()

        for dirpath, dirnames, filenames in os.walk(root):
            # Prune hidden and reserved directories early
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in RESERVED_DIRECTORIES
            )
            for filename in sorted(filenames):
                absolute = Path(dirpath) / filename
                relative = absolute.relative_to(root).as_posix()

                if is_hidden_path(relative):
                    continue
                if absolute.is_symlink() or not absolute.is_file():
                    continue

                try:
                    file_hash, size_bytes = compute_hash_and_size_sync(absolute)
                except OSError as e:
                    raise ArchiveIOError(f"Failed to read {relative}: {e}") from e

                file_type, mime_type = classify_file(filename)
                manifest.entries.append(
                    ManifestEntry(
                        absolute_path=absolute,
                        relative_path=relative,
                        filename=filename,
                        file_type=file_type,
                        mime_type=mime_type,
                        size_bytes=size_bytes,
                        hash=file_hash,
                    )
                )

        return manifest
