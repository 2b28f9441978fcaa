"""Stream-based SHA-256 hashing for archives and model files."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path

# Large STL files are common; keep reads bounded.
DEFAULT_CHUNK_SIZE = 64 * 1024


def compute_file_hash_sync(
    file_path: Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file synchronously (stream-based).

    Raises:
        FileNotFoundError: If the file doesn't exist.
        PermissionError: If the file can't be read.
    """
    return compute_hash_and_size_sync(file_path, chunk_size)[0]


def compute_hash_and_size_sync(
    file_path: Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> tuple[str, int]:
    """Hash a file and count its bytes in a single streaming pass.

    Returns:
        ``(hex digest, size in bytes)``; the digest is 64 lowercase hex chars.
    """
    sha256 = hashlib.sha256()
    size = 0
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha256.update(chunk)
            size += len(chunk)
    return sha256.hexdigest(), size


async def compute_file_hash(
    file_path: Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file without blocking the event loop.

    Args:
        file_path: Path to the file to hash.
        chunk_size: Size of chunks to read at a time.

    Returns:
        64-character lowercase hex string of the SHA-256 hash.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        compute_file_hash_sync,
        file_path,
        chunk_size,
    )
