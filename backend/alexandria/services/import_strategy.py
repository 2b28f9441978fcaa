"""Placement of one resolved file at its final storage path.

Three strategies share a single ``place`` entry point:

- ``hardlink``: share the source's inode; falls back to a byte copy across devices.
- ``copy``: an independent byte copy; the source is untouched.
- ``move``: an atomic rename; falls back to copy-then-delete across devices.
"""

from __future__ import annotations

import asyncio
import enum
import errno
import os
import shutil
from pathlib import Path

from alexandria.core.exceptions import InvalidConfigurationError
from alexandria.core.logging import get_logger

logger = get_logger(__name__)


class ImportStrategy(str, enum.Enum):
    """Placement semantics, selected by name in configuration and job payloads."""

    HARDLINK = "hardlink"
    COPY = "copy"
    MOVE = "move"


def parse_import_strategy(name: str | ImportStrategy) -> ImportStrategy:
    """Select a strategy by name.

    Raises:
        InvalidConfigurationError: If the name is not a known strategy.
    """
    if isinstance(name, ImportStrategy):
        return name
    try:
        return ImportStrategy(name)
    except ValueError:
        raise InvalidConfigurationError(
            f"Unknown import strategy: {name!r} (expected hardlink, copy or move)",
            "strategy",
        ) from None


def _copy_file(source: Path, target: Path) -> None:
    # Write to a sibling temp name so a crash never leaves a truncated target
    partial = target.with_name(f".{target.name}.partial")
    with open(source, "rb") as src, open(partial, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.replace(partial, target)


def _hardlink(source: Path, target: Path) -> None:
    if target.exists() or target.is_symlink():
        if os.path.samefile(source, target):
            return
        target.unlink()
    try:
        os.link(source, target)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        logger.warning(
            "hardlink_cross_device_fallback",
            source=str(source),
            target=str(target),
        )
        _copy_file(source, target)


def _move(source: Path, target: Path) -> None:
    try:
        os.replace(source, target)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        logger.debug("move_cross_device_fallback", source=str(source), target=str(target))
        _copy_file(source, target)
        source.unlink()


def place_sync(strategy: ImportStrategy, source: Path, target: Path) -> None:
    """Place ``source`` at ``target`` with the given strategy (blocking)."""
    source = Path(source)
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)

    if strategy is ImportStrategy.HARDLINK:
        _hardlink(source, target)
    elif strategy is ImportStrategy.COPY:
        _copy_file(source, target)
    elif strategy is ImportStrategy.MOVE:
        _move(source, target)
    else:
        raise InvalidConfigurationError(f"Unknown import strategy: {strategy!r}", "strategy")


async def place(strategy: ImportStrategy, source: Path, target: Path) -> None:
    """Place a file without blocking the event loop.

    OS errors other than a cross-device failure propagate unchanged.
    """
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, place_sync, strategy, source, target)

    logger.debug(
        "file_placed",
        strategy=strategy.value,
        source=str(source),
        target=str(target),
    )
