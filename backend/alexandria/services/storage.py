"""Storage layout: where placed model files and thumbnails live on disk.

Library placements are resolved from the library's path template. Models
without a library fall back to ``<storage_path>/models/<model_id>``, and
thumbnails always live under ``<storage_path>/thumbnails/<model_id>``.
"""

from __future__ import annotations

import os
from pathlib import Path

from alexandria.core.exceptions import PathEscapeError
from alexandria.core.logging import get_logger
from alexandria.db.models import ThumbnailSize
from alexandria.utils.templates import (
    UNKNOWN_SEGMENT,
    PathTemplate,
    TokenKind,
    parse_path_template,
    sanitize_path_segment,
)

logger = get_logger(__name__)


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def resolve_model_path(
    library_name: str,
    model_name: str,
    metadata_values: dict[str, str],
    path_template: str | PathTemplate,
    root_path: str | Path,
) -> Path:
    """Compute the absolute destination directory for a model in a library.

    Every token value is sanitized into a single path segment before it is
    substituted. A ``{metadata.<slug>}`` token with no value becomes
    ``_unknown`` and a warning is logged.

    Raises:
        PathEscapeError: If the resolved path is not inside ``root_path``.
        InvalidConfigurationError: If the template cannot be parsed.
    """
    template = (
        path_template
        if isinstance(path_template, PathTemplate)
        else parse_path_template(path_template)
    )

    segments: list[str] = []
    for segment in template.segments:
        rendered: list[str] = []
        for part in segment:
            if part.kind is TokenKind.LITERAL:
                rendered.append(part.value or "")
            elif part.kind is TokenKind.LIBRARY:
                rendered.append(sanitize_path_segment(library_name))
            elif part.kind is TokenKind.MODEL:
                rendered.append(sanitize_path_segment(model_name))
            elif part.kind is TokenKind.METADATA:
                value = metadata_values.get(part.value or "")
                if value is None or not str(value).strip():
                    logger.warning(
                        "metadata_value_missing",
                        slug=part.value,
                        model_name=model_name,
                        template=template.source,
                    )
                    rendered.append(UNKNOWN_SEGMENT)
                else:
                    rendered.append(sanitize_path_segment(str(value)))
        segments.append("".join(rendered))

    root = os.path.abspath(os.fspath(root_path))
    resolved = os.path.abspath(os.path.join(root, *segments))

    if not _is_within(resolved, root):
        raise PathEscapeError(
            f"Resolved path {resolved!r} escapes library root {root!r}"
        )

    return Path(resolved)


class StorageService:
    """Managed-storage layout for models without a library and for thumbnails."""

    def __init__(self, storage_path: Path, thumbnails_path: Path | None = None):
        self.storage_path = Path(storage_path)
        self.thumbnails_path = Path(thumbnails_path or self.storage_path / "thumbnails")

    def default_model_path(self, model_id: str) -> Path:
        """Destination directory for a model with no assigned library."""
        return self.storage_path / "models" / model_id

    def thumbnail_dir(self, model_id: str) -> Path:
        return self.thumbnails_path / model_id

    def thumbnail_path(
        self, model_id: str, source_file_id: str, size: ThumbnailSize
    ) -> Path:
        return self.thumbnail_dir(model_id) / f"{source_file_id}_{size.value}.webp"

    def file_destination(self, destination: Path, relative_path: str) -> Path:
        """Final path of a manifest entry under a model destination.

        Raises:
            PathEscapeError: If the relative path climbs out of the destination.
        """
        base = os.path.abspath(destination)
        target = os.path.abspath(os.path.join(base, relative_path))
        if not _is_within(target, base) or target == base:
            raise PathEscapeError(
                f"File path {relative_path!r} escapes model directory {base!r}"
            )
        return Path(target)
