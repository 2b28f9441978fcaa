"""Utility functions for Alexandria."""

from alexandria.utils.file_hash import (
    compute_file_hash,
    compute_file_hash_sync,
    compute_hash_and_size_sync,
)
from alexandria.utils.slug import generate_slug, slugify
from alexandria.utils.templates import (
    PathTemplate,
    PatternSegment,
    TokenKind,
    parse_import_pattern,
    parse_path_template,
    sanitize_path_segment,
    validate_path_template,
)

__all__ = [
    "PathTemplate",
    "PatternSegment",
    "TokenKind",
    "compute_file_hash",
    "compute_file_hash_sync",
    "compute_hash_and_size_sync",
    "generate_slug",
    "parse_import_pattern",
    "parse_path_template",
    "sanitize_path_segment",
    "slugify",
    "validate_path_template",
]
