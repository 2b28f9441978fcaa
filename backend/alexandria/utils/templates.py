"""Parsers for library path templates and folder-import hierarchy patterns.

Both grammars are sequences of ``/``-separated segments built from ``{token}``
placeholders:

- Library path templates (``{library}/{metadata.artist}/{model}``) may mix
  literal text with ``{library}``, ``{model}`` and ``{metadata.<slug>}``.
- Folder-import patterns (``{Collection}/{metadata.artist}/{model}``) map each
  directory level to exactly one token, case-insensitively, and must end with
  ``{model}``.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass

from alexandria.core.exceptions import InvalidConfigurationError

# Characters never allowed inside a single path segment
RESERVED_CHARS = re.compile(r'[/\\\x00-\x1f<>:"|?*]')
UNDERSCORE_RUNS = re.compile(r"[_\s]+")
MAX_SEGMENT_LENGTH = 200
UNKNOWN_SEGMENT = "_unknown"

METADATA_PREFIX = "metadata."
# Slugs accepted when a template is read back at ingestion time
METADATA_SLUG = re.compile(r"^[A-Za-z0-9_-]+$")
# Slugs accepted when an administrator configures a library
STRICT_METADATA_SLUG = re.compile(r"^[a-z0-9-]+$")


class TokenKind(str, enum.Enum):
    """Kinds of template parts."""

    LITERAL = "literal"
    LIBRARY = "library"
    MODEL = "model"
    METADATA = "metadata"
    COLLECTION = "collection"


@dataclass(frozen=True)
class TemplatePart:
    """One literal run or placeholder inside a template segment."""

    kind: TokenKind
    value: str | None = None  # literal text, or the metadata slug

    @property
    def is_token(self) -> bool:
        return self.kind is not TokenKind.LITERAL


@dataclass(frozen=True)
class PathTemplate:
    """A parsed library path template."""

    source: str
    segments: tuple[tuple[TemplatePart, ...], ...]

    @property
    def tokens(self) -> list[TemplatePart]:
        """Placeholders in order of appearance."""
        return [part for segment in self.segments for part in segment if part.is_token]

    @property
    def metadata_slugs(self) -> list[str]:
        return [t.value for t in self.tokens if t.kind is TokenKind.METADATA and t.value]


@dataclass(frozen=True)
class PatternSegment:
    """One directory level of a folder-import hierarchy pattern."""

    kind: TokenKind
    metadata_slug: str | None = None


def sanitize_path_segment(value: str) -> str:
    """Make an arbitrary string safe to use as a single directory name.

    Separators, null bytes, control and reserved characters, and whitespace
    become underscores; runs of underscores collapse; leading and trailing
    underscores are trimmed. An empty or dots-only result becomes ``_unknown``.
    """
    sanitized = RESERVED_CHARS.sub("_", value.strip())
    sanitized = UNDERSCORE_RUNS.sub("_", sanitized)
    sanitized = sanitized.strip("_")

    if len(sanitized) > MAX_SEGMENT_LENGTH:
        sanitized = sanitized[:MAX_SEGMENT_LENGTH].rstrip("_")

    # "." and ".." would alias the parent directory once joined
    if not sanitized or sanitized.strip(".") == "":
        return UNKNOWN_SEGMENT
    return sanitized


def _parse_token(name: str, field: str) -> TemplatePart:
    if name == "library":
        return TemplatePart(TokenKind.LIBRARY)
    if name == "model":
        return TemplatePart(TokenKind.MODEL)
    if name.startswith(METADATA_PREFIX):
        slug = name[len(METADATA_PREFIX):]
        if METADATA_SLUG.match(slug):
            return TemplatePart(TokenKind.METADATA, slug)
    raise InvalidConfigurationError(f"Unknown template token: {{{name}}}", field)


def _tokenize_segment(segment: str, field: str) -> tuple[TemplatePart, ...]:
    parts: list[TemplatePart] = []
    literal: list[str] = []
    i = 0

    while i < len(segment):
        ch = segment[i]
        if ch == "{":
            end = segment.find("}", i + 1)
            if end == -1:
                raise InvalidConfigurationError(
                    f"Unclosed '{{' in template segment {segment!r}", field
                )
            if literal:
                parts.append(TemplatePart(TokenKind.LITERAL, "".join(literal)))
                literal = []
            parts.append(_parse_token(segment[i + 1:end], field))
            i = end + 1
        elif ch == "}":
            raise InvalidConfigurationError(
                f"Unmatched '}}' in template segment {segment!r}", field
            )
        else:
            literal.append(ch)
            i += 1

    if literal:
        parts.append(TemplatePart(TokenKind.LITERAL, "".join(literal)))

    if len(parts) == 1 and parts[0].kind is TokenKind.LITERAL and parts[0].value in (".", ".."):
        raise InvalidConfigurationError(
            f"Relative segment {segment!r} is not allowed in a path template", field
        )

    return tuple(parts)


def parse_path_template(template: str) -> PathTemplate:
    """Parse a path template into segments of literal and placeholder parts.

    Raises:
        InvalidConfigurationError: On unknown tokens, unbalanced braces or
            relative segments.
    """
    raw_segments = [s for s in template.strip().split("/") if s]
    if not raw_segments:
        raise InvalidConfigurationError("Path template cannot be empty", "path_template")

    segments = tuple(_tokenize_segment(s, "path_template") for s in raw_segments)
    return PathTemplate(source=template, segments=segments)


def validate_path_template(template: str) -> PathTemplate:
    """Validate a library path template at configuration time.

    The template must contain at least one token, start with ``{library}``,
    end with ``{model}``, and every token in between must be
    ``{metadata.<slug>}`` with a lowercase alphanumeric/hyphen slug.
    """
    parsed = parse_path_template(template)
    tokens = parsed.tokens

    if not tokens:
        raise InvalidConfigurationError(
            "Path template must contain at least one token", "path_template"
        )
    if tokens[0].kind is not TokenKind.LIBRARY:
        raise InvalidConfigurationError(
            "Path template must start with {library}", "path_template"
        )
    if tokens[-1].kind is not TokenKind.MODEL or len(tokens) < 2:
        raise InvalidConfigurationError(
            "Path template must end with {model}", "path_template"
        )

    for token in tokens[1:-1]:
        if token.kind is not TokenKind.METADATA or not STRICT_METADATA_SLUG.match(token.value or ""):
            raise InvalidConfigurationError(
                "Intermediate path template tokens must be {metadata.<slug>} "
                "with a lowercase alphanumeric or hyphen slug",
                "path_template",
            )

    return parsed


def parse_import_pattern(pattern: str) -> tuple[PatternSegment, ...]:
    """Parse a folder-import hierarchy pattern.

    Valid segments (case-insensitive): ``{model}`` (must be last),
    ``{Collection}``, ``{metadata.<slug>}``.

    Example: ``{Collection}/{metadata.artist}/{model}`` gives
    ``(COLLECTION, METADATA('artist'), MODEL)``.
    """
    raw_segments = [s for s in pattern.strip().split("/") if s]
    if not raw_segments:
        raise InvalidConfigurationError("Pattern cannot be empty", "pattern")

    if raw_segments[-1].lower() != "{model}":
        raise InvalidConfigurationError("Pattern must end with {model}", "pattern")

    parsed: list[PatternSegment] = []
    for index, segment in enumerate(raw_segments):
        lowered = segment.lower()
        is_last = index == len(raw_segments) - 1

        if lowered == "{model}":
            if not is_last:
                raise InvalidConfigurationError(
                    "{model} must be the last segment in the pattern", "pattern"
                )
            parsed.append(PatternSegment(TokenKind.MODEL))
        elif lowered == "{collection}":
            parsed.append(PatternSegment(TokenKind.COLLECTION))
        elif lowered.startswith("{" + METADATA_PREFIX) and segment.endswith("}"):
            slug = segment[len(METADATA_PREFIX) + 1:-1]
            if not METADATA_SLUG.match(slug):
                raise InvalidConfigurationError(
                    f"Invalid metadata slug in pattern segment {segment!r}", "pattern"
                )
            parsed.append(PatternSegment(TokenKind.METADATA, slug))
        else:
            raise InvalidConfigurationError(
                f"Invalid pattern segment: {segment!r}. "
                "Must be {model}, {Collection}, or {metadata.<slug>}",
                "pattern",
            )

    return tuple(parsed)
