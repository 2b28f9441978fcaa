"""Tests for destination path resolution and the storage layout."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from alexandria.core.exceptions import InvalidConfigurationError, PathEscapeError
from alexandria.db.models import ThumbnailSize
from alexandria.services.storage import StorageService, resolve_model_path
from alexandria.utils.templates import parse_path_template


# =============================================================================
# resolve_model_path
# =============================================================================


class TestResolveModelPath:
    """Tests for resolve_model_path."""

    def test_resolves_metadata_template(self, tmp_path):
        result = resolve_model_path(
            "Main",
            "Dragon Bust",
            {"artist": "Jane"},
            "{library}/{metadata.artist}/{model}",
            tmp_path,
        )
        assert result == tmp_path / "Main" / "Jane" / "Dragon_Bust"

    def test_accepts_parsed_template(self, tmp_path):
        template = parse_path_template("{library}/{model}")
        result = resolve_model_path("Main", "Orc", {}, template, tmp_path)
        assert result == tmp_path / "Main" / "Orc"

    def test_literal_parts_are_kept(self, tmp_path):
        result = resolve_model_path(
            "Main",
            "Orc",
            {"artist": "Jane"},
            "{library}/by-{metadata.artist}/{model}",
            tmp_path,
        )
        assert result == tmp_path / "Main" / "by-Jane" / "Orc"

    def test_missing_metadata_uses_unknown(self, tmp_path):
        result = resolve_model_path(
            "Main", "Orc", {}, "{library}/{metadata.artist}/{model}", tmp_path
        )
        assert result == tmp_path / "Main" / "_unknown" / "Orc"

    def test_blank_metadata_uses_unknown(self, tmp_path):
        result = resolve_model_path(
            "Main", "Orc", {"artist": "   "}, "{library}/{metadata.artist}/{model}", tmp_path
        )
        assert result == tmp_path / "Main" / "_unknown" / "Orc"

    def test_traversal_in_metadata_stays_inside_root(self, tmp_path):
        root = tmp_path / "data"
        result = resolve_model_path(
            "Main",
            "Orc",
            {"artist": "../../etc"},
            "{library}/{metadata.artist}/{model}",
            root,
        )
        assert str(result).startswith(str(root) + os.sep)
        assert len(result.relative_to(root).parts) == 3

    def test_traversal_in_model_name_stays_inside_root(self, tmp_path):
        result = resolve_model_path("Main", "..", {}, "{library}/{model}", tmp_path)
        assert result == tmp_path / "Main" / "_unknown"

    def test_relative_root_is_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = resolve_model_path("Main", "Orc", {}, "{library}/{model}", "library")
        assert result.is_absolute()
        assert result == tmp_path / "library" / "Main" / "Orc"

    def test_invalid_template_raises(self, tmp_path):
        with pytest.raises(InvalidConfigurationError):
            resolve_model_path("Main", "Orc", {}, "{library}/{bogus}", tmp_path)


# =============================================================================
# StorageService
# =============================================================================


class TestStorageService:
    """Tests for StorageService."""

    def test_default_model_path(self, tmp_path):
        storage = StorageService(tmp_path)
        assert storage.default_model_path("abc") == tmp_path / "models" / "abc"

    def test_thumbnail_path(self, tmp_path):
        storage = StorageService(tmp_path)
        path = storage.thumbnail_path("model-1", "file-1", ThumbnailSize.GRID)
        assert path == tmp_path / "thumbnails" / "model-1" / "file-1_grid.webp"

    def test_custom_thumbnails_path(self, tmp_path):
        storage = StorageService(tmp_path / "storage", tmp_path / "thumbs")
        assert storage.thumbnail_dir("m") == tmp_path / "thumbs" / "m"

    def test_file_destination_keeps_relative_structure(self, tmp_path):
        storage = StorageService(tmp_path)
        target = storage.file_destination(tmp_path / "dest", "parts/arm.stl")
        assert target == tmp_path / "dest" / "parts" / "arm.stl"

    def test_file_destination_rejects_escape(self, tmp_path):
        storage = StorageService(tmp_path)
        with pytest.raises(PathEscapeError):
            storage.file_destination(tmp_path / "dest", "../outside.stl")

    def test_file_destination_rejects_destination_itself(self, tmp_path):
        storage = StorageService(tmp_path)
        with pytest.raises(PathEscapeError):
            storage.file_destination(tmp_path / "dest", ".")

    def test_paths_are_path_objects(self, tmp_path):
        storage = StorageService(str(tmp_path))
        assert isinstance(storage.storage_path, Path)
