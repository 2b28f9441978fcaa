"""Pytest configuration and fixtures."""

import io
import os
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path

import pytest
from PIL import Image

# Create a temporary directory for test paths
_test_tmp_dir = tempfile.mkdtemp(prefix="alexandria_test_")

# Set config paths BEFORE importing app modules
os.environ["ALEXANDRIA_CONFIG_PATH"] = str(Path(_test_tmp_dir) / "config")
os.environ["ALEXANDRIA_STORAGE_PATH"] = str(Path(_test_tmp_dir) / "storage")
os.environ["ALEXANDRIA_TEMP_PATH"] = str(Path(_test_tmp_dir) / "tmp")

from alexandria.core.config import Settings
from alexandria.db.base import Base
from alexandria.db.session import create_engine, create_session_maker
from alexandria.services.pipeline import build_pipeline


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine, so every short-lived session sees the same data."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return create_session_maker(db_engine)


# =============================================================================
# Pipeline
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings rooted in the test's temporary directory."""
    config = Settings(
        config_path=tmp_path / "config",
        storage_path=tmp_path / "storage",
        temp_path=tmp_path / "tmp",
        job_backoff_base_seconds=0.01,
        job_backoff_max_seconds=0.05,
        thumbnail_grid_size=64,
        thumbnail_detail_size=128,
    )
    for path in (config.config_path, config.storage_path, config.temp_path):
        path.mkdir(parents=True, exist_ok=True)
    return config


@pytest.fixture
def pipeline(settings, session_maker):
    return build_pipeline(settings, session_maker)


# =============================================================================
# Archive and image builders
# =============================================================================


def png_bytes(size: tuple[int, int] = (300, 150), color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def make_zip(tmp_path):
    """Build a zip archive from a ``{member_name: bytes}`` mapping."""

    def _make(members: dict[str, bytes], name: str = "upload.zip") -> Path:
        path = tmp_path / "uploads" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w") as zf:
            for member, data in members.items():
                zf.writestr(member, data)
        return path

    return _make


@pytest.fixture
def make_tar(tmp_path):
    """Build a gzipped tarball from a ``{member_name: bytes}`` mapping."""

    def _make(members: dict[str, bytes], name: str = "upload.tar.gz") -> Path:
        path = tmp_path / "uploads" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, "w:gz") as tf:
            for member, data in members.items():
                info = tarfile.TarInfo(member)
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))
        return path

    return _make


@pytest.fixture
def sample_png() -> bytes:
    return png_bytes()


def pytest_sessionfinish(session, exitstatus):
    """Clean up temp directories after test session."""
    if Path(_test_tmp_dir).exists():
        shutil.rmtree(_test_tmp_dir, ignore_errors=True)
