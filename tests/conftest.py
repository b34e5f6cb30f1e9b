"""Shared pytest fixtures for Image Gallery tests."""

import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from imagegallery.api.main import create_app
from imagegallery.core.blob_store import BlobStore
from imagegallery.core.catalog import Catalog
from imagegallery.core.config import GalleryConfig
from imagegallery.core.gallery_service import GalleryService


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def upload_dir(temp_dir: Path) -> Path:
    """Directory used as the blob store root."""
    path = temp_dir / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def test_config(temp_dir: Path, upload_dir: Path) -> GalleryConfig:
    """Create a test configuration pointing at temporary directories.

    Returns:
        GalleryConfig instance for testing
    """
    return GalleryConfig(
        upload_dir=str(upload_dir),
        data_dir=str(temp_dir / "data"),
        persist_index=True,
        _env_file=None,
    )


@pytest.fixture
def blob_store(upload_dir: Path) -> BlobStore:
    return BlobStore(upload_dir)


@pytest.fixture
def catalog() -> Catalog:
    """An in-memory catalog without a sidecar index."""
    return Catalog()


@pytest.fixture
def service(blob_store: BlobStore, catalog: Catalog) -> GalleryService:
    """A gallery service over a temporary blob store and in-memory catalog."""
    return GalleryService(blob_store, catalog)


@pytest.fixture
def test_client(test_config: GalleryConfig) -> Generator[TestClient, None, None]:
    """FastAPI TestClient for an app built from the test configuration.

    The client is used as a context manager so the application lifespan
    (startup reconciliation) runs.
    """
    with TestClient(create_app(test_config)) as client:
        yield client


def _encode_image(fmt: str = "PNG", size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def make_image():
    """Factory encoding a small solid-colour image with Pillow.

    Returns:
        Callable ``(fmt="PNG", size=(8, 8)) -> bytes``
    """
    return _encode_image


@pytest.fixture
def png_bytes() -> bytes:
    """A valid PNG payload."""
    return _encode_image("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A valid JPEG payload."""
    return _encode_image("JPEG")
