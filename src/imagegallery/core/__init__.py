"""Core components of the image catalog service.

Architecture Overview
---------------------
Components, leaf first:

1. **Blob Store** (blob_store.py):
   - Raw image bytes under generated filenames in one directory
   - Atomic write-to-temp-then-rename, idempotent delete, lazy scan

2. **Catalog** (catalog.py):
   - ``id -> ImageRecord`` index behind a reader/writer lock
   - Optional JSON sidecar index that survives restarts

3. **Reconciler** (reconciler.py):
   - Adds records for files nobody catalogued
   - Drops records whose file is gone

4. **Gallery Service** (gallery_service.py):
   - List / Upload / Delete façade with validation

Supporting modules: config.py (Pydantic Settings), errors.py (error
taxonomy), models.py (ImageRecord and recognized formats).
"""

from imagegallery.core.blob_store import BlobEntry, BlobStore
from imagegallery.core.catalog import Catalog
from imagegallery.core.config import GalleryConfig, config
from imagegallery.core.gallery_service import GalleryService, ListingResult
from imagegallery.core.models import ImageRecord
from imagegallery.core.reconciler import ReconcileReport, Reconciler

__all__ = [
    "BlobEntry",
    "BlobStore",
    "Catalog",
    "GalleryConfig",
    "GalleryService",
    "ImageRecord",
    "ListingResult",
    "ReconcileReport",
    "Reconciler",
    "config",
]
