"""Gallery service façade: list, upload and delete images.

:class:`GalleryService` composes the blob store, catalog and reconciler and is
the only component the HTTP layer talks to.  It is safe to call from many
request threads at once; all shared state lives in the :class:`Catalog`,
which owns its lock.

Ordering guarantees
-------------------
- **Upload** writes bytes first and catalogues them second, so the catalog
  never references bytes that were not written.
- **Delete** removes the record first and the file second.  A file that is
  already gone is not an error.  The filename stays reserved in the catalog
  until the unlink finishes, so a concurrent listing cannot re-discover it.
- **List** reconciles first.  If the directory cannot be scanned, the last
  known catalog contents are served with a :class:`PartialListing` warning.
"""

from __future__ import annotations

import logging
from pathlib import PurePath
from typing import NamedTuple

from imagegallery.core.blob_store import BlobStore
from imagegallery.core.catalog import Catalog
from imagegallery.core.config import MAX_UPLOAD_BYTES, GalleryConfig
from imagegallery.core.errors import (
    InvalidContentType,
    PartialListing,
    PayloadTooLarge,
    StorageUnavailable,
)
from imagegallery.core.models import (
    ALLOWED_CONTENT_TYPES,
    DEFAULT_EXTENSION,
    ImageRecord,
    extension_of,
    utcnow,
)
from imagegallery.core.reconciler import Reconciler

logger = logging.getLogger(__name__)


class ListingResult(NamedTuple):
    """Outcome of :meth:`GalleryService.list_images`.

    Attributes:
        images: Records ordered newest first.
        warning: Set when the listing is degraded; ``None`` otherwise.
    """

    images: list[ImageRecord]
    warning: PartialListing | None = None

    @property
    def partial(self) -> bool:
        return self.warning is not None


class GalleryService:
    """List, upload and delete images backed by a blob store and a catalog."""

    def __init__(
        self,
        blob_store: BlobStore,
        catalog: Catalog,
        *,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
    ):
        self.blob_store = blob_store
        self.catalog = catalog
        self.reconciler = Reconciler(blob_store, catalog)
        self.max_upload_bytes = max_upload_bytes

    @classmethod
    def from_config(cls, config: GalleryConfig) -> GalleryService:
        """Build a service from settings and acquire the storage directory.

        Raises:
            StorageUnavailable: If the upload directory is unusable.
        """
        blob_store = BlobStore(config.upload_dir)
        blob_store.ensure_root()
        catalog = Catalog(config.index_path)
        logger.info(f"Gallery service ready (storage: {blob_store.root})")
        return cls(blob_store, catalog, max_upload_bytes=config.max_upload_bytes)

    def list_images(self) -> ListingResult:
        """Reconcile against storage and return all images, newest first."""
        warning = None
        try:
            self.reconciler.reconcile()
        except StorageUnavailable:
            logger.warning("Storage scan failed; serving last known catalog")
            warning = PartialListing()
        return ListingResult(self.catalog.list_sorted_by_upload_descending(), warning)

    def get_image(self, image_id: str) -> ImageRecord:
        """Return a single record.

        Raises:
            NotFound: If no such record exists.
        """
        return self.catalog.get(image_id)

    def upload_image(
        self,
        payload: bytes,
        declared_content_type: str | None,
        declared_name: str | None,
    ) -> ImageRecord:
        """Validate, store and catalogue an uploaded image.

        Args:
            payload: Raw image bytes.
            declared_content_type: MIME type sent by the client.  This is the
                only input used to decide whether the payload is an image.
            declared_name: Filename sent by the client.  Used for display and
                to pick the storage extension, nothing else.

        Returns:
            The new catalog record.

        Raises:
            InvalidContentType: If the MIME type is not an accepted image type.
            PayloadTooLarge: If the payload exceeds ``max_upload_bytes``.
            WriteFailed: If the bytes could not be stored.  The catalog is
                not modified.
        """
        content_type = (declared_content_type or "").split(";", 1)[0].strip().lower()
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise InvalidContentType()
        if len(payload) > self.max_upload_bytes:
            raise PayloadTooLarge()

        extension = extension_of(declared_name) or DEFAULT_EXTENSION
        stored_filename = self.blob_store.write(payload, extension)

        record = ImageRecord(
            id=PurePath(stored_filename).stem,
            display_name=declared_name or stored_filename,
            stored_filename=stored_filename,
            size_bytes=len(payload),
            content_type=content_type,
            uploaded_at=utcnow(),
        )
        self.catalog.insert(record)
        logger.info(f"Uploaded {record.display_name} as {stored_filename} ({record.size_bytes} bytes)")
        return record

    def delete_image(self, image_id: str) -> ImageRecord:
        """Remove an image's record and its file.

        Returns:
            The removed record.

        Raises:
            NotFound: If no such record exists.  Storage is not touched.
            StorageUnavailable: If the file exists but could not be removed.
                The record is restored so the catalog stays consistent.
        """
        record = self.catalog.remove(image_id)
        try:
            self.blob_store.delete(record.stored_filename)
        except StorageUnavailable:
            if not self.catalog.restore(record):
                logger.warning(
                    f"Could not restore {image_id}: {record.stored_filename} "
                    "is catalogued under another id"
                )
            raise
        finally:
            self.catalog.release(record.stored_filename)
        logger.info(f"Deleted {record.display_name} ({image_id})")
        return record
