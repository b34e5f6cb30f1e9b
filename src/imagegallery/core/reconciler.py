"""Reconcile the catalog against the files in the blob store.

The blob store decides which images exist; the catalog owns identifiers and
presentation metadata once they are assigned.  Reconciliation runs before
every listing and heals drift in both directions:

- files with no catalog record (added by hand, or left over from before a
  restart without an index) get a synthesized record
- records whose file has disappeared are dropped

Synthesized records use the file's modification time as ``uploaded_at``
rather than "now", so repeated scans produce the same ordering.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from PIL import Image

from imagegallery.core.blob_store import BlobEntry, BlobStore
from imagegallery.core.catalog import Catalog
from imagegallery.core.models import (
    ALLOWED_CONTENT_TYPES,
    EXTENSION_CONTENT_TYPES,
    ImageRecord,
    extension_of,
)

logger = logging.getLogger(__name__)

# Pillow formats that are variants of an accepted type.  Multi-picture
# JPEGs from phone cameras open as MPO.
SNIFFED_FORMAT_CONTENT_TYPES = {"MPO": "image/jpeg"}


@dataclass
class ReconcileReport:
    """Records added and dropped by one reconciliation pass."""

    added: list[ImageRecord] = field(default_factory=list)
    dropped: list[ImageRecord] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.dropped)


class Reconciler:
    """Merge blob store reality into the catalog."""

    def __init__(self, blob_store: BlobStore, catalog: Catalog):
        self.blob_store = blob_store
        self.catalog = catalog

    def reconcile(self) -> ReconcileReport:
        """Run one reconciliation pass.

        Returns:
            A report of the records that were added and dropped.

        Raises:
            StorageUnavailable: If the blob store cannot be scanned.  The
                catalog is left untouched in that case.
        """
        entries = list(self.blob_store.scan())
        seen = {entry.filename for entry in entries}

        discovered = [
            self._synthesize(entry)
            for entry in entries
            if self.catalog.find_by_stored_filename(entry.filename) is None
        ]
        # merge() re-checks each filename under the write lock, so files
        # catalogued by a concurrent upload since the lookup above are skipped.
        # Files written after the scan started are not in ``seen``, so fall
        # back to the filesystem before dropping their records.
        added, dropped = self.catalog.merge(
            discovered, lambda name: name in seen or self.blob_store.exists(name)
        )
        report = ReconcileReport(added, dropped)

        if report.changed:
            logger.info(
                f"Reconciled catalog: {len(report.added)} discovered, "
                f"{len(report.dropped)} dropped"
            )
        return report

    def _synthesize(self, entry: BlobEntry) -> ImageRecord:
        return ImageRecord(
            id=uuid.uuid4().hex,
            display_name=entry.filename,
            stored_filename=entry.filename,
            size_bytes=entry.size_bytes,
            content_type=self._content_type(entry.filename),
            uploaded_at=entry.modified_at,
        )

    def _content_type(self, filename: str) -> str:
        """Infer the MIME type of a discovered file.

        The extension gives the default.  When Pillow identifies the file as
        one of the accepted image types, its detected format wins.
        """
        fallback = EXTENSION_CONTENT_TYPES.get(extension_of(filename) or "", "application/octet-stream")
        try:
            with Image.open(self.blob_store.path_for(filename)) as image:
                fmt = image.format or ""
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            logger.debug(f"Could not identify {filename}, using extension: {e}")
            return fallback
        detected = SNIFFED_FORMAT_CONTENT_TYPES.get(fmt) or Image.MIME.get(fmt)
        return detected if detected in ALLOWED_CONTENT_TYPES else fallback
