"""Filesystem blob store for raw image bytes.

The blob store owns a single directory.  Files are addressed only by names the
store generates itself (``<uuid4 hex>.<ext>``), so user-supplied filenames
never reach the filesystem.  Writes land in a hidden ``*.part`` file first and
are renamed into place once flushed, which means a concurrent :meth:`scan`
either sees the complete file or nothing at all.

Users may also drop files into the directory by hand.  :meth:`scan` reports
every regular file with a recognized image extension so the reconciler can
pick them up.
"""

from __future__ import annotations

import logging
import os
import tempfile
import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

from imagegallery.core.errors import StorageUnavailable, WriteFailed
from imagegallery.core.models import extension_of

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".part"


class BlobEntry(NamedTuple):
    """One image file found by :meth:`BlobStore.scan`."""

    filename: str
    size_bytes: int
    modified_at: datetime


class BlobStore:
    """Store image bytes under generated filenames in one directory."""

    def __init__(self, root: Path):
        """Initialize the blob store.

        Args:
            root: Directory holding the image files.  It is not touched until
                :meth:`ensure_root` or the first write.
        """
        self.root = Path(root)

    def ensure_root(self) -> Path:
        """Create the storage directory if needed and check it is usable.

        Returns:
            The storage directory path.

        Raises:
            StorageUnavailable: If the path exists but is not a directory, or
                the directory cannot be created or written to.
        """
        if self.root.exists() and not self.root.is_dir():
            logger.error(f"Storage root is not a directory: {self.root}")
            raise StorageUnavailable()

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create storage root {self.root}: {e}")
            raise StorageUnavailable() from e

        if not os.access(self.root, os.W_OK | os.X_OK):
            logger.error(f"Storage root is not writable: {self.root}")
            raise StorageUnavailable()

        return self.root

    def path_for(self, filename: str) -> Path:
        """Resolve a stored filename to its path inside the store.

        Raises:
            ValueError: If *filename* is not a bare filename.
        """
        if not filename or Path(filename).name != filename or filename in (".", ".."):
            raise ValueError(f"Not a bare filename: {filename!r}")
        return self.root / filename

    def exists(self, filename: str) -> bool:
        try:
            return self.path_for(filename).is_file()
        except ValueError:
            return False

    def write(self, data: bytes, extension: str) -> str:
        """Write *data* under a freshly generated filename.

        The bytes are written to a temporary file in the same directory,
        flushed to disk, then renamed to ``<uuid4 hex>.<extension>``.

        Args:
            data: Raw image bytes.
            extension: Recognized image extension without the leading dot.

        Returns:
            The generated stored filename.

        Raises:
            WriteFailed: On any I/O error.  No partial file is left behind.
        """
        ext = extension_of(f"x.{extension}")
        if ext is None:
            raise ValueError(f"Unrecognized image extension: {extension!r}")

        filename = f"{uuid.uuid4().hex}.{ext}"
        while (self.root / filename).exists():
            filename = f"{uuid.uuid4().hex}.{ext}"

        tmp_path: str | None = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".", suffix=TEMP_SUFFIX, dir=self.root)
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.root / filename)
        except OSError as e:
            logger.error(f"Failed to write {filename}: {e}")
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
                except OSError as cleanup_error:
                    logger.warning(f"Could not remove temporary file {tmp_path}: {cleanup_error}")
            raise WriteFailed() from e

        logger.debug(f"Stored {len(data)} bytes as {filename}")
        return filename

    def delete(self, filename: str) -> None:
        """Remove a stored file.  A file that is already gone counts as deleted.

        Raises:
            StorageUnavailable: If the file exists but cannot be removed.
        """
        path = self.path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug(f"File already absent: {filename}")
            return
        except OSError as e:
            logger.error(f"Failed to delete {filename}: {e}")
            raise StorageUnavailable() from e

        logger.debug(f"Deleted {filename}")

    def scan(self) -> Iterator[BlobEntry]:
        """Enumerate stored image files.

        Each call returns a new generator, so the scan can be restarted.
        Files without a recognized image extension (including in-flight
        ``*.part`` files) are skipped, as are files that disappear between
        the directory listing and the ``stat`` call.

        Yields:
            A :class:`BlobEntry` per image file.

        Raises:
            StorageUnavailable: If the directory cannot be read.
        """
        try:
            iterator = os.scandir(self.root)
        except OSError as e:
            logger.warning(f"Cannot scan storage root {self.root}: {e}")
            raise StorageUnavailable() from e

        with iterator:
            for dir_entry in iterator:
                if extension_of(dir_entry.name) is None:
                    continue
                try:
                    if not dir_entry.is_file():
                        continue
                    stat = dir_entry.stat()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise StorageUnavailable() from e
                yield BlobEntry(
                    filename=dir_entry.name,
                    size_bytes=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
