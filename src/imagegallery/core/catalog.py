"""In-memory image catalog with an optional JSON sidecar index.

The catalog maps record identifiers to :class:`ImageRecord` instances and is
the only shared mutable state in the service.  All access goes through a
single reader/writer lock: lookups and listings may overlap each other, but
never a mutation.

When an ``index_path`` is given, the catalog is loaded from that file on
construction and rewritten after every mutation.  The index keeps identifiers
and display names stable across restarts.  It is a cache, not the source of
truth: file existence is always decided by the blob store, and the reconciler
prunes entries whose file has gone.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path, PurePath

from imagegallery.core.errors import DuplicateId, NotFound
from imagegallery.core.models import ImageRecord, extension_of

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Writers are preferred: once a writer is waiting, new readers block until
    it has finished, so a steady stream of listings cannot starve uploads.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class Catalog:
    """Thread-safe ``id -> ImageRecord`` index."""

    def __init__(self, index_path: Path | None = None):
        """Initialize the catalog.

        Args:
            index_path: Optional sidecar JSON file.  When given, existing
                entries are loaded from it and every mutation rewrites it.
        """
        self.index_path = Path(index_path) if index_path is not None else None
        self._records: dict[str, ImageRecord] = {}
        self._by_filename: dict[str, str] = {}
        self._deleting: set[str] = set()
        self._lock = ReadWriteLock()

        if self.index_path is not None:
            for record in load_index(self.index_path):
                if record.id in self._records or record.stored_filename in self._by_filename:
                    logger.warning(f"Skipping duplicate index entry {record.id}")
                    continue
                self._add(record)
            logger.info(f"Loaded {len(self._records)} catalog entries from {self.index_path}")

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._records)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, image_id: str) -> ImageRecord:
        """Return the record for *image_id*.

        Raises:
            NotFound: If no such record exists.
        """
        with self._lock.read_locked():
            record = self._records.get(image_id)
        if record is None:
            raise NotFound()
        return record

    def find_by_stored_filename(self, name: str) -> ImageRecord | None:
        with self._lock.read_locked():
            image_id = self._by_filename.get(name)
            return self._records.get(image_id) if image_id is not None else None

    def list_sorted_by_upload_descending(self) -> list[ImageRecord]:
        """Return all records, newest first.

        Records with equal ``uploaded_at`` are ordered by ``id`` descending so
        the listing is deterministic.
        """
        with self._lock.read_locked():
            records = list(self._records.values())
        return sorted(records, key=ImageRecord.sort_key, reverse=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, record: ImageRecord) -> None:
        """Add a new record.

        If a reconciliation pass discovered the same stored file between the
        upload's write and this call, the discovered record is replaced: the
        uploader's metadata is authoritative.

        Raises:
            DuplicateId: If a record with the same id is already present.
        """
        with self._lock.write_locked():
            if record.id in self._records:
                raise DuplicateId()
            discovered_id = self._by_filename.get(record.stored_filename)
            if discovered_id is not None:
                logger.debug(f"Replacing discovered record {discovered_id} for {record.stored_filename}")
                del self._records[discovered_id]
            self._add(record)
            self._save()
        logger.info(f"Catalogued {record.id} ({record.display_name})")

    def insert_if_absent(self, record: ImageRecord) -> bool:
        """Insert *record* unless its stored filename is already catalogued.

        Membership is checked under the write lock, so a record added by a
        concurrent upload between a caller's lookup and this call is never
        duplicated.

        Returns:
            ``True`` if the record was inserted.
        """
        return bool(self.insert_missing([record]))

    def insert_missing(self, records: Iterable[ImageRecord]) -> list[ImageRecord]:
        """Insert every record whose stored filename is not yet catalogued.

        Filenames already present, or held by an in-progress delete, are
        skipped.  The index is rewritten at most once.

        Returns:
            The records that were inserted.
        """
        with self._lock.write_locked():
            added = self._insert_missing(records)
            if added:
                self._save()
        return added

    def remove(self, image_id: str) -> ImageRecord:
        """Remove and return the record for *image_id*.

        The stored filename stays reserved until :meth:`release` is called,
        so a listing that scans while the file is being deleted cannot
        catalogue it again.

        Raises:
            NotFound: If no such record exists.
        """
        with self._lock.write_locked():
            record = self._records.pop(image_id, None)
            if record is None:
                raise NotFound()
            self._by_filename.pop(record.stored_filename, None)
            self._deleting.add(record.stored_filename)
            self._save()
        logger.info(f"Removed {image_id} from catalog")
        return record

    def release(self, stored_filename: str) -> None:
        """Lift the reservation taken by :meth:`remove`."""
        with self._lock.write_locked():
            self._deleting.discard(stored_filename)

    def restore(self, record: ImageRecord) -> bool:
        """Put back a record whose file could not be deleted.

        Returns:
            ``False`` if its stored filename was catalogued again meanwhile.
        """
        with self._lock.write_locked():
            self._deleting.discard(record.stored_filename)
            added = self._insert_missing([record])
            if added:
                self._save()
        return bool(added)

    def prune(self, is_present: Callable[[str], bool]) -> list[ImageRecord]:
        """Drop every record whose stored file is no longer present.

        Args:
            is_present: Called with each stored filename, under the write
                lock, to decide whether the backing file still exists.

        Returns:
            The dropped records.
        """
        with self._lock.write_locked():
            stale = self._prune(is_present)
            if stale:
                self._save()
        return stale

    def merge(
        self, discovered: Iterable[ImageRecord], is_present: Callable[[str], bool]
    ) -> tuple[list[ImageRecord], list[ImageRecord]]:
        """Apply one reconciliation pass under a single write lock.

        Equivalent to :meth:`insert_missing` followed by :meth:`prune`, with
        one index rewrite for both.

        Returns:
            ``(added, dropped)``.
        """
        with self._lock.write_locked():
            added = self._insert_missing(discovered)
            dropped = self._prune(is_present)
            if added or dropped:
                self._save()
        return added, dropped

    # ------------------------------------------------------------------
    # Internals (caller holds the write lock)
    # ------------------------------------------------------------------

    def _add(self, record: ImageRecord) -> None:
        self._records[record.id] = record
        self._by_filename[record.stored_filename] = record.id

    def _insert_missing(self, records: Iterable[ImageRecord]) -> list[ImageRecord]:
        added = []
        for record in records:
            name = record.stored_filename
            if name in self._by_filename or name in self._deleting:
                continue
            if record.id in self._records:
                raise DuplicateId()
            self._add(record)
            added.append(record)
        return added

    def _prune(self, is_present: Callable[[str], bool]) -> list[ImageRecord]:
        stale = [r for r in self._records.values() if not is_present(r.stored_filename)]
        for record in stale:
            del self._records[record.id]
            self._by_filename.pop(record.stored_filename, None)
        return stale

    def _save(self) -> None:
        if self.index_path is None:
            return
        try:
            save_index(self.index_path, list(self._records.values()))
        except OSError as e:
            # The blob store stays authoritative; the next reconciliation
            # rebuilds anything the index failed to record.
            logger.error(f"Failed to persist catalog index {self.index_path}: {e}")


def load_index(index_path: Path) -> list[ImageRecord]:
    """Load records from the sidecar index.

    The rules are forgiving: a missing or unparsable file yields an empty
    list, and malformed entries are skipped.

    Args:
        index_path: Path to the JSON index.

    Returns:
        The records that could be parsed, in file order.
    """
    if not index_path.exists():
        return []

    try:
        with open(index_path, encoding="utf-8") as handle:
            raw_entries = json.load(handle)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable catalog index {index_path}: {e}")
        return []

    if not isinstance(raw_entries, list):
        return []

    records: list[ImageRecord] = []
    for entry in raw_entries:
        if not isinstance(entry, dict):
            continue
        try:
            record = ImageRecord.from_dict(entry)
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Skipping malformed index entry: {entry!r}")
            continue
        # Stored filenames must stay bare image filenames inside the store.
        name = record.stored_filename
        if PurePath(name).name != name or extension_of(name) is None:
            logger.warning(f"Skipping index entry with invalid filename: {name!r}")
            continue
        records.append(record)
    return records


def save_index(index_path: Path, records: list[ImageRecord]) -> None:
    """Atomically rewrite the sidecar index with *records*."""
    index_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=index_path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump([r.to_dict() for r in records], handle, indent=2)
        os.replace(tmp_path, index_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise
