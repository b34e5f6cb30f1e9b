"""Data models for the image catalog."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePath

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
    }
)

EXTENSION_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}

DEFAULT_EXTENSION = "jpg"


def extension_of(filename: str | None) -> str | None:
    """Return the lower-cased extension of *filename* if it is a recognized image type.

    Args:
        filename: A bare filename or path; may be ``None``.

    Returns:
        The extension without the leading dot, or ``None`` when the name has
        no extension or the extension is not in :data:`IMAGE_EXTENSIONS`.
    """
    if not filename:
        return None
    suffix = PurePath(filename).suffix.lower().lstrip(".")
    return suffix if suffix in IMAGE_EXTENSIONS else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ImageRecord:
    """One catalog entry describing a stored image.

    Attributes:
        id: Stable identifier, unique among catalog entries.
        display_name: Filename supplied by the uploader.  Not unique and never
            used for storage.
        stored_filename: Name of the file inside the blob store.
        size_bytes: Payload length in bytes.
        content_type: MIME type captured at upload or inferred on discovery.
        uploaded_at: Timezone-aware UTC timestamp; the listing sort key.
    """

    id: str
    display_name: str
    stored_filename: str
    size_bytes: int
    content_type: str
    uploaded_at: datetime

    def sort_key(self) -> tuple[datetime, str]:
        return (self.uploaded_at, self.id)

    def to_dict(self) -> dict:
        """Serialise the record for the sidecar index."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "stored_filename": self.stored_filename,
            "size_bytes": self.size_bytes,
            "content_type": self.content_type,
            "uploaded_at": self.uploaded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ImageRecord:
        """Rebuild a record from a sidecar index entry.

        Raises:
            KeyError: If a required key is missing.
            ValueError: If the timestamp or size cannot be parsed.
            TypeError: If a field has the wrong type.
        """
        uploaded_at = datetime.fromisoformat(data["uploaded_at"])
        if uploaded_at.tzinfo is None:
            uploaded_at = uploaded_at.replace(tzinfo=timezone.utc)
        stored_filename = str(data["stored_filename"])
        return cls(
            id=str(data["id"]),
            display_name=str(data.get("display_name") or stored_filename),
            stored_filename=stored_filename,
            size_bytes=int(data.get("size_bytes", 0)),
            content_type=str(data.get("content_type") or "application/octet-stream"),
            uploaded_at=uploaded_at,
        )
