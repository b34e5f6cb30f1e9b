"""Pydantic request and response models for the Image Gallery API.

Models
------
ImagePayload
    JSON shape of one catalog record as returned to clients.
DeleteRequest
    Payload for ``DELETE /images``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from imagegallery.core.models import ImageRecord


class ImagePayload(BaseModel):
    """A catalog record as exposed over HTTP.

    Field names are camelCase on the wire (``uploadedAt``) and snake_case in
    Python.  Serialise with :meth:`to_json`.

    Attributes:
        id: Record identifier; pass it back to ``DELETE /images``.
        name: Original filename supplied by the uploader.
        filename: Stored filename inside the upload directory.
        url: URL path resolving to the stored file.
        size: Payload size in bytes.
        type: MIME type of the image.
        uploaded_at: Upload (or discovery) timestamp in UTC.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., description="Record identifier.")
    name: str = Field(..., description="Original filename supplied by the uploader.")
    filename: str = Field(..., description="Stored filename inside the upload directory.")
    url: str = Field(..., description="URL path resolving to the stored file.")
    size: int = Field(..., description="Payload size in bytes.")
    type: str = Field(..., description="MIME type of the image.")
    uploaded_at: datetime = Field(..., description="Upload timestamp (UTC).")

    @classmethod
    def from_record(cls, record: ImageRecord, url_prefix: str) -> ImagePayload:
        """Build the payload for *record*, serving files under *url_prefix*."""
        return cls(
            id=record.id,
            name=record.display_name,
            filename=record.stored_filename,
            url=f"{url_prefix.rstrip('/')}/{record.stored_filename}",
            size=record.size_bytes,
            type=record.content_type,
            uploaded_at=record.uploaded_at,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class DeleteRequest(BaseModel):
    """Request body for the ``DELETE /images`` endpoint.

    ``id`` is optional at the schema level so that a missing identifier is
    answered with the service's own 400 message rather than a generic
    validation error.

    Attributes:
        id: Identifier of the image to delete.
    """

    id: str | None = Field(
        default=None,
        description="Identifier of the image to delete.",
    )
