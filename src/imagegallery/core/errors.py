"""Error taxonomy for the image catalog service.

Every failure the service reports derives from :class:`GalleryError`.  Each
subclass carries the HTTP status the API layer answers with and a message that
is safe to show to clients.  Messages never include filesystem paths; the
underlying ``OSError`` is chained with ``raise ... from`` and logged on the
server side instead.
"""


class GalleryError(Exception):
    """Base class for catalog service failures.

    Attributes:
        status_code: HTTP status the API layer maps this error to.
        message: Human-readable, client-safe description.
    """

    status_code = 500
    default_message = "Unexpected gallery error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidContentType(GalleryError):
    """The declared content type is not a recognized image MIME type."""

    status_code = 400
    default_message = "Invalid file type. Only images are allowed."


class PayloadTooLarge(GalleryError):
    """The upload payload exceeds the configured size limit."""

    status_code = 400
    default_message = "File size exceeds 25MB limit"


class MissingField(GalleryError):
    """A required request field was not supplied."""

    status_code = 400
    default_message = "Required field is missing"


class WriteFailed(GalleryError):
    """Image bytes could not be written to the blob store."""

    status_code = 500
    default_message = "Failed to upload image"


class StorageUnavailable(GalleryError):
    """The blob store directory cannot be read, created or written."""

    status_code = 500
    default_message = "Image storage is unavailable"


class NotFound(GalleryError):
    """No catalog record exists for the requested identifier."""

    status_code = 404
    default_message = "Image not found"


class DuplicateId(GalleryError):
    """A record with the same identifier is already in the catalog."""

    status_code = 500
    default_message = "Image identifier already exists"


class PartialListing(GalleryError):
    """Listing served from last-known catalog contents.

    This is a warning attached to a listing result, not an error raised to
    the client.
    """

    status_code = 200
    default_message = "Image storage could not be scanned; showing last known images"
