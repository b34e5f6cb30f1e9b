"""Image Gallery - image catalog service with a FastAPI HTTP surface."""

__version__ = "0.1.0"

from imagegallery.core.config import GalleryConfig, config
from imagegallery.core.gallery_service import GalleryService, ListingResult
from imagegallery.core.models import ImageRecord

__all__ = [
    "GalleryConfig",
    "GalleryService",
    "ImageRecord",
    "ListingResult",
    "config",
]
