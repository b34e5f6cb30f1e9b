"""Image Gallery - FastAPI Application.

This module builds the web application around a
:class:`~imagegallery.core.gallery_service.GalleryService`: route handlers,
the JSON error mapping, static serving of stored files, and the ``main()``
CLI function that launches the uvicorn server.

Architecture
------------
- **The gallery service** is created by :func:`create_app` from a
  :class:`~imagegallery.core.config.GalleryConfig` and stored on
  ``app.state.gallery``.  There is no module-level singleton, so tests build
  as many isolated apps as they need.
- **Route handlers are thin.**  The service is synchronous and thread-safe;
  handlers hand it to Starlette's threadpool so concurrent requests run in
  parallel without blocking the event loop.
- **Every response carries a ``success`` flag.**  Service errors derive from
  :class:`~imagegallery.core.errors.GalleryError` and are mapped to
  ``{"success": false, "message": ...}`` with the error's status code.
- **Stored files** are served by :class:`UploadFiles` (a ``StaticFiles``
  subclass limited to image files) under
  ``config.uploads_url_prefix`` (``/uploads`` by default).

Endpoints
---------
========  ==============================  ==================================
Method    Path                            Purpose
========  ==============================  ==================================
GET       ``/images``                     Reconciled listing, newest first
POST      ``/images``                     Upload (multipart field ``image``)
DELETE    ``/images``                     Delete by JSON body ``{"id": ...}``
GET       ``/images/{id}``                Single record
GET       ``/uploads/{filename}``         Stored image file
========  ==============================  ==================================

The listing, upload and delete endpoints are also reachable under the legacy
paths ``/api/upload/images`` and ``/api/upload/images/delete``.

Usage
-----
CLI (installed entry point)::

    imagegallery

Direct invocation::

    python -m imagegallery.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import PurePath

from fastapi import APIRouter, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.responses import Response
from starlette.types import Scope

from imagegallery import __version__
from imagegallery.api.models import DeleteRequest, ImagePayload
from imagegallery.core.config import GalleryConfig, config
from imagegallery.core.errors import GalleryError, MissingField
from imagegallery.core.gallery_service import GalleryService
from imagegallery.core.models import ImageRecord, extension_of

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Reconcile the catalog once on startup so the first listing is warm.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    gallery: GalleryService = app.state.gallery
    result = await run_in_threadpool(gallery.list_images)
    logger.info(f"Gallery started with {len(result.images)} catalogued images.")

    yield

    logger.info("Gallery shutting down.")


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _gallery(request: Request) -> GalleryService:
    return request.app.state.gallery


def _payload(request: Request, record: ImageRecord) -> dict:
    prefix = request.app.state.config.uploads_url_prefix
    return ImagePayload.from_record(record, prefix).to_json()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


class UploadFiles(StaticFiles):
    """Serve stored images only.

    In-flight ``.part`` files, hidden files and anything without an image
    extension answer 404, matching what the blob store scan exposes.
    """

    async def get_response(self, path: str, scope: Scope) -> Response:
        name = PurePath(path).name
        if name != path or name.startswith(".") or extension_of(name) is None:
            raise HTTPException(status_code=404)
        return await super().get_response(path, scope)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/images")
async def list_images(request: Request) -> dict:
    """Return every catalogued image, newest first.

    The catalog is reconciled against the upload directory first.  If the
    directory cannot be scanned the last known images are returned with
    ``partial: true`` and an explanatory ``message``.

    Returns:
        Dictionary with ``success`` and ``images``; on an unexpected failure
        ``success`` is ``False`` and ``message`` explains why.
    """
    try:
        result = await run_in_threadpool(_gallery(request).list_images)
    except Exception:
        logger.exception("Error fetching images")
        return {"success": False, "message": "Failed to fetch images"}

    body = {
        "success": True,
        "images": [_payload(request, record) for record in result.images],
    }
    if result.warning is not None:
        body["partial"] = True
        body["message"] = result.warning.message
    return body


@router.post("/images")
async def upload_image(request: Request, image: UploadFile | None = File(default=None)) -> dict:
    """Store an uploaded image and add it to the catalog.

    Args:
        image: Multipart file field named ``image``.

    Returns:
        Dictionary with ``success``, ``message``, and the new ``image``.

    Raises:
        GalleryError: 400 for a missing field, a non-image content type, or
            an oversized payload; 500 if the bytes could not be stored.
    """
    if image is None:
        raise MissingField("No image file provided")

    gallery = _gallery(request)
    # Read one byte past the limit so oversized payloads are detected
    # without buffering them in full.
    data = await image.read(gallery.max_upload_bytes + 1)

    try:
        record = await run_in_threadpool(
            gallery.upload_image, data, image.content_type, image.filename
        )
    except GalleryError:
        raise
    except Exception as e:
        logger.exception("Error uploading image")
        raise GalleryError("Failed to upload image") from e

    return {
        "success": True,
        "message": "Image uploaded successfully",
        "image": _payload(request, record),
    }


@router.delete("/images")
async def delete_image(request: Request, req: DeleteRequest) -> dict:
    """Delete an image and its stored file.

    Args:
        req: Validated :class:`DeleteRequest` payload.

    Returns:
        Dictionary with ``success``, ``message``, and ``deletedImage``.

    Raises:
        GalleryError: 400 if ``id`` is missing, 404 if it is unknown, 500 if
            the file could not be removed.
    """
    if not req.id:
        raise MissingField("Image ID is required")

    try:
        record = await run_in_threadpool(_gallery(request).delete_image, req.id)
    except GalleryError:
        raise
    except Exception as e:
        logger.exception("Error deleting image")
        raise GalleryError("Failed to delete image") from e

    return {
        "success": True,
        "message": "Image deleted successfully",
        "deletedImage": _payload(request, record),
    }


@router.get("/images/{image_id}")
async def get_image(request: Request, image_id: str) -> dict:
    """Return a single catalog record.

    Raises:
        GalleryError: 404 if the image is not found.
    """
    record = await run_in_threadpool(_gallery(request).get_image, image_id)
    return {"success": True, "image": _payload(request, record)}


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(settings: GalleryConfig | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Configuration to use.  Defaults to the global
            :data:`~imagegallery.core.config.config` instance.

    Returns:
        A ready-to-serve application with the gallery service on
        ``app.state.gallery``.

    Raises:
        StorageUnavailable: If the upload directory cannot be used.
    """
    settings = settings or config

    app = FastAPI(
        title="Image Gallery",
        description="Upload, list and delete images backed by a self-healing catalog.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = settings
    app.state.gallery = GalleryService.from_config(settings)

    # Allow cross-origin requests so the frontend can be served from a
    # different port during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GalleryError)
    async def gallery_error_handler(request: Request, exc: GalleryError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
        return _error(400, "Invalid request")

    app.include_router(router)
    app.include_router(router, prefix="/api/upload")
    app.add_api_route("/api/upload/images/delete", delete_image, methods=["DELETE"])

    # Serve stored files so that record URLs resolve.
    app.mount(
        settings.uploads_url_prefix,
        UploadFiles(directory=str(app.state.gallery.blob_store.root)),
        name="uploads",
    )

    return app


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~imagegallery.core.config.config`
    (``IMAGEGALLERY_SERVER_HOST``, ``IMAGEGALLERY_SERVER_PORT``,
    ``IMAGEGALLERY_LOG_LEVEL``).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``imagegallery`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "imagegallery.api.main:create_app",
        factory=True,
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
