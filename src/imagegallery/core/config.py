"""Configuration management for the image gallery service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the IMAGEGALLERY_
prefix, allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMAGEGALLERY_* prefix)
2. .env file in the project root
3. Default values defined in GalleryConfig

Example .env file:
    IMAGEGALLERY_UPLOAD_DIR=public/uploads
    IMAGEGALLERY_MAX_UPLOAD_BYTES=26214400
    IMAGEGALLERY_PERSIST_INDEX=false
    IMAGEGALLERY_SERVER_PORT=3000

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.

Usage Example
-------------
    from imagegallery.core.config import config

    print(config.upload_dir)
    print(config.max_upload_bytes)

Directory Management
--------------------
Unlike most settings objects, this one does not create directories.  The
upload directory is acquired by :meth:`BlobStore.ensure_root`, which reports
an unusable path as ``StorageUnavailable`` instead of failing at import time.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_UPLOAD_BYTES = 25 * 1024 * 1024


class GalleryConfig(BaseSettings):
    """Main configuration for the image gallery service.

    Attributes
    ----------
    Storage:
        upload_dir : Path
            Directory holding the stored image files (the blob store root)
        data_dir : Path
            Directory holding the sidecar catalog index
        index_filename : str
            Filename of the sidecar index inside ``data_dir``
        persist_index : bool
            Mirror the catalog to the sidecar index after each mutation

    Uploads:
        max_upload_bytes : int
            Largest accepted payload in bytes (25 MiB by default)
        uploads_url_prefix : str
            URL path under which stored files are served

    Server:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
        log_level : str
            Root logging level used by the CLI entry point

    Examples
    --------
        >>> custom_config = GalleryConfig(
        ...     upload_dir="/srv/gallery/uploads",
        ...     persist_index=False,
        ... )
        >>> custom_config.index_path is None
        True
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMAGEGALLERY_",
        case_sensitive=False,
    )

    # Storage
    upload_dir: Path = Field(
        default=Path("public/uploads"),
        description="Directory holding stored image files",
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the sidecar catalog index",
    )
    index_filename: str = Field(
        default="gallery.json",
        description="Filename of the sidecar catalog index",
    )
    persist_index: bool = Field(
        default=True,
        description="Mirror the catalog to the sidecar index file",
    )

    # Uploads
    max_upload_bytes: int = Field(
        default=MAX_UPLOAD_BYTES,
        description="Largest accepted upload payload in bytes",
        ge=1,
    )
    uploads_url_prefix: str = Field(
        default="/uploads",
        description="URL path under which stored files are served",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level for the CLI entry point",
    )

    @property
    def index_path(self) -> Path | None:
        """Location of the sidecar index, or ``None`` when persistence is off."""
        if not self.persist_index:
            return None
        return self.data_dir / self.index_filename


# Global configuration instance, loaded from IMAGEGALLERY_* variables and .env.
config = GalleryConfig()
