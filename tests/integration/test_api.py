"""Integration tests for imagegallery.api.main - FastAPI REST API endpoints.

All tests use the FastAPI TestClient against an app built from a temporary
configuration.  Tests cover every endpoint:

- ``GET /images`` - Reconciled listing.
- ``POST /images`` - Multipart upload.
- ``DELETE /images`` - Deletion by JSON body.
- ``GET /images/{id}`` - Single record.
- ``GET /uploads/{filename}`` - Static file serving.
- Legacy ``/api/upload/images`` routes.
"""

from __future__ import annotations

import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from fastapi.testclient import TestClient

from imagegallery.api.main import create_app
from imagegallery.core.config import GalleryConfig


def _upload(client: TestClient, data: bytes, name: str = "cat.png", content_type: str = "image/png"):
    """POST a multipart upload with the ``image`` field."""
    return client.post("/images", files={"image": (name, data, content_type)})


def _delete(client: TestClient, body, path: str = "/images"):
    """Send DELETE with a JSON body (httpx's ``delete`` takes no body)."""
    return client.request("DELETE", path, json=body)


# ---------------------------------------------------------------------------
# Listing tests.
# ---------------------------------------------------------------------------


class TestListImages:
    """Test GET /images."""

    def test_empty_gallery(self, test_client):
        resp = test_client.get("/images")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "images": []}

    def test_lists_files_added_out_of_band(self, test_client, upload_dir: Path, png_bytes: bytes):
        """Files dropped into the upload directory should appear exactly once."""
        (upload_dir / "manual.png").write_bytes(png_bytes)

        first = test_client.get("/images").json()["images"]
        second = test_client.get("/images").json()["images"]

        assert [img["name"] for img in first] == ["manual.png"]
        assert first[0]["url"] == "/uploads/manual.png"
        assert first[0]["type"] == "image/png"
        assert [img["id"] for img in second] == [img["id"] for img in first]

    def test_listing_order_is_newest_first(self, test_client, upload_dir: Path):
        for i, name in enumerate(["t1.png", "t2.png", "t3.png"]):
            path = upload_dir / name
            path.write_bytes(b"x")
            os.utime(path, (1_700_000_000 + i, 1_700_000_000 + i))

        names = [img["name"] for img in test_client.get("/images").json()["images"]]
        assert names == ["t3.png", "t2.png", "t1.png"]

    def test_partial_listing_when_storage_breaks(self, test_client, upload_dir: Path, png_bytes):
        """A vanished upload directory should degrade, not fail."""
        record = _upload(test_client, png_bytes).json()["image"]
        gallery = test_client.app.state.gallery
        gallery.blob_store.root = upload_dir / "does-not-exist"

        resp = test_client.get("/images")

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["partial"] is True
        assert str(upload_dir) not in data["message"]
        assert [img["id"] for img in data["images"]] == [record["id"]]

    def test_unexpected_failure_reports_success_false(self, test_client, monkeypatch):
        def explode():
            raise RuntimeError("boom")

        monkeypatch.setattr(test_client.app.state.gallery, "list_images", explode)
        resp = test_client.get("/images")
        assert resp.status_code == 200
        assert resp.json() == {"success": False, "message": "Failed to fetch images"}


# ---------------------------------------------------------------------------
# Upload tests.
# ---------------------------------------------------------------------------


class TestUploadImage:
    """Test POST /images."""

    def test_cat_png_scenario(self, test_client, make_image):
        """Upload cat.png and see it as the only listed image."""
        data = make_image("PNG", (16, 16))
        payload = data + b"\0" * (1024 - len(data))

        resp = _upload(test_client, payload, "cat.png", "image/png")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        image = body["image"]
        assert image["name"] == "cat.png"
        assert image["size"] == 1024
        assert re.fullmatch(rf"/uploads/{image['id']}\.png", image["url"])
        assert "uploadedAt" in image

        listing = test_client.get("/images").json()
        assert listing["images"] == [image]

    def test_uploaded_file_is_served(self, test_client, png_bytes: bytes):
        image = _upload(test_client, png_bytes).json()["image"]
        resp = test_client.get(image["url"])
        assert resp.status_code == 200
        assert resp.content == png_bytes

    def test_invalid_content_type(self, test_client, upload_dir: Path):
        resp = _upload(test_client, b"hello", "notes.txt", "text/plain")
        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "message": "Invalid file type. Only images are allowed.",
        }
        assert list(upload_dir.iterdir()) == []

    def test_payload_too_large(self, upload_dir: Path):
        cfg = GalleryConfig(
            upload_dir=str(upload_dir),
            persist_index=False,
            max_upload_bytes=100,
            _env_file=None,
        )
        with TestClient(create_app(cfg)) as client:
            resp = _upload(client, b"\0" * 101)
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert list(upload_dir.iterdir()) == []

    def test_missing_image_field(self, test_client):
        resp = test_client.post("/images", files={"other": ("cat.png", b"x", "image/png")})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "No image file provided"}

    def test_write_failure_returns_500(self, test_client, monkeypatch, png_bytes: bytes):
        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("imagegallery.core.blob_store.os.replace", failing_replace)
        resp = _upload(test_client, png_bytes)
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "message": "Failed to upload image"}
        assert test_client.get("/images").json()["images"] == []

    def test_concurrent_uploads(self, test_client, png_bytes: bytes):
        n = 16
        with ThreadPoolExecutor(max_workers=8) as pool:
            responses = list(pool.map(lambda i: _upload(test_client, png_bytes, f"{i}.png"), range(n)))

        images = [r.json()["image"] for r in responses]
        assert all(r.status_code == 200 for r in responses)
        assert len({img["id"] for img in images}) == n
        assert len({img["filename"] for img in images}) == n
        assert len(test_client.get("/images").json()["images"]) == n


# ---------------------------------------------------------------------------
# Delete tests.
# ---------------------------------------------------------------------------


class TestDeleteImage:
    """Test DELETE /images."""

    def test_delete_round_trip(self, test_client, upload_dir: Path, png_bytes: bytes):
        image = _upload(test_client, png_bytes).json()["image"]

        resp = _delete(test_client, {"id": image["id"]})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Image deleted successfully"
        assert body["deletedImage"]["id"] == image["id"]
        assert not (upload_dir / image["filename"]).exists()
        assert test_client.get("/images").json()["images"] == []

    def test_delete_unknown_id_is_404_every_time(self, test_client):
        for _ in range(2):
            resp = _delete(test_client, {"id": "never-existed"})
            assert resp.status_code == 404
            assert resp.json() == {"success": False, "message": "Image not found"}

    def test_delete_after_manual_file_removal(self, test_client, upload_dir: Path, png_bytes):
        image = _upload(test_client, png_bytes).json()["image"]
        (upload_dir / image["filename"]).unlink()

        resp = _delete(test_client, {"id": image["id"]})

        assert resp.status_code == 200
        assert resp.json()["deletedImage"]["id"] == image["id"]

    def test_missing_id(self, test_client):
        resp = _delete(test_client, {})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "Image ID is required"}

    def test_malformed_body(self, test_client):
        resp = test_client.request(
            "DELETE", "/images", content=b"not json", headers={"content-type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False


# ---------------------------------------------------------------------------
# Single record and legacy route tests.
# ---------------------------------------------------------------------------


class TestGetImage:
    """Test GET /images/{id}."""

    def test_get_existing(self, test_client, png_bytes: bytes):
        image = _upload(test_client, png_bytes).json()["image"]
        resp = test_client.get(f"/images/{image['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "image": image}

    def test_get_missing(self, test_client):
        resp = test_client.get("/images/nope")
        assert resp.status_code == 404
        assert resp.json()["success"] is False

    def test_lookup_runs_off_the_event_loop(self, test_client, png_bytes: bytes, monkeypatch):
        """A slow lookup must not stall unrelated requests."""
        image = _upload(test_client, png_bytes).json()["image"]
        gallery = test_client.app.state.gallery
        real_get = gallery.get_image
        entered = threading.Event()
        release = threading.Event()

        def slow_get(image_id):
            entered.set()
            release.wait(5)
            return real_get(image_id)

        monkeypatch.setattr(gallery, "get_image", slow_get)
        with ThreadPoolExecutor(max_workers=1) as pool:
            lookup = pool.submit(test_client.get, f"/images/{image['id']}")
            assert entered.wait(5)
            try:
                served = test_client.get(image["url"])
                assert not lookup.done()
            finally:
                release.set()
            assert served.status_code == 200
            assert lookup.result().status_code == 200


class TestUploadFiles:
    """Test GET /uploads/{filename}."""

    def test_only_image_files_are_served(self, test_client, upload_dir: Path):
        """Files hidden from the listing are hidden from static serving too."""
        (upload_dir / ".abc123.part").write_bytes(b"partial")
        (upload_dir / ".hidden.png").write_bytes(b"x")
        (upload_dir / "notes.txt").write_text("secret")
        (upload_dir / "visible.png").write_bytes(b"x")

        assert test_client.get("/uploads/.abc123.part").status_code == 404
        assert test_client.get("/uploads/.hidden.png").status_code == 404
        assert test_client.get("/uploads/notes.txt").status_code == 404
        assert test_client.get("/uploads/visible.png").status_code == 200

    def test_missing_file_is_404(self, test_client):
        assert test_client.get("/uploads/absent.png").status_code == 404


class TestLegacyRoutes:
    """The original ``/api/upload/images`` paths keep working."""

    def test_legacy_upload_list_delete(self, test_client, png_bytes: bytes):
        resp = test_client.post(
            "/api/upload/images", files={"image": ("dog.jpg", png_bytes, "image/png")}
        )
        assert resp.status_code == 200
        image = resp.json()["image"]
        assert image["url"].endswith(".jpg")

        listing = test_client.get("/api/upload/images").json()
        assert [img["id"] for img in listing["images"]] == [image["id"]]

        resp = _delete(test_client, {"id": image["id"]}, path="/api/upload/images/delete")
        assert resp.status_code == 200
        assert test_client.get("/images").json()["images"] == []


class TestRestart:
    """A fresh app over the same directories keeps identifiers."""

    def test_ids_survive_restart(self, test_config: GalleryConfig, png_bytes: bytes):
        with TestClient(create_app(test_config)) as client:
            image = _upload(client, png_bytes).json()["image"]

        with TestClient(create_app(test_config)) as client:
            images = client.get("/images").json()["images"]

        assert images == [image]
