"""Tests for the file processing service."""

from __future__ import annotations

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from orchestrator_core.config.settings import FileProcessorConfig
from orchestrator_core.file_processor.app import classify, create_app, resolve_upload

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def client(upload_dir):
    config = FileProcessorConfig(upload_dir=upload_dir, max_file_size=1024, max_files=2)
    return TestClient(create_app(config))


class TestHelpers:

    @pytest.mark.parametrize("mimetype,expected", [
        ("image/png", "image"),
        ("video/mp4", "video"),
        ("application/octet-stream", "document"),
        (None, "document"),
    ])
    def test_classify(self, mimetype, expected):
        assert classify(mimetype) == expected

    @pytest.mark.parametrize("name", ["../etc/passwd", "a/b.png", "..", ""])
    def test_resolve_upload_refuses_traversal(self, tmp_path, name):
        with pytest.raises(HTTPException) as exc_info:
            resolve_upload(tmp_path, name)
        assert exc_info.value.status_code == 400

    def test_resolve_upload_plain_name(self, tmp_path):
        assert resolve_upload(tmp_path, "files-1.png") == tmp_path / "files-1.png"


class TestEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "file-processor"

    def test_upload_image(self, client, upload_dir):
        response = client.post(
            "/process",
            files=[("files", ("cover.png", PNG_BYTES, "image/png"))],
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["totalFiles"] == 1
        stored = body["processedFiles"][0]
        assert stored["originalName"] == "cover.png"
        assert stored["type"] == "image"
        assert stored["size"] == len(PNG_BYTES)
        assert stored["filename"].endswith(".png")
        assert (upload_dir / stored["filename"]).read_bytes() == PNG_BYTES

    def test_rejects_unsupported_extension(self, client, upload_dir):
        response = client.post(
            "/process",
            files=[("files", ("setup.exe", b"MZ", "application/octet-stream"))],
        )

        assert response.status_code == 400
        assert not upload_dir.exists() or list(upload_dir.iterdir()) == []

    def test_rejects_too_many_files(self, client):
        files = [("files", (f"f{i}.png", PNG_BYTES, "image/png")) for i in range(3)]

        response = client.post("/process", files=files)

        assert response.status_code == 400

    def test_oversize_file_leaves_nothing_behind(self, client, upload_dir):
        response = client.post(
            "/process",
            files=[("files", ("big.mp4", b"\x00" * 2048, "video/mp4"))],
        )

        assert response.status_code == 413
        assert list(upload_dir.iterdir()) == []

    def test_bad_extension_later_in_batch_stores_nothing(self, client, upload_dir):
        response = client.post(
            "/process",
            files=[
                ("files", ("cover.png", PNG_BYTES, "image/png")),
                ("files", ("setup.exe", b"MZ", "application/octet-stream")),
            ],
        )

        assert response.status_code == 400
        assert not upload_dir.exists() or list(upload_dir.iterdir()) == []

    def test_oversize_file_later_in_batch_removes_earlier_ones(self, client, upload_dir):
        response = client.post(
            "/process",
            files=[
                ("files", ("cover.png", PNG_BYTES, "image/png")),
                ("files", ("big.mp4", b"\x00" * 2048, "video/mp4")),
            ],
        )

        assert response.status_code == 413
        assert list(upload_dir.iterdir()) == []

    def test_confirm_assets(self, client):
        uploaded = client.post(
            "/process",
            files=[("files", ("cover.png", PNG_BYTES, "image/png"))],
        ).json()["processedFiles"][0]

        response = client.post(
            "/confirm-assets",
            json={"assets": [{"filename": uploaded["filename"]}, {"filename": "missing.png"}]},
        )

        assert response.status_code == 200
        found, missing = response.json()["confirmedAssets"]
        assert found["confirmed"] is True
        assert found["size"] == len(PNG_BYTES)
        assert missing == {"filename": "missing.png", "confirmed": False, "error": "File not found"}

    def test_metadata(self, client):
        uploaded = client.post(
            "/process",
            files=[("files", ("clip.mov", b"\x00" * 10, "video/quicktime"))],
        ).json()["processedFiles"][0]

        response = client.get(f"/metadata/{uploaded['filename']}")

        assert response.status_code == 200
        assert response.json()["size"] == 10
        assert response.json()["extension"] == ".mov"

    def test_metadata_missing_file(self, client):
        assert client.get("/metadata/nothing.png").status_code == 404
