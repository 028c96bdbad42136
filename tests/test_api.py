"""
HTTP API tests. The lifespan is not run; managers are swapped in directly.
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from fakes import RecordingUploader
from gopro_fleet import main
from gopro_fleet.download_manager import DownloadManager


@pytest.fixture
def client(fleet, tmp_path, monkeypatch):
    manager, _ = fleet
    monkeypatch.setattr(main, "camera_manager", manager)
    monkeypatch.setattr(main, "download_manager", DownloadManager(tmp_path, uploader=RecordingUploader()))
    return TestClient(main.app)


@pytest.mark.integration
class TestAPI:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"

    def test_not_loaded(self, monkeypatch):
        monkeypatch.setattr(main, "camera_manager", None)
        assert TestClient(main.app).get("/api/cameras").status_code == 503

    def test_list_cameras(self, client):
        cameras = client.get("/api/cameras").json()["cameras"]
        assert [c["ip_address"] for c in cameras] == ["192.168.1.20", "192.168.1.21"]

    def test_start_recording_reports_each_camera(self, client, fleet):
        _, fakes = fleet
        fakes["192.168.1.21"].offline = httpx.ConnectError

        body = client.post("/api/recording/start").json()

        assert body["success"] is False
        assert [r["success"] for r in body["results"]] == [True, False]
        assert "192.168.1.21" in body["results"][1]["error"]

    def test_media_list(self, client, fleet):
        _, fakes = fleet
        fakes["192.168.1.20"].media = {"media": [{"d": "100GOPRO", "fs": [{"n": "GOPR0001.JPG", "s": "10"}]}]}

        body = client.get("/api/media/list").json()

        first = body["results"][0]["result"][0]
        assert first["name"] == "GOPR0001.JPG"
        assert first["size"] == 10

    def test_delete_needs_confirm(self, client, fleet):
        _, fakes = fleet
        assert client.post("/api/media/delete-all", json={}).status_code == 400
        assert all(fake.requests == [] for fake in fakes.values())

    def test_download_cleanup_needs_upload(self, client):
        assert client.post("/api/media/download", json={"cleanup": True}).status_code == 400

    def test_download_and_upload(self, client, fleet):
        _, fakes = fleet
        for fake in fakes.values():
            fake.media = {"media": [{"d": "100GOPRO", "fs": [{"n": "A.JPG", "s": "1"}]}]}
            fake.files = {"100GOPRO/A.JPG": b"a"}

        body = client.post("/api/media/download", json={"upload": True}).json()

        assert body["success"] is True
        assert body["files_uploaded"] == 2
        assert {c["state"] for c in body["cameras"]} == {"done"}

    def test_upload_without_archive(self, client, monkeypatch, tmp_path):
        monkeypatch.setattr(main, "download_manager", DownloadManager(tmp_path))
        assert client.post("/api/upload", json={}).status_code == 400

    def test_apply_setting(self, client, fleet):
        _, fakes = fleet

        body = client.post("/api/settings", json={"setting_id": 2, "option": 1}).json()

        assert body["success"] is True
        assert all(fake.count("/gopro/camera/setting") == 1 for fake in fakes.values())

    def test_apply_setting_validates_body(self, client):
        assert client.post("/api/settings", json={"setting_id": "res"}).status_code == 422

    def test_info_and_keep_alive(self, client):
        info = client.get("/api/cameras/info").json()
        assert info["results"][0]["result"]["info"]["model_name"] == "HERO12 Black"
        assert client.post("/api/cameras/keep-alive").json()["success"] is True
