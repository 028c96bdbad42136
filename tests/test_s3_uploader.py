from datetime import date
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from gopro_fleet.errors import ConfigInvalid, UploadError
from gopro_fleet.s3_uploader import S3Config, S3Uploader, get_content_type

DAY = date(2026, 10, 17)


def make_uploader(prefix="", s3_client=None):
    return S3Uploader(S3Config(region="eu-west-1", bucket="footage", prefix=prefix), s3_client=s3_client or MagicMock())


@pytest.mark.unit
class TestKeys:
    def test_key_without_prefix(self):
        assert make_uploader().build_key("192.168.1.20", "GX010002.MP4", DAY) == "192.168.1.20/2026-10-17/GX010002.MP4"

    def test_key_with_prefix(self):
        uploader = make_uploader(prefix="/shoots/day1/")
        assert uploader.build_key("192.168.1.20", "A.JPG", DAY) == "shoots/day1/192.168.1.20/2026-10-17/A.JPG"

    @pytest.mark.parametrize("name,expected", [
        ("GOPR0001.JPG", "image/jpeg"),
        ("GX010002.MP4", "video/mp4"),
        ("GL010002.LRV", "video/mp4"),
        ("GOPR0001.GPR", "image/x-gopro-gpr"),
        ("clip.mov", "video/quicktime"),
        ("GX010002.WAV", "application/octet-stream"),
    ])
    def test_content_type(self, name, expected):
        assert get_content_type(name) == expected


@pytest.mark.unit
class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_file(self, tmp_path):
        path = tmp_path / "GX010002.MP4"
        path.write_bytes(b"video")
        s3 = MagicMock()

        url = await make_uploader("archive", s3).upload_file(path, "192.168.1.20", upload_date=DAY)

        assert url == "s3://footage/archive/192.168.1.20/2026-10-17/GX010002.MP4"
        s3.upload_file.assert_called_once_with(
            str(path), "footage", "archive/192.168.1.20/2026-10-17/GX010002.MP4",
            ExtraArgs={"ContentType": "video/mp4"},
        )

    @pytest.mark.asyncio
    async def test_client_error_becomes_upload_error(self, tmp_path):
        path = tmp_path / "A.JPG"
        path.write_bytes(b"a")
        s3 = MagicMock()
        s3.upload_file.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject"
        )

        with pytest.raises(UploadError) as ei:
            await make_uploader(s3_client=s3).upload_file(path, "192.168.1.20", serial="C1")

        assert ei.value.serial == "C1"
        assert "A.JPG" in ei.value.message

    @pytest.mark.asyncio
    async def test_upload_directory_continues_past_failures(self, tmp_path):
        for name in ("A.JPG", "B.JPG", "C.JPG"):
            (tmp_path / name).write_bytes(b"x")
        (tmp_path / "sub").mkdir()
        s3 = MagicMock()

        def _upload(filename, bucket, key, ExtraArgs=None):
            if filename.endswith("B.JPG"):
                raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")

        s3.upload_file.side_effect = _upload

        urls = await make_uploader(s3_client=s3).upload_directory(tmp_path, "192.168.1.20")

        assert [u.rsplit("/", 1)[1] for u in urls] == ["A.JPG", "C.JPG"]
        assert s3.upload_file.call_count == 3

    @pytest.mark.asyncio
    async def test_upload_directory_missing(self, tmp_path):
        with pytest.raises(UploadError):
            await make_uploader().upload_directory(tmp_path / "nope", "192.168.1.20")


@pytest.mark.unit
class TestS3Config:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        monkeypatch.setenv("AWS_S3_BUCKET", "footage")
        monkeypatch.setenv("AWS_S3_PREFIX", "gopro")
        monkeypatch.delenv("AWS_S3_ENDPOINT_URL", raising=False)

        config = S3Config.from_env()

        assert config == S3Config(region="eu-west-1", bucket="footage", prefix="gopro")

    @pytest.mark.parametrize("missing", ["AWS_REGION", "AWS_S3_BUCKET"])
    def test_missing_setting_is_config_error(self, monkeypatch, missing):
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        monkeypatch.setenv("AWS_S3_BUCKET", "footage")
        monkeypatch.delenv(missing)

        with pytest.raises(ConfigInvalid):
            S3Config.from_env()
