import json

import pytest

from fakes import FakeGoPro, RecordingNotifier, make_camera
from gopro_fleet.camera_manager import CameraManager


@pytest.fixture
def fake_gopro():
    return FakeGoPro()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def camera_factory():
    return make_camera


@pytest.fixture
def fleet(notifier):
    """Two cameras with their fakes: (manager, {ip: fake})"""
    fakes = {"192.168.1.20": FakeGoPro(), "192.168.1.21": FakeGoPro()}
    cameras = [make_camera(fake, ip) for ip, fake in fakes.items()]
    return CameraManager(cameras, notifier=notifier), fakes


@pytest.fixture
def config_file(tmp_path):
    def _write(data):
        path = tmp_path / "cohn-config.json"
        path.write_text(data if isinstance(data, str) else json.dumps(data))
        return path
    return _write
