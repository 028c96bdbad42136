"""
GoPro Camera Management via COHN HTTPS

COHNCamera talks to one camera. CameraManager fans a single operation out
to every configured camera at once and collects one outcome per camera; a
failing camera never stops or delays the others.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from gopro_fleet.cohn_manager import COHNManager, DeviceEndpoint
from gopro_fleet.errors import (
    CameraError,
    CatalogError,
    CommandFailed,
    DownloadError,
    Timeout,
    Unreachable,
)
from gopro_fleet.media_catalog import MediaFile, resolve_media_list
from gopro_fleet.notification_manager import Alert, AlertSink, DeviceFailure
from gopro_fleet.retry import RetryPolicy

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SEC = 10.0
WAKE_TIMEOUT_SEC = 5.0
DOWNLOAD_TIMEOUT_SEC = 300.0  # large media
PARTIAL_SUFFIX = ".part"

STATE_PATH = "/gopro/camera/state"
INFO_PATH = "/gopro/camera/info"
KEEP_ALIVE_PATH = "/gopro/camera/keep_alive"
SETTING_PATH = "/gopro/camera/setting"
SHUTTER_START_PATH = "/gopro/camera/shutter/start"
SHUTTER_STOP_PATH = "/gopro/camera/shutter/stop"
MEDIA_LIST_PATH = "/gopro/media/list"
MEDIA_DOWNLOAD_PATH = "/videos/DCIM"
DELETE_FILE_PATH = "/gp/gpControl/command/storage/delete"
DELETE_ALL_PATH = "/gp/gpControl/command/storage/delete/all"


@dataclass(frozen=True)
class DownloadedFile:
    path: Path
    bytes_written: int
    expected_size: int = 0

    @property
    def size_mismatch(self) -> bool:
        # Grouped members and RAW companions report 0, nothing to compare
        return self.expected_size > 0 and self.bytes_written != self.expected_size


def parse_state_to_health(serial: str, name: str, state: dict) -> dict:
    """Convert raw COHN /gopro/camera/state response into health dict"""
    status = state.get("status", {}) or {}
    # GoPro status IDs (string keys in JSON):
    # "2"=encoding, "6"=system_hot, "8"=is_busy, "10"=gps_stat,
    # "13"=video_progress(sec), "33"=sd_status, "35"=video_rem(min),
    # "54"=space_rem(KB), "70"=int_batt_per, "86"=thermal_mitigation
    def _int(key):
        value = status.get(key)
        try:
            return int(value) if value is not None else None
        except (ValueError, TypeError):
            return None

    encoding = status.get("8") or status.get("2")
    sd = status.get("33")
    return {
        "serial": serial,
        "name": name,
        "battery_percent": _int("70"),
        "storage_remaining_kb": _int("54"),
        "video_remaining_min": _int("35"),
        "sd_status": str(sd) if sd is not None else None,
        "is_encoding": bool(encoding),
        "recording_duration_sec": _int("13"),
        "system_hot": bool(status.get("6")),
        "thermal_mitigation": bool(status.get("86")),
        "gps_lock": bool(status.get("10")),
        "num_videos": status.get("39"),
        "num_photos": status.get("40"),
    }


class COHNCamera:
    def __init__(
        self,
        endpoint: DeviceEndpoint,
        verify: Any = False,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = REQUEST_TIMEOUT_SEC,
    ):
        self.endpoint = endpoint
        self.retry_policy = retry_policy or RetryPolicy()
        self.client = httpx.AsyncClient(
            base_url=endpoint.base_url,
            headers={"Authorization": endpoint.auth_header, "Connection": "keep-alive"},
            verify=verify,
            timeout=timeout,
            transport=transport,
        )

    @property
    def serial(self) -> str:
        return self.endpoint.serial

    @property
    def ip_address(self) -> str:
        return self.endpoint.ip_address

    @property
    def name(self) -> str:
        return self.endpoint.name

    async def aclose(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    # ============== Transport ==============

    async def _request(self, method: str, path: str, params: Optional[dict] = None,
                       timeout: Optional[float] = None) -> httpx.Response:
        """Authenticated request, with transport failures mapped to camera errors"""
        kwargs = {"params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            resp = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise Timeout(
                self.serial, f"Connection timeout - camera may be sleeping or unreachable ({type(e).__name__})"
            ) from e
        except httpx.ConnectError as e:
            raise Unreachable(
                self.serial, f"Cannot connect to GoPro at {self.ip_address} - check if camera is on network: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise CommandFailed(self.serial, f"{method} {path} failed: {type(e).__name__}: {e}") from e

        if resp.status_code >= 400:
            raise CommandFailed(self.serial, f"{method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}")
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        # Some commands answer with an empty body or plain text
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return resp.text

    async def wake_up(self):
        """Best-effort wake-up request; failures are ignored"""
        try:
            await self.client.get(STATE_PATH, timeout=WAKE_TIMEOUT_SEC)
        except Exception as e:
            logger.debug(f"[{self.serial}] Wake-up request failed: {e}")

    async def keep_alive(self):
        try:
            await self.client.get(KEEP_ALIVE_PATH, timeout=WAKE_TIMEOUT_SEC)
        except Exception as e:
            logger.debug(f"[{self.serial}] Keep-alive failed: {e}")

    # ============== State ==============

    async def get_status(self) -> dict:
        await self.wake_up()
        resp = await self._request("GET", STATE_PATH)
        return self._json(resp)

    async def get_settings(self, state: Optional[dict] = None) -> dict:
        if state is None:
            state = await self.get_status()
        return state.get("settings", {}) if isinstance(state, dict) else {}

    async def get_health(self, state: Optional[dict] = None) -> dict:
        """Parsed health summary; pass a state already fetched to skip the request"""
        if state is None:
            state = await self.get_status()
        return parse_state_to_health(self.serial, self.name, state if isinstance(state, dict) else {})

    async def get_info(self) -> dict:
        resp = await self._request("GET", INFO_PATH)
        return self._json(resp)

    async def set_setting(self, setting_id: int, option: int) -> dict:
        resp = await self._request("GET", SETTING_PATH, params={"setting": setting_id, "option": option})
        logger.info(f"[{self.serial}] Setting {setting_id} = {option}")
        return self._json(resp)

    # ============== Capture ==============

    async def _shutter(self, path: str):
        await self.wake_up()
        await self._request("GET", path)

    async def start_capture(self):
        """Press the shutter. Retried, since the camera occasionally misses a command."""
        await self.retry_policy.run(lambda: self._shutter(SHUTTER_START_PATH), f"[{self.serial}] Start capture")
        logger.info(f"[{self.serial}] ✓ Capture started")

    async def stop_capture(self):
        await self.retry_policy.run(lambda: self._shutter(SHUTTER_STOP_PATH), f"[{self.serial}] Stop capture")
        logger.info(f"[{self.serial}] ✓ Capture stopped")

    # ============== Media ==============

    async def list_media(self) -> List[MediaFile]:
        try:
            await self.wake_up()
            resp = await self._request("GET", MEDIA_LIST_PATH)
            return resolve_media_list(resp.json())
        except CameraError as e:
            raise CatalogError(self.serial, f"Failed to get media list: {e.message}") from e
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            raise CatalogError(self.serial, f"Malformed media list: {type(e).__name__}: {e}") from e

    async def download_file(self, folder: str, name: str, destination_dir: Union[str, Path],
                            expected_size: int = 0) -> DownloadedFile:
        """Stream one file from the SD card into destination_dir.

        Data goes to <name>.part and is renamed to <name> once the stream has
        finished, so only complete files carry their real name. A failed
        download leaves the .part file behind; DownloadError.partial_path
        points at it. It is not removed.
        """
        destination = Path(destination_dir)
        output_path = destination / name
        part_path = destination / f"{name}{PARTIAL_SUFFIX}"
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DownloadError(self.serial, f"Cannot create {destination}: {e}") from e

        url = f"{MEDIA_DOWNLOAD_PATH}/{folder}/{name}"
        loop = asyncio.get_running_loop()
        written = 0
        try:
            async with self.client.stream("GET", url, timeout=DOWNLOAD_TIMEOUT_SEC) as resp:
                if resp.status_code >= 400:
                    raise DownloadError(self.serial, f"Failed to download {name}: HTTP {resp.status_code}")
                f = await loop.run_in_executor(None, open, part_path, "wb")
                try:
                    # Every chunk is written as it arrives
                    async for chunk in resp.aiter_bytes():
                        await loop.run_in_executor(None, f.write, chunk)
                        written += len(chunk)
                finally:
                    await loop.run_in_executor(None, f.close)
            await loop.run_in_executor(None, part_path.replace, output_path)
        except (httpx.HTTPError, OSError) as e:
            partial = str(part_path) if part_path.exists() else None
            raise DownloadError(
                self.serial, f"Failed to download {name}: {type(e).__name__}: {e}", partial_path=partial
            ) from e

        downloaded = DownloadedFile(path=output_path, bytes_written=written, expected_size=expected_size)
        if downloaded.size_mismatch:
            logger.warning(
                f"[{self.serial}] {name}: wrote {written} bytes, listing reported {expected_size}"
            )
        logger.info(f"[{self.serial}] Downloaded: {name} ({written / (1024 * 1024):.1f} MB)")
        return downloaded

    async def delete_file(self, folder: str, name: str):
        # Destructive: never retried
        await self._request("GET", DELETE_FILE_PATH, params={"p": f"{folder}/{name}"})
        logger.info(f"[{self.serial}] Deleted: {name}")

    async def delete_all(self):
        await self._request("GET", DELETE_ALL_PATH)
        logger.info(f"[{self.serial}] All files deleted")

    def to_dict(self) -> dict:
        return self.endpoint.to_dict()


# ============== Fleet ==============

@dataclass
class OperationOutcome:
    serial: str
    ip_address: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        data = {"serial": self.serial, "ip_address": self.ip_address, "success": self.success}
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        return data


@dataclass
class FleetResult:
    action: str
    outcomes: List[OperationOutcome]

    @property
    def success(self) -> bool:
        return all(o.success for o in self.outcomes)

    @property
    def failures(self) -> List[OperationOutcome]:
        return [o for o in self.outcomes if not o.success]

    def get(self, serial: str) -> Optional[OperationOutcome]:
        for outcome in self.outcomes:
            if outcome.serial == serial:
                return outcome
        return None

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "success": self.success,
            "results": [o.to_dict() for o in self.outcomes],
        }


class CameraManager:
    def __init__(self, cameras: List[COHNCamera], notifier: Optional[AlertSink] = None):
        self.cameras: Dict[str, COHNCamera] = {camera.serial: camera for camera in cameras}
        self.notifier = notifier

    @classmethod
    def from_config(cls, cohn_manager: COHNManager, notifier: Optional[AlertSink] = None,
                    retry_policy: Optional[RetryPolicy] = None) -> "CameraManager":
        cameras = [
            COHNCamera(endpoint, verify=cohn_manager.ssl_verify(endpoint), retry_policy=retry_policy)
            for endpoint in cohn_manager.get_all_endpoints()
        ]
        logger.info(f"Loaded {len(cameras)} camera(s) from configuration")
        return cls(cameras, notifier=notifier)

    def get_camera(self, serial: str) -> Optional[COHNCamera]:
        return self.cameras.get(serial)

    def list_cameras(self) -> List[dict]:
        return [camera.to_dict() for camera in self.cameras.values()]

    async def close_all(self):
        await asyncio.gather(*(camera.aclose() for camera in self.cameras.values()), return_exceptions=True)

    async def _run_one(self, camera: COHNCamera, operation: Callable[[COHNCamera], Awaitable[Any]]) -> OperationOutcome:
        try:
            result = await operation(camera)
            return OperationOutcome(camera.serial, camera.ip_address, True, result=result)
        except Exception as e:
            if not isinstance(e, CameraError):
                logger.error(f"[{camera.serial}] Unexpected error: {e}", exc_info=True)
            message = e.message if isinstance(e, CameraError) else f"{type(e).__name__}: {e}"
            return OperationOutcome(camera.serial, camera.ip_address, False, error=message, exception=e)

    async def run_on_all(self, operation: Callable[[COHNCamera], Awaitable[Any]], action: str) -> FleetResult:
        """Run operation on every camera concurrently and wait for all of them.

        One outcome per camera. If any camera failed, a single alert listing
        every failure goes to the notifier.
        """
        cameras = list(self.cameras.values())
        logger.info("=" * 60)
        logger.info(f"{action} on {len(cameras)} camera(s)...")

        settled = await asyncio.gather(
            *(self._run_one(camera, operation) for camera in cameras),
            return_exceptions=True
        )
        outcomes = []
        for camera, item in zip(cameras, settled):
            if isinstance(item, OperationOutcome):
                outcomes.append(item)
            else:
                # Cancelled or a BaseException escaped the operation
                outcomes.append(OperationOutcome(
                    camera.serial, camera.ip_address, False, error=f"{type(item).__name__}: {item}", exception=item
                ))

        result = FleetResult(action=action, outcomes=outcomes)
        for outcome in outcomes:
            if outcome.success:
                logger.info(f"✓ {outcome.serial} ({outcome.ip_address}): Success")
            else:
                logger.error(f"✗ {outcome.serial} ({outcome.ip_address}): Failed - {outcome.error}")
        logger.info(f"{action}: {len(outcomes) - len(result.failures)}/{len(outcomes)} camera(s) succeeded")
        logger.info("=" * 60)

        if result.failures:
            await self._notify(result)
        return result

    async def _notify(self, result: FleetResult):
        if not self.notifier:
            return
        alert = Alert.from_failures(
            result.action,
            [DeviceFailure(o.serial, o.ip_address, o.error or "") for o in result.failures],
            timestamp=datetime.now(),
        )
        try:
            await self.notifier.send(alert)
        except Exception as e:
            logger.error(f"Failed to send notification: {e}")

    # ============== Fleet operations ==============

    async def start_all(self) -> FleetResult:
        async def _start(camera: COHNCamera):
            await camera.start_capture()
        return await self.run_on_all(_start, "Starting capture")

    async def stop_all(self) -> FleetResult:
        async def _stop(camera: COHNCamera):
            await camera.stop_capture()
        return await self.run_on_all(_stop, "Stopping capture")

    async def status_all(self) -> FleetResult:
        async def _status(camera: COHNCamera):
            state = await camera.get_status()
            return {
                "health": await camera.get_health(state),
                "settings": await camera.get_settings(state),
            }
        return await self.run_on_all(_status, "Getting status")

    async def info_all(self) -> FleetResult:
        async def _info(camera: COHNCamera):
            return await camera.get_info()
        return await self.run_on_all(_info, "Getting camera info")

    async def set_setting_all(self, setting_id: int, option: int) -> FleetResult:
        async def _set(camera: COHNCamera):
            return await camera.set_setting(setting_id, option)
        return await self.run_on_all(_set, f"Setting {setting_id} = {option}")

    async def keep_alive_all(self) -> FleetResult:
        async def _keep_alive(camera: COHNCamera):
            await camera.keep_alive()
        return await self.run_on_all(_keep_alive, "Sending keep-alive")

    async def list_media_all(self) -> FleetResult:
        async def _list(camera: COHNCamera):
            return await camera.list_media()
        return await self.run_on_all(_list, "Listing files")

    async def delete_all_media(self) -> FleetResult:
        async def _delete(camera: COHNCamera):
            await camera.delete_all()
        return await self.run_on_all(_delete, "Deleting all files")
