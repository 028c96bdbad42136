"""
Download Manager for GoPro media

Runs the per-camera transfer chain: download from the SD card, upload to the
S3 archive, then optionally remove the local copies. Each stage only runs if
the previous one fully succeeded for that camera:

    PENDING -> DOWNLOADING -> DOWNLOADED | DOWNLOAD_FAILED
    DOWNLOADED -> UPLOADING -> UPLOADED | UPLOAD_FAILED
    UPLOADED -> CLEANED (cleanup on) | DONE (cleanup off)

Local files are only ever deleted after their upload succeeded, so a failed
upload can be retried without downloading again. Cameras run independently;
one camera's failure does not stop the rest of the fleet.
"""
import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from gopro_fleet.camera_manager import PARTIAL_SUFFIX, CameraManager, COHNCamera, FleetResult
from gopro_fleet.errors import CameraError, ConfigInvalid, DownloadError, UploadError
from gopro_fleet.s3_uploader import S3Uploader

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_DIR = Path("downloads")


class TransferState(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    DOWNLOAD_FAILED = "download_failed"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    UPLOAD_FAILED = "upload_failed"
    CLEANED = "cleaned"
    DONE = "done"


FAILED_STATES = (TransferState.DOWNLOAD_FAILED, TransferState.UPLOAD_FAILED)


@dataclass
class TransferRecord:
    serial: str
    ip_address: str
    local_dir: Path
    state: TransferState = TransferState.PENDING
    downloaded: List[Path] = field(default_factory=list)
    uploaded: List[Path] = field(default_factory=list)
    uploaded_urls: List[str] = field(default_factory=list)
    cleaned: List[Path] = field(default_factory=list)
    error: Optional[CameraError] = None

    @property
    def failed(self) -> bool:
        return self.state in FAILED_STATES

    def raise_for_state(self):
        if self.failed and self.error is not None:
            raise self.error

    def to_dict(self) -> dict:
        return {
            "serial": self.serial,
            "ip_address": self.ip_address,
            "local_dir": str(self.local_dir),
            "state": self.state.value,
            "downloaded": len(self.downloaded),
            "uploaded": len(self.uploaded),
            "cleaned": len(self.cleaned),
            "error": self.error.message if self.error else None,
        }


@dataclass
class TransferReport:
    result: FleetResult
    records: Dict[str, TransferRecord]

    @property
    def success(self) -> bool:
        return self.result.success

    @property
    def files_downloaded(self) -> int:
        return sum(len(r.downloaded) for r in self.records.values())

    @property
    def files_uploaded(self) -> int:
        return sum(len(r.uploaded) for r in self.records.values())

    @property
    def devices_succeeded(self) -> int:
        return len(self.result.outcomes) - len(self.result.failures)

    def to_dict(self) -> dict:
        return {
            "action": self.result.action,
            "success": self.success,
            "files_downloaded": self.files_downloaded,
            "files_uploaded": self.files_uploaded,
            "devices_succeeded": self.devices_succeeded,
            "devices_total": len(self.result.outcomes),
            "cameras": [r.to_dict() for r in self.records.values()],
        }


class DownloadManager:
    def __init__(self, download_dir: Optional[Union[str, Path]] = None, uploader: Optional[S3Uploader] = None):
        self.download_dir = Path(download_dir) if download_dir else DEFAULT_DOWNLOAD_DIR
        self.uploader = uploader

    def camera_dir(self, camera: COHNCamera) -> Path:
        """One directory per camera, named after its IP (192_168_1_20)"""
        return self.download_dir / camera.ip_address.replace(".", "_")

    def get_downloaded_files(self, camera: COHNCamera) -> List[Path]:
        """Completed downloads in the camera's directory. Unfinished .part files are skipped."""
        local_dir = self.camera_dir(camera)
        if not local_dir.is_dir():
            return []
        return sorted(p for p in local_dir.iterdir() if p.is_file() and p.suffix != PARTIAL_SUFFIX)

    def _new_record(self, camera: COHNCamera) -> TransferRecord:
        return TransferRecord(camera.serial, camera.ip_address, self.camera_dir(camera))

    def _require_uploader(self) -> S3Uploader:
        if self.uploader is None:
            raise ConfigInvalid("Upload requested but no S3 archive is configured")
        return self.uploader

    # ============== Stages ==============

    async def download_stage(self, camera: COHNCamera, record: TransferRecord):
        record.state = TransferState.DOWNLOADING
        try:
            files = await camera.list_media()
        except CameraError as e:
            record.state = TransferState.DOWNLOAD_FAILED
            record.error = e
            return

        if not files:
            logger.info(f"[{camera.serial}] No files to download")
        else:
            logger.info(f"[{camera.serial}] Downloading {len(files)} file(s) to {record.local_dir}...")

        failed = []
        for idx, media in enumerate(files, 1):
            try:
                downloaded = await camera.download_file(
                    media.folder, media.name, record.local_dir, expected_size=media.size
                )
                record.downloaded.append(downloaded.path)
                logger.info(f"  [{idx}/{len(files)}] ✓ {media.name}")
            except DownloadError as e:
                # Anything partially written stays where it is for the next run
                logger.error(f"  [{idx}/{len(files)}] ✗ {media.name}: {e.message}")
                failed.append(media.name)

        if failed:
            record.state = TransferState.DOWNLOAD_FAILED
            record.error = DownloadError(
                camera.serial, f"{len(failed)}/{len(files)} file(s) failed to download: {', '.join(failed)}"
            )
            return
        record.state = TransferState.DOWNLOADED

    async def upload_stage(self, record: TransferRecord):
        if record.state != TransferState.DOWNLOADED:
            raise RuntimeError(f"[{record.serial}] upload requires a completed download, state is {record.state.value}")
        uploader = self._require_uploader()

        record.state = TransferState.UPLOADING
        logger.info(f"[{record.serial}] Uploading {len(record.downloaded)} file(s)...")
        failed = []
        for path in record.downloaded:
            try:
                url = await uploader.upload_file(path, record.ip_address, serial=record.serial)
            except UploadError as e:
                logger.error(f"  ✗ {path.name}: {e.message}")
                failed.append(path.name)
                continue
            record.uploaded.append(path)
            record.uploaded_urls.append(url)

        if failed:
            # Local files are kept so the upload can be retried
            record.state = TransferState.UPLOAD_FAILED
            record.error = UploadError(
                record.serial,
                f"{len(failed)}/{len(record.downloaded)} file(s) failed to upload: {', '.join(failed)}"
            )
            return
        record.state = TransferState.UPLOADED

    def _remove_file(self, path: Path):
        path.unlink()

    def cleanup_stage(self, record: TransferRecord):
        if record.state != TransferState.UPLOADED:
            raise RuntimeError(f"[{record.serial}] cleanup requires a completed upload, state is {record.state.value}")

        for path in record.uploaded:
            try:
                self._remove_file(path)
                record.cleaned.append(path)
            except FileNotFoundError:
                record.cleaned.append(path)
            except OSError as e:
                logger.warning(f"[{record.serial}] Could not remove {path}: {e}")

        try:
            record.local_dir.rmdir()
        except OSError:
            # Not empty or already gone
            pass
        logger.info(f"[{record.serial}] 🧹 Removed {len(record.cleaned)} local file(s)")
        record.state = TransferState.CLEANED

    # ============== Per-camera chains ==============

    async def transfer_camera(self, camera: COHNCamera, upload: bool = True, cleanup: bool = False) -> TransferRecord:
        record = self._new_record(camera)
        await self.download_stage(camera, record)
        if record.state != TransferState.DOWNLOADED or not upload:
            return record
        return await self._finish(record, cleanup)

    async def upload_local(self, camera: COHNCamera, cleanup: bool = False) -> TransferRecord:
        """Upload whatever an earlier run left in the camera's directory"""
        record = self._new_record(camera)
        record.downloaded = self.get_downloaded_files(camera)
        record.state = TransferState.DOWNLOADED
        if not record.downloaded:
            logger.info(f"[{camera.serial}] No local files to upload in {record.local_dir}")
        return await self._finish(record, cleanup)

    async def _finish(self, record: TransferRecord, cleanup: bool) -> TransferRecord:
        await self.upload_stage(record)
        if record.state != TransferState.UPLOADED:
            return record
        if cleanup:
            self.cleanup_stage(record)
        else:
            record.state = TransferState.DONE
        return record

    def remove_local(self, camera: COHNCamera) -> int:
        """Delete the camera's whole local directory. Returns files removed."""
        local_dir = self.camera_dir(camera)
        if not local_dir.exists():
            return 0
        count = sum(1 for p in local_dir.rglob("*") if p.is_file())
        shutil.rmtree(local_dir)
        logger.info(f"[{camera.serial}] 🗑️  Removed {local_dir} ({count} file(s))")
        return count

    # ============== Fleet ==============

    async def _run_transfers(self, camera_manager: CameraManager, action: str, chain) -> TransferReport:
        records: Dict[str, TransferRecord] = {}

        async def _transfer(camera: COHNCamera):
            record = await chain(camera)
            records[camera.serial] = record
            record.raise_for_state()
            return record.to_dict()

        result = await camera_manager.run_on_all(_transfer, action)
        report = TransferReport(result=result, records=records)
        logger.info(
            f"{action}: {report.files_downloaded} downloaded, {report.files_uploaded} uploaded, "
            f"{report.devices_succeeded}/{len(result.outcomes)} camera(s) OK"
        )
        return report

    async def download_all(self, camera_manager: CameraManager, upload: bool = False,
                           cleanup: bool = False) -> TransferReport:
        if upload:
            self._require_uploader()
        action = "Downloading and uploading files" if upload else "Downloading files"
        return await self._run_transfers(
            camera_manager, action,
            lambda camera: self.transfer_camera(camera, upload=upload, cleanup=cleanup)
        )

    async def upload_all(self, camera_manager: CameraManager, cleanup: bool = False) -> TransferReport:
        self._require_uploader()
        return await self._run_transfers(
            camera_manager, "Uploading files",
            lambda camera: self.upload_local(camera, cleanup=cleanup)
        )

    async def cleanup_local_all(self, camera_manager: CameraManager) -> FleetResult:
        async def _cleanup(camera: COHNCamera):
            try:
                return {"removed": self.remove_local(camera)}
            except OSError as e:
                raise CameraError(camera.serial, f"Failed to remove local files: {e}") from e
        return await camera_manager.run_on_all(_cleanup, "Cleaning local files")
