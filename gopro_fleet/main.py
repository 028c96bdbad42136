"""
FastAPI backend for GoPro fleet control
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from gopro_fleet import __version__
from gopro_fleet.camera_manager import CameraManager, FleetResult
from gopro_fleet.cohn_manager import COHNManager
from gopro_fleet.download_manager import DownloadManager
from gopro_fleet.errors import ConfigInvalid
from gopro_fleet.logging_utils import setup_logging
from gopro_fleet.notification_manager import NotificationConfig, NotificationManager
from gopro_fleet.s3_uploader import S3Config, S3Uploader

logger = logging.getLogger(__name__)

# Managers, created at startup
cohn_manager: Optional[COHNManager] = None
camera_manager: Optional[CameraManager] = None
download_manager: Optional[DownloadManager] = None


def _build_uploader() -> Optional[S3Uploader]:
    """S3 is optional for the API; upload endpoints refuse to run without it"""
    try:
        return S3Uploader(S3Config.from_env())
    except ConfigInvalid as e:
        logger.warning(f"S3 archive not configured, uploads disabled: {e}")
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global cohn_manager, camera_manager, download_manager
    load_dotenv()
    setup_logging()

    # A bad camera config stops the server from starting
    cohn_manager = COHNManager()
    notifier = NotificationManager(NotificationConfig.from_env())
    camera_manager = CameraManager.from_config(cohn_manager, notifier=notifier)
    download_manager = DownloadManager(os.environ.get("GOPRO_DOWNLOAD_DIR"), uploader=_build_uploader())
    try:
        yield
    finally:
        await camera_manager.close_all()


app = FastAPI(title="GoPro Fleet API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============== Models ==============

class DownloadModel(BaseModel):
    upload: bool = False
    cleanup: bool = False


class UploadModel(BaseModel):
    cleanup: bool = False


class ConfirmModel(BaseModel):
    confirm: bool = False


class SettingModel(BaseModel):
    setting_id: int
    option: int


def _get_camera_manager() -> CameraManager:
    if camera_manager is None:
        raise HTTPException(status_code=503, detail="Cameras not loaded")
    return camera_manager


def _get_download_manager() -> DownloadManager:
    if download_manager is None:
        raise HTTPException(status_code=503, detail="Download manager not ready")
    return download_manager


def _require_confirm(body: ConfirmModel, what: str):
    if not body.confirm:
        raise HTTPException(status_code=400, detail=f"This will delete {what}. Resend with confirm=true.")


def _fleet_response(result: FleetResult) -> dict:
    return result.to_dict()


# ============== Cameras ==============

@app.get("/health")
async def health_check():
    return {"status": "ok", "version": __version__}


@app.get("/api/cameras")
async def list_cameras():
    return {"cameras": _get_camera_manager().list_cameras()}


@app.get("/api/cameras/status")
async def get_cameras_status():
    """Health and settings from every camera"""
    try:
        result = await _get_camera_manager().status_all()
        return _fleet_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Status failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/cameras/info")
async def get_cameras_info():
    try:
        result = await _get_camera_manager().info_all()
        return _fleet_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Info failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/cameras/keep-alive")
async def keep_alive():
    result = await _get_camera_manager().keep_alive_all()
    return _fleet_response(result)


@app.post("/api/settings")
async def apply_setting(body: SettingModel):
    """Apply one setting on all cameras"""
    try:
        result = await _get_camera_manager().set_setting_all(body.setting_id, body.option)
        return _fleet_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Setting {body.setting_id} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# ============== Recording ==============

@app.post("/api/recording/start")
async def start_recording():
    """Start capture on all cameras"""
    try:
        result = await _get_camera_manager().start_all()
        return _fleet_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Start recording failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/recording/stop")
async def stop_recording():
    """Stop capture on all cameras"""
    try:
        result = await _get_camera_manager().stop_all()
        return _fleet_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Stop recording failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# ============== Media ==============

@app.get("/api/media/list")
async def get_media_list():
    try:
        result = await _get_camera_manager().list_media_all()
        response = result.to_dict()
        for entry, outcome in zip(response["results"], result.outcomes):
            if outcome.success:
                entry["result"] = [media.to_dict() for media in outcome.result]
        return response
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Media list failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/media/download")
async def download_media(body: DownloadModel):
    """Download from every camera, optionally uploading and cleaning up"""
    if body.cleanup and not body.upload:
        raise HTTPException(status_code=400, detail="cleanup requires upload")
    try:
        report = await _get_download_manager().download_all(
            _get_camera_manager(), upload=body.upload, cleanup=body.cleanup
        )
        return report.to_dict()
    except ConfigInvalid as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Download failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/media/delete-all")
async def delete_all_media(body: ConfirmModel):
    _require_confirm(body, "ALL files from ALL cameras")
    try:
        result = await _get_camera_manager().delete_all_media()
        return _fleet_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Delete failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# ============== Upload & local files ==============

@app.post("/api/upload")
async def upload_files(body: UploadModel):
    """Upload files already downloaded for each camera"""
    try:
        report = await _get_download_manager().upload_all(_get_camera_manager(), cleanup=body.cleanup)
        return report.to_dict()
    except ConfigInvalid as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Upload failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/downloads/cleanup")
async def cleanup_local(body: ConfirmModel):
    _require_confirm(body, "all local downloads")
    try:
        result = await _get_download_manager().cleanup_local_all(_get_camera_manager())
        return _fleet_response(result)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Local cleanup failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level="info")
