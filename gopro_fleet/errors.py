"""
Error types for fleet operations.

Per-camera failures derive from CameraError and always carry the camera's
serial so the fleet coordinator can attribute them. ConfigInvalid is fatal
and raised before any camera is contacted.
"""
from typing import Optional


class GoProFleetError(Exception):
    """Base error for this package"""


class ConfigInvalid(GoProFleetError):
    """Camera or archive configuration is missing or malformed"""


class CameraError(GoProFleetError):
    def __init__(self, serial: str, message: str):
        super().__init__(message)
        self.serial = serial
        self.message = message

    def __str__(self):
        return f"[{self.serial}] {self.message}"


class Unreachable(CameraError):
    """Connection to the camera was refused or could not be established"""


class Timeout(CameraError):
    """Camera did not answer within the request window"""


class CommandFailed(CameraError):
    """Camera answered with an error, or a command could not be completed"""


class CatalogError(CameraError):
    """Media list could not be fetched or parsed"""


class DownloadError(CameraError):
    def __init__(self, serial: str, message: str, partial_path: Optional[str] = None):
        super().__init__(serial, message)
        # A partially written file may remain here; it is never removed
        self.partial_path = partial_path


class UploadError(CameraError):
    """One or more files could not be written to the archive"""
