"""
COHN (Camera on Home Network) Manager

Loads the fleet's COHN credentials file and turns each record into a
DeviceEndpoint: address, basic-auth credentials and the camera's certificate.
Cameras are provisioned onto the home network by an external tool; this
module only reads what that tool wrote.

cohn-config.json:
    {"cameras": [{"serial": "C3501324500001", "ip_address": "192.168.1.20",
                  "username": "gopro", "password": "...", "certificate": "-----BEGIN..."}]}
"""
import base64
import json
import logging
import os
import ssl
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from gopro_fleet.errors import ConfigInvalid

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("cohn-config.json")

# Temp cert directory
CERT_DIR = Path(tempfile.gettempdir()) / "gopro_cohn_certs"


def verify_ssl_enabled() -> bool:
    """GOPRO_VERIFY_SSL=0 accepts any certificate even when one is configured"""
    return os.environ.get("GOPRO_VERIFY_SSL", "1").strip().lower() not in ("0", "false", "no")


class DeviceEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip_address: str
    username: str
    password: str
    certificate: str = ""
    serial: str = ""
    name: str = ""

    @field_validator("ip_address", "username", "password")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @model_validator(mode="before")
    @classmethod
    def _default_serial(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # The IP doubles as the identifier when no serial was recorded
        serial = str(data.get("serial") or "").strip() or str(data.get("ip_address") or "").strip()
        data["serial"] = serial
        if not data.get("name"):
            data["name"] = f"GoPro {serial}"
        return data

    @property
    def base_url(self) -> str:
        return f"https://{self.ip_address}"

    @property
    def auth_header(self) -> str:
        """Return Basic auth header value"""
        auth = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return f"Basic {auth}"

    def to_dict(self) -> dict:
        """Public view, without secrets"""
        return {
            "serial": self.serial,
            "name": self.name,
            "ip_address": self.ip_address,
            "has_certificate": bool(self.certificate),
        }


class COHNManager:
    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path or os.environ.get("GOPRO_COHN_CONFIG") or DEFAULT_CONFIG_FILE)
        self.endpoints: Dict[str, DeviceEndpoint] = {}
        self._load()

    # ============== Persistence ==============

    def _load(self):
        """Load and validate cohn-config.json. Any problem is fatal."""
        if not self.config_path.exists():
            raise ConfigInvalid(
                f"{self.config_path} not found - run COHN provisioning first to generate it"
            )

        try:
            with open(self.config_path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigInvalid(f"Error loading {self.config_path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("cameras"), list):
            raise ConfigInvalid(f"Invalid {self.config_path.name} format - missing 'cameras' array")
        if not data["cameras"]:
            raise ConfigInvalid(f"No cameras configured in {self.config_path.name}")

        for index, record in enumerate(data["cameras"]):
            try:
                endpoint = DeviceEndpoint.model_validate(record)
            except ValidationError as e:
                raise ConfigInvalid(f"Camera #{index + 1} in {self.config_path.name} is invalid: {e}") from e
            if endpoint.serial in self.endpoints:
                raise ConfigInvalid(f"Duplicate camera '{endpoint.serial}' in {self.config_path.name}")
            # One download directory and S3 prefix per address
            if any(e.ip_address == endpoint.ip_address for e in self.endpoints.values()):
                raise ConfigInvalid(f"Duplicate ip_address {endpoint.ip_address} in {self.config_path.name}")
            self.endpoints[endpoint.serial] = endpoint

        logger.info(f"Loaded COHN credentials for {len(self.endpoints)} camera(s)")

    # ============== Credential Access ==============

    def get_endpoint(self, serial: str) -> Optional[DeviceEndpoint]:
        return self.endpoints.get(serial)

    def get_all_endpoints(self) -> List[DeviceEndpoint]:
        """All configured cameras, in file order"""
        return list(self.endpoints.values())

    def is_provisioned(self, serial: str) -> bool:
        return serial in self.endpoints

    # ============== TLS ==============

    def _write_temp_cert(self, endpoint: DeviceEndpoint) -> Optional[str]:
        """Write certificate to temp file for SSL verification"""
        if not endpoint.certificate:
            return None
        CERT_DIR.mkdir(parents=True, exist_ok=True)
        safe_name = endpoint.serial.replace("/", "_").replace(":", "_")
        cert_path = CERT_DIR / f"gopro_{safe_name}.pem"
        cert_path.write_text(endpoint.certificate)
        return str(cert_path)

    def ssl_verify(self, endpoint: DeviceEndpoint) -> Union[ssl.SSLContext, bool]:
        """httpx `verify` value for a camera.

        The camera's certificate is the trusted root when present. Cameras are
        addressed by IP so hostname checking is off. Without a certificate the
        self-signed one is accepted as-is.
        """
        if not verify_ssl_enabled():
            return False
        try:
            cert_path = self._write_temp_cert(endpoint)
            if not cert_path:
                return False
            ctx = ssl.create_default_context(cafile=cert_path)
        except (ssl.SSLError, OSError) as e:
            raise ConfigInvalid(f"Camera '{endpoint.serial}' certificate is invalid: {e}") from e
        ctx.check_hostname = False
        return ctx
