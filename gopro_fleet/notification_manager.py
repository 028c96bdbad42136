"""
Failure notifications

The fleet manager hands over one Alert per failed fleet operation. It is
delivered to every enabled channel: webhook (ntfy.sh, Slack, Discord or a
generic JSON POST), e-mail through SES and SMS through SNS. A channel that
fails is logged and skipped.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

import boto3
import httpx

logger = logging.getLogger(__name__)

SMS_MAX_LENGTH = 160
WEBHOOK_TIMEOUT_SEC = 10.0


@dataclass(frozen=True)
class DeviceFailure:
    serial: str
    ip_address: str
    error: str


@dataclass
class Alert:
    action: str
    error: str
    timestamp: datetime = field(default_factory=datetime.now)
    camera: Optional[str] = None
    failures: List[DeviceFailure] = field(default_factory=list)

    @classmethod
    def from_failures(cls, action: str, failures: List[DeviceFailure],
                      timestamp: Optional[datetime] = None) -> "Alert":
        """One alert covering every failed camera of a fleet operation"""
        body = "\n".join(f"{f.serial} ({f.ip_address}): {f.error}" for f in failures)
        camera = failures[0].ip_address if len(failures) == 1 else None
        return cls(
            action=action,
            error=body,
            timestamp=timestamp or datetime.now(),
            camera=camera,
            failures=list(failures),
        )

    @property
    def subject(self) -> str:
        return f"🚨 GoPro Error: {self.action}"

    def format_message(self) -> str:
        message = "❌ GoPro Error Alert\n\n"
        message += f"⏰ Time: {self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}\n"
        message += f"🎬 Action: {self.action}\n"
        if self.camera:
            message += f"📷 Camera: {self.camera}\n"
        elif self.failures:
            message += f"📷 Cameras failed: {len(self.failures)}\n"
        message += f"\n❗ Error:\n{self.error}"
        return message


class AlertSink(Protocol):
    async def send(self, alert: Alert) -> None:
        ...


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() == "true"


@dataclass(frozen=True)
class NotificationConfig:
    enabled: bool = False
    email_enabled: bool = False
    sms_enabled: bool = False
    email_to: Optional[str] = None
    email_from: Optional[str] = None
    phone_number: Optional[str] = None
    webhook_url: Optional[str] = None
    aws_region: str = "us-east-1"

    @classmethod
    def from_env(cls) -> "NotificationConfig":
        return cls(
            enabled=_env_flag("NOTIFICATIONS_ENABLED"),
            email_enabled=_env_flag("EMAIL_NOTIFICATIONS"),
            sms_enabled=_env_flag("SMS_NOTIFICATIONS"),
            email_to=os.environ.get("NOTIFICATION_EMAIL_TO") or None,
            email_from=os.environ.get("NOTIFICATION_EMAIL_FROM") or None,
            phone_number=os.environ.get("NOTIFICATION_PHONE") or None,
            webhook_url=os.environ.get("NOTIFICATION_WEBHOOK_URL") or None,
            aws_region=os.environ.get("AWS_REGION") or "us-east-1",
        )


class NotificationManager:
    def __init__(self, config: NotificationConfig, ses_client=None, sns_client=None,
                 http_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._ses = ses_client
        self._sns = sns_client
        self._http_transport = http_transport

    @property
    def ses(self):
        if self._ses is None:
            self._ses = boto3.client("ses", region_name=self.config.aws_region)
        return self._ses

    @property
    def sns(self):
        if self._sns is None:
            self._sns = boto3.client("sns", region_name=self.config.aws_region)
        return self._sns

    async def send(self, alert: Alert) -> None:
        if not self.config.enabled:
            logger.debug(f"Notifications disabled, dropping alert for '{alert.action}'")
            return

        subject = alert.subject
        message = alert.format_message()
        sends = []
        if self.config.webhook_url:
            sends.append(self._send_webhook(subject, message))
        if self.config.email_enabled and self.config.email_to:
            sends.append(self._send_email(subject, message))
        if self.config.sms_enabled and self.config.phone_number:
            sends.append(self._send_sms(message))

        if not sends:
            logger.warning("Notifications enabled but no channel is configured")
            return
        await asyncio.gather(*sends, return_exceptions=True)

    # ============== Channels ==============

    def _webhook_request(self, subject: str, message: str) -> dict:
        """httpx.post kwargs for the webhook flavour the URL points at"""
        url = self.config.webhook_url
        if "ntfy.sh" in url:
            return {
                "content": message.encode("utf-8"),
                "headers": {
                    "Title": subject.encode("utf-8"),
                    "Priority": "urgent",
                    "Tags": "rotating_light,camera",
                },
            }
        if "slack.com" in url:
            return {"json": {"text": f"{subject}\n\n{message}"}}
        if "discord.com" in url:
            return {"json": {"content": f"{subject}\n```\n{message}\n```"}}
        return {"json": {"subject": subject, "message": message}}

    async def _send_webhook(self, subject: str, message: str):
        try:
            async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SEC, transport=self._http_transport) as client:
                resp = await client.post(self.config.webhook_url, **self._webhook_request(subject, message))
                resp.raise_for_status()
            logger.info("✓ Webhook notification sent")
        except Exception as e:
            logger.error(f"Failed to send webhook: {e}")

    async def _send_email(self, subject: str, message: str):
        if not self.config.email_to or not self.config.email_from:
            logger.error("Email configuration missing (NOTIFICATION_EMAIL_TO or NOTIFICATION_EMAIL_FROM)")
            return
        try:
            await asyncio.get_running_loop().run_in_executor(None, lambda: self.ses.send_email(
                Source=self.config.email_from,
                Destination={"ToAddresses": [self.config.email_to]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": message, "Charset": "UTF-8"}},
                },
            ))
            logger.info("✓ Email notification sent")
        except Exception as e:
            logger.error(f"Failed to send email: {e}")

    async def _send_sms(self, message: str):
        short = message if len(message) <= SMS_MAX_LENGTH else message[:SMS_MAX_LENGTH - 3] + "..."
        try:
            await asyncio.get_running_loop().run_in_executor(
                None, lambda: self.sns.publish(PhoneNumber=self.config.phone_number, Message=short)
            )
            logger.info("✓ SMS notification sent")
        except Exception as e:
            logger.error(f"Failed to send SMS: {e}")
