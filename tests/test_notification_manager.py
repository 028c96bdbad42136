import json
from datetime import datetime
from unittest.mock import MagicMock

import httpx
import pytest

from gopro_fleet.notification_manager import (
    SMS_MAX_LENGTH,
    Alert,
    DeviceFailure,
    NotificationConfig,
    NotificationManager,
)

WHEN = datetime(2026, 10, 17, 14, 30, 0)


def _alert(**kwargs):
    return Alert(action="Stopping capture", error="[C1] Cannot connect", timestamp=WHEN, **kwargs)


class WebhookRecorder:
    def __init__(self, status=200):
        self.status = status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status)


@pytest.mark.unit
class TestAlert:
    def test_single_failure_names_the_camera(self):
        alert = Alert.from_failures("Starting capture", [DeviceFailure("C1", "192.168.1.20", "timeout")], WHEN)
        assert alert.camera == "192.168.1.20"
        assert alert.error == "C1 (192.168.1.20): timeout"

    def test_many_failures_are_listed(self):
        alert = Alert.from_failures("Starting capture", [
            DeviceFailure("C1", "192.168.1.20", "timeout"),
            DeviceFailure("C2", "192.168.1.21", "HTTP 500"),
        ], WHEN)

        assert alert.camera is None
        assert alert.error.splitlines() == ["C1 (192.168.1.20): timeout", "C2 (192.168.1.21): HTTP 500"]
        assert "Cameras failed: 2" in alert.format_message()

    def test_format_message(self):
        message = _alert(camera="192.168.1.20").format_message()
        assert "Time: 2026-10-17 14:30:00" in message
        assert "Action: Stopping capture" in message
        assert "Camera: 192.168.1.20" in message
        assert message.endswith("[C1] Cannot connect")


@pytest.mark.unit
class TestNotificationManager:
    @pytest.mark.asyncio
    async def test_disabled_sends_nothing(self):
        recorder = WebhookRecorder()
        ses = MagicMock()
        manager = NotificationManager(
            NotificationConfig(enabled=False, email_enabled=True, email_to="a@b.c", email_from="x@b.c",
                               webhook_url="https://ntfy.sh/cams"),
            ses_client=ses, http_transport=httpx.MockTransport(recorder),
        )

        await manager.send(_alert())

        assert recorder.requests == []
        ses.send_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_ntfy_webhook(self):
        recorder = WebhookRecorder()
        manager = NotificationManager(
            NotificationConfig(enabled=True, webhook_url="https://ntfy.sh/cams"),
            http_transport=httpx.MockTransport(recorder),
        )

        await manager.send(_alert())

        request = recorder.requests[0]
        assert request.headers["Priority"] == "urgent"
        assert "GoPro Error: Stopping capture" in request.headers["Title"]
        assert "[C1] Cannot connect" in request.content.decode("utf-8")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url,key", [
        ("https://hooks.slack.com/services/T/B/X", "text"),
        ("https://discord.com/api/webhooks/1/abc", "content"),
        ("https://example.com/alerts", "message"),
    ])
    async def test_json_webhooks(self, url, key):
        recorder = WebhookRecorder()
        manager = NotificationManager(
            NotificationConfig(enabled=True, webhook_url=url), http_transport=httpx.MockTransport(recorder)
        )

        await manager.send(_alert())

        body = json.loads(recorder.requests[0].content)
        assert "[C1] Cannot connect" in body[key]

    @pytest.mark.asyncio
    async def test_webhook_error_is_swallowed(self):
        manager = NotificationManager(
            NotificationConfig(enabled=True, webhook_url="https://example.com/alerts"),
            http_transport=httpx.MockTransport(WebhookRecorder(status=500)),
        )
        await manager.send(_alert())

    @pytest.mark.asyncio
    async def test_email_through_ses(self):
        ses = MagicMock()
        manager = NotificationManager(
            NotificationConfig(enabled=True, email_enabled=True, email_to="ops@example.com",
                               email_from="gopro@example.com"),
            ses_client=ses,
        )

        await manager.send(_alert())

        kwargs = ses.send_email.call_args.kwargs
        assert kwargs["Source"] == "gopro@example.com"
        assert kwargs["Destination"] == {"ToAddresses": ["ops@example.com"]}
        assert kwargs["Message"]["Subject"]["Data"] == "🚨 GoPro Error: Stopping capture"

    @pytest.mark.asyncio
    async def test_email_without_sender_is_skipped(self):
        ses = MagicMock()
        manager = NotificationManager(
            NotificationConfig(enabled=True, email_enabled=True, email_to="ops@example.com"), ses_client=ses
        )
        await manager.send(_alert())
        ses.send_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_sms_is_truncated(self):
        sns = MagicMock()
        manager = NotificationManager(
            NotificationConfig(enabled=True, sms_enabled=True, phone_number="+15550100"), sns_client=sns
        )

        await manager.send(Alert(action="Downloading files", error="x" * 500, timestamp=WHEN))

        message = sns.publish.call_args.kwargs["Message"]
        assert len(message) == SMS_MAX_LENGTH
        assert message.endswith("...")

    @pytest.mark.asyncio
    async def test_one_channel_failing_does_not_block_others(self):
        ses = MagicMock()
        ses.send_email.side_effect = RuntimeError("throttled")
        sns = MagicMock()
        manager = NotificationManager(
            NotificationConfig(enabled=True, email_enabled=True, email_to="a@example.com",
                               email_from="b@example.com", sms_enabled=True, phone_number="+15550100"),
            ses_client=ses, sns_client=sns,
        )

        await manager.send(_alert())

        sns.publish.assert_called_once()

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv("NOTIFICATIONS_ENABLED", "true")
        monkeypatch.setenv("SMS_NOTIFICATIONS", "false")
        monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "https://ntfy.sh/cams")
        monkeypatch.delenv("EMAIL_NOTIFICATIONS", raising=False)
        monkeypatch.setenv("AWS_REGION", "eu-west-1")

        config = NotificationConfig.from_env()

        assert config.enabled
        assert not config.sms_enabled
        assert not config.email_enabled
        assert config.webhook_url == "https://ntfy.sh/cams"
        assert config.aws_region == "eu-west-1"
