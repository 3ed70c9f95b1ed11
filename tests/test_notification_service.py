from datetime import datetime, timezone

import pytest
from tenacity import wait_none

from oee_monitor.models.production import AlertEvent
from oee_monitor.services.notification_service import (
    AlertSink,
    LoggingAlertSink,
    NotificationService,
    WhatsAppRelaySink,
    create_notification_service,
    render_template,
    validate_phone_number,
)
from oee_monitor.utils.exceptions import ConfigurationError

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_event(severity="medium", kind="low_oee", value=60.0):
    return AlertEvent(
        machine_id="M1",
        kind=kind,
        severity=severity,
        message=f"OEE for machine M1 is {value:.1f}%",
        value=value,
        threshold=65.0,
        timestamp=NOW
    )


class FakeResponse:
    def __init__(self, status):
        self.status = status

    async def text(self):
        return "relay error"

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


class FakeSession:
    def __init__(self, statuses=None):
        self.statuses = list(statuses or [])
        self.posts = []

    def post(self, url, json=None, headers=None):
        self.posts.append({"url": url, "json": json, "headers": headers})
        status = self.statuses.pop(0) if self.statuses else 200
        return FakeResponse(status)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(WhatsAppRelaySink._post_message.retry, "wait", wait_none())


def relay(session, **kwargs):
    options = {
        "webhook_url": "https://relay.example.com/send",
        "recipients": ["+5511999998888"],
        "template": "{{machine_id}} {{alert_type}} {{severity}} {{current_value}}/{{threshold}}",
        "session_factory": lambda **_: session,
    }
    options.update(kwargs)
    return WhatsAppRelaySink(**options)


@pytest.mark.parametrize("number, valid", [
    ("+5511999998888", True),
    ("+55 (11) 99999-8888", True),
    ("5511999998888", False),
    ("+0511999998888", False),
    ("+55119", False),
])
def test_phone_number_validation(number, valid):
    assert (validate_phone_number(number) is None) == valid


def test_render_template_fills_placeholders():
    rendered = render_template("{{machine_id}}|{{alert_type}}|{{current_value}}|{{threshold}}|{{timestamp}}", make_event())

    assert rendered == f"M1|low_oee|60|65|{NOW.isoformat()}"


async def test_relay_posts_one_message_per_recipient():
    session = FakeSession()
    sink = relay(session, recipients=["+5511999998888", "+5521988887777", "not-a-number"], api_key="secret")

    await sink.publish([make_event()])

    assert sink.recipients == ["+5511999998888", "+5521988887777"]
    assert [post["json"]["phone_number"] for post in session.posts] == ["+5511999998888", "+5521988887777"]
    assert session.posts[0]["json"]["message"] == "M1 low_oee medium 60/65"
    assert session.posts[0]["json"]["alert"]["kind"] == "low_oee"
    assert session.posts[0]["headers"]["Authorization"] == "Bearer secret"


async def test_relay_critical_only_skips_lower_severities():
    session = FakeSession()
    sink = relay(session, critical_only=True)

    await sink.publish([make_event("medium"), make_event("critical", value=40.0)])

    assert len(session.posts) == 1
    assert session.posts[0]["json"]["alert"]["severity"] == "critical"


async def test_relay_retries_before_succeeding():
    session = FakeSession(statuses=[503, 200])

    await relay(session).publish([make_event()])

    assert len(session.posts) == 2


async def test_relay_failure_is_reported_by_dispatch():
    session = FakeSession(statuses=[500, 500, 500])
    service = NotificationService([LoggingAlertSink(), relay(session)])

    results = await service.dispatch([make_event()])

    assert results == {"log": True, "whatsapp": False}
    assert len(session.posts) == 3


def test_relay_requires_webhook_url():
    with pytest.raises(ConfigurationError):
        WhatsAppRelaySink(webhook_url="", recipients=[])


class BrokenSink(AlertSink):
    name = "broken"

    async def publish(self, events):
        raise RuntimeError("down")


async def test_dispatch_isolates_failing_sinks():
    results = await NotificationService([BrokenSink(), LoggingAlertSink()]).dispatch([make_event()])

    assert results == {"broken": False, "log": True}


async def test_dispatch_without_events_does_nothing():
    assert await NotificationService([BrokenSink()]).dispatch([]) == {}


class RelaySettings:
    WHATSAPP_ENABLED = True
    WHATSAPP_WEBHOOK_URL = None
    WHATSAPP_RECIPIENTS = ["+5511999998888"]
    WHATSAPP_TEMPLATE = "{{message}}"
    WHATSAPP_API_KEY = None
    WHATSAPP_CRITICAL_ONLY = False
    WHATSAPP_TIMEOUT_SECONDS = 5.0


def test_factory_skips_misconfigured_relay():
    service = create_notification_service(RelaySettings)

    assert [sink.name for sink in service.sinks] == ["log"]


def test_factory_adds_relay_when_configured():
    class Configured(RelaySettings):
        WHATSAPP_WEBHOOK_URL = "https://relay.example.com/send"

    service = create_notification_service(Configured)

    assert [sink.name for sink in service.sinks] == ["log", "whatsapp"]
