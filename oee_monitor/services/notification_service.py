"""
OEE Monitor - Notification Service

This module fans alert events out to the configured sinks. Every deployment
gets the structured-log sink; the WhatsApp relay sink is added when
WHATSAPP_ENABLED is set and posts one message per recipient to an HTTP
webhook that forwards it to WhatsApp.

Dispatch never raises: a failing sink is logged and the remaining sinks
still receive the events.
"""

import re
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence
import aiohttp
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from oee_monitor.config import settings
from oee_monitor.models.production import AlertEvent, AlertSeverity
from oee_monitor.utils.exceptions import ConfigurationError, ExternalServiceError

logger = structlog.get_logger()

PHONE_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def normalize_phone_number(number: str) -> str:
    """Strip everything except the leading plus and digits."""
    return re.sub(r"[^+\d]", "", number or "")


def validate_phone_number(number: str) -> Optional[str]:
    """Return an error message for an invalid international number, None when valid."""
    clean = normalize_phone_number(number)
    if not PHONE_PATTERN.match(clean):
        return "Number must be in international format (+55xxxxxxxxxx)"
    if len(clean) < 10 or len(clean) > 16:
        return "Number must have between 10 and 16 digits"
    return None


def render_template(template: str, event: AlertEvent) -> str:
    """Fill the ``{{placeholder}}`` slots of a relay message template."""
    values = {
        "machine_id": event.machine_id,
        "alert_type": str(event.kind),
        "severity": str(event.severity),
        "current_value": f"{event.value:g}" if float(event.value).is_integer() else f"{event.value:.2f}",
        "threshold": f"{event.threshold:g}",
        "timestamp": event.timestamp.isoformat(),
        "message": event.message,
    }
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace("{{" + key + "}}", value)
    return rendered


class AlertSink(ABC):
    """Receiver of alert events."""

    name = "sink"

    @abstractmethod
    async def publish(self, events: Sequence[AlertEvent]) -> None:
        """Deliver ``events``; raise on delivery failure."""


class LoggingAlertSink(AlertSink):
    """Writes every event to the structured log."""

    name = "log"

    async def publish(self, events: Sequence[AlertEvent]) -> None:
        for event in events:
            log = logger.error if event.severity == AlertSeverity.CRITICAL else logger.warning
            log(
                "OEE alert",
                machine_id=event.machine_id,
                kind=event.kind,
                severity=event.severity,
                value=event.value,
                threshold=event.threshold,
                message=event.message
            )


class WhatsAppRelaySink(AlertSink):
    """Posts alert messages to a WhatsApp relay webhook."""

    name = "whatsapp"

    def __init__(
        self,
        webhook_url: str,
        recipients: Sequence[str],
        template: Optional[str] = None,
        api_key: Optional[str] = None,
        critical_only: bool = False,
        timeout_seconds: float = 10.0,
        session_factory: Callable[..., aiohttp.ClientSession] = aiohttp.ClientSession
    ):
        if not webhook_url:
            raise ConfigurationError("WhatsApp relay requires WHATSAPP_WEBHOOK_URL")

        self.webhook_url = webhook_url
        self.template = template or settings.WHATSAPP_TEMPLATE
        self.api_key = api_key
        self.critical_only = critical_only
        self.timeout_seconds = timeout_seconds
        self.session_factory = session_factory

        self.recipients: List[str] = []
        for number in recipients:
            error = validate_phone_number(number)
            if error:
                logger.warning("Skipping invalid WhatsApp recipient", number=number, reason=error)
                continue
            self.recipients.append(normalize_phone_number(number))

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _post_message(self, session: aiohttp.ClientSession, payload: Dict[str, object]) -> None:
        async with session.post(self.webhook_url, json=payload, headers=self._headers()) as response:
            if response.status >= 400:
                body = await response.text()
                raise ExternalServiceError(
                    "whatsapp",
                    "WhatsApp relay rejected the message",
                    {"status": response.status, "response": body[:500]}
                )

    async def publish(self, events: Sequence[AlertEvent]) -> None:
        if self.critical_only:
            events = [event for event in events if event.severity == AlertSeverity.CRITICAL]
        if not events or not self.recipients:
            return

        failures = []
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self.session_factory(timeout=timeout) as session:
            for event in events:
                message = render_template(self.template, event)
                for number in self.recipients:
                    payload = {
                        "phone_number": number,
                        "message": message,
                        "alert": event.model_dump(mode="json"),
                    }
                    try:
                        await self._post_message(session, payload)
                    except Exception as e:
                        logger.error(
                            "WhatsApp alert delivery failed",
                            machine_id=event.machine_id,
                            kind=event.kind,
                            number=number,
                            error=str(e)
                        )
                        failures.append(number)
                    else:
                        logger.info(
                            "WhatsApp alert sent",
                            machine_id=event.machine_id,
                            kind=event.kind,
                            number=number
                        )

        if failures:
            raise ExternalServiceError(
                "whatsapp",
                "Some WhatsApp alerts were not delivered",
                {"failed_recipients": sorted(set(failures)), "failures": len(failures)}
            )


class NotificationService:
    """Dispatches alert events to a set of sinks."""

    def __init__(self, sinks: Optional[Sequence[AlertSink]] = None):
        self.sinks: List[AlertSink] = list(sinks) if sinks is not None else [LoggingAlertSink()]

    async def dispatch(self, events: Sequence[AlertEvent]) -> Dict[str, bool]:
        """Publish ``events`` to every sink and report per-sink success."""
        results: Dict[str, bool] = {}
        if not events:
            return results

        for sink in self.sinks:
            try:
                await sink.publish(events)
                results[sink.name] = True
            except Exception as e:
                logger.error(
                    "Alert sink failed",
                    sink=sink.name,
                    events=len(events),
                    error=str(e)
                )
                results[sink.name] = False

        return results


def create_notification_service(app_settings=None) -> NotificationService:
    """Build the notification service from the WHATSAPP_* settings."""
    app_settings = app_settings or settings
    sinks: List[AlertSink] = [LoggingAlertSink()]

    if app_settings.WHATSAPP_ENABLED:
        try:
            sinks.append(WhatsAppRelaySink(
                webhook_url=app_settings.WHATSAPP_WEBHOOK_URL,
                recipients=app_settings.WHATSAPP_RECIPIENTS,
                template=app_settings.WHATSAPP_TEMPLATE,
                api_key=app_settings.WHATSAPP_API_KEY,
                critical_only=app_settings.WHATSAPP_CRITICAL_ONLY,
                timeout_seconds=app_settings.WHATSAPP_TIMEOUT_SECONDS
            ))
        except ConfigurationError as e:
            logger.warning("WhatsApp relay disabled", reason=e.message)

    return NotificationService(sinks)
