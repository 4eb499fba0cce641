"""Outbound notifications to Slack, Teams and the email relay.

Each channel is an incoming webhook posted with httpx through the
circuit breaker registered under the channel's name, so a failing
provider is cut off instead of slowing every job down.
"""

import time
from typing import Any

import httpx

from kudos.breaker.registry import CircuitBreakerRegistry
from kudos.config.models.jobs import ChannelConfig, NotificationsConfig
from kudos.errors import CircuitOpenError, DependencyUnavailableError
from kudos.notifications.models import (
    DeliveryResult,
    DeliveryStatus,
    NotificationEvent,
    NotificationKind,
)
from kudos.observability.logging import get_logger

logger = get_logger(__name__)


class ChannelDeliveryError(DependencyUnavailableError):
    """Raised inside the breaker when a channel answers with an error."""

    def __init__(self, channel: str, message: str, retry: bool = True) -> None:
        super().__init__(message, dependency=channel)
        self.retry = retry


def _headline(event: NotificationEvent) -> str:
    if event.kind == NotificationKind.VERIFICATION_REQUESTED:
        return f"Recognition {event.recognition_id} (weight {event.weight}) needs manager verification"
    return f"New recognition {event.recognition_id} received (weight {event.weight})"


def format_payload(channel: str, event: NotificationEvent) -> dict[str, Any]:
    """Build the channel-specific request body."""
    text = _headline(event)
    if channel == "slack":
        return {
            "text": text,
            "blocks": [
                {"type": "section", "text": {"type": "mrkdwn", "text": text}},
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": ", ".join(event.tags) or "no tags"}
                    ],
                },
            ],
        }
    if channel == "teams":
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "summary": text,
            "text": text,
        }
    return {
        "kind": event.kind.value,
        "recipient_id": (
            event.giver_id
            if event.kind == NotificationKind.VERIFICATION_REQUESTED
            else event.recipient_id
        ),
        "subject": text,
        "recognition_id": event.recognition_id,
        "organization_id": event.organization_id,
    }


class NotificationDispatcher:
    """Fan an event out to every enabled channel."""

    def __init__(
        self,
        config: NotificationsConfig,
        breakers: CircuitBreakerRegistry,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._breakers = breakers
        self._client = client

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def enabled_channels(self) -> list[str]:
        return [
            name
            for name, channel in self._config.channels.items()
            if channel.enabled and channel.webhook_url is not None
        ]

    async def _post(self, name: str, channel: ChannelConfig, event: NotificationEvent) -> int:
        client = await self._ensure_client()
        webhook_url = channel.webhook_url.get_secret_value() if channel.webhook_url else ""
        response = await client.post(
            webhook_url,
            json=format_payload(name, event),
            timeout=channel.timeout_seconds,
        )
        if 200 <= response.status_code < 300:
            return response.status_code
        # 4xx means the request itself is wrong; retrying will not help
        retry = response.status_code >= 500 or response.status_code == 429
        raise ChannelDeliveryError(
            name,
            f"{name} responded with {response.status_code}",
            retry=retry,
        )

    async def deliver(self, name: str, event: NotificationEvent) -> DeliveryResult:
        """Post one event to one channel through its breaker."""
        channel = self._config.channels.get(name)
        if channel is None or not channel.enabled or channel.webhook_url is None:
            return DeliveryResult(channel=name, status=DeliveryStatus.SKIPPED)

        start = time.time()
        try:
            status_code = await self._breakers.call_with_circuit_breaker(
                name, lambda: self._post(name, channel, event)
            )
        except CircuitOpenError as e:
            logger.warning("notification_circuit_open", channel=name, kind=event.kind.value)
            return DeliveryResult(
                channel=name, status=DeliveryStatus.CIRCUIT_OPEN, error=e.message, retry=True
            )
        except ChannelDeliveryError as e:
            logger.warning(
                "notification_channel_error",
                channel=name,
                kind=event.kind.value,
                error=e.message,
            )
            return DeliveryResult(
                channel=name, status=DeliveryStatus.FAILED, error=e.message, retry=e.retry
            )
        except (DependencyUnavailableError, httpx.HTTPError) as e:
            logger.warning(
                "notification_delivery_failed",
                channel=name,
                kind=event.kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DeliveryResult(
                channel=name, status=DeliveryStatus.FAILED, error=str(e), retry=True
            )

        response_time_ms = int((time.time() - start) * 1000)
        logger.info(
            "notification_delivered",
            channel=name,
            kind=event.kind.value,
            status_code=status_code,
            response_time_ms=response_time_ms,
        )
        return DeliveryResult(
            channel=name,
            status=DeliveryStatus.DELIVERED,
            status_code=status_code,
            response_time_ms=response_time_ms,
        )

    async def notify(
        self, event: NotificationEvent, channels: list[str] | None = None
    ) -> list[DeliveryResult]:
        """Deliver an event to the given channels, or all enabled ones."""
        results = []
        for name in channels if channels is not None else self.enabled_channels():
            results.append(await self.deliver(name, event))
        return results

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
