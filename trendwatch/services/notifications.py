"""Notification dispatch for trigger events and daily digests.

Records one notification per trigger event (keyed by the event's dedupe key)
and delivers it by email and/or webhook according to the recipient's
preferences. Daily digests are recorded once per user and day and go out by
email. Delivery failures are logged and reported on the result; they
never propagate, so one bad webhook cannot stall the alert worker.
"""

import html
from typing import Any, Optional

import structlog

from trendwatch.clients.mailer import SmtpEmailSender
from trendwatch.clients.webhook import WebhookSender
from trendwatch.errors import DeliveryError
from trendwatch.metrics import NOTIFICATIONS_SENT
from trendwatch.schemas.trend import DispatchResult, Recipient, TriggerEvent
from trendwatch.services.digest import (
    DailyDigest,
    digest_payload,
    format_digest_html,
    format_digest_message,
    format_digest_text,
    format_digest_title,
)
from trendwatch.stores.base import NotificationStore, RecipientDirectory

log = structlog.get_logger(__name__)

METRIC_LABELS: dict[str, str] = {
    "view_count_growth": "View count growth",
    "play_count_growth": "Play count growth",
    "follower_growth": "Follower growth",
}


def format_title(event: TriggerEvent) -> str:
    return f"Alert: {event.display_name} is trending!"


def format_message(event: TriggerEvent) -> str:
    """One-line summary, e.g. ``#dance has reached 62.5% growth, exceeding your 50% threshold!``"""
    return (
        f"{event.display_name} has reached {event.current_value:.1f}% growth, "
        f"exceeding your {event.threshold:g}% threshold!"
    )


def event_payload(event: TriggerEvent) -> dict[str, Any]:
    return {
        "rule_id": event.rule_id,
        "type": event.entity_type.value,
        "entity_id": event.entity_id,
        "name": event.display_name,
        "metric": event.metric,
        "growth": event.current_value,
        "threshold": event.threshold,
        "triggered_at": event.triggered_at.isoformat(),
    }


def format_email_html(event: TriggerEvent) -> str:
    label = METRIC_LABELS.get(event.metric, event.metric)
    return (
        "<html><body>"
        f"<h2>{html.escape(format_title(event))}</h2>"
        f"<p>{html.escape(format_message(event))}</p>"
        "<table>"
        f"<tr><td>Type</td><td>{event.entity_type.value}</td></tr>"
        f"<tr><td>{label}</td><td>{event.current_value:.1f}%</td></tr>"
        f"<tr><td>Threshold</td><td>{event.threshold:g}%</td></tr>"
        "</table>"
        "</body></html>"
    )


class NotificationDispatcher:
    def __init__(
        self,
        notifications: NotificationStore,
        recipients: RecipientDirectory,
        email_sender: Optional[SmtpEmailSender] = None,
        webhook_sender: Optional[WebhookSender] = None,
    ) -> None:
        self.notifications = notifications
        self.recipients = recipients
        self.email_sender = email_sender
        self.webhook_sender = webhook_sender

    async def dispatch(self, event: TriggerEvent) -> DispatchResult:
        """Record and deliver one trigger event.

        The in-app notification is recorded first, whether or not the user
        has delivery preferences. A second dispatch of the same event is
        recognized by its dedupe key and sends nothing.
        """
        result = DispatchResult(dedupe_key=event.dedupe_key)

        title = format_title(event)
        message = format_message(event)
        payload = event_payload(event)

        created = await self.notifications.create_notification(event, title, message, payload)
        if not created:
            log.info("notification_duplicate", dedupe_key=event.dedupe_key)
            result.duplicate = True
            return result
        result.recorded = True

        recipient = await self.recipients.recipient(event.user_id)
        if recipient is None:
            log.warning("notification_recipient_missing", user_id=event.user_id, rule_id=event.rule_id)
            return result

        if self._wants_email(recipient):
            result.email_sent = await self._deliver_email(recipient, event, title, message, result)
        if self._wants_webhook(recipient):
            result.webhook_sent = await self._deliver_webhook(recipient, event, title, message, result)

        log.info(
            "notification_dispatched",
            rule_id=event.rule_id,
            user_id=event.user_id,
            email=result.email_sent,
            webhook=result.webhook_sent,
        )
        return result

    async def dispatch_all(self, events: list[TriggerEvent]) -> list[DispatchResult]:
        return [await self.dispatch(event) for event in events]

    async def send_digest(self, recipient: Recipient, digest: DailyDigest) -> DispatchResult:
        """Record and email one daily digest.

        Recipients without an email address and empty digests are skipped
        without recording anything. A digest already recorded for that user
        and day is not sent again.
        """
        result = DispatchResult(dedupe_key=digest.dedupe_key)

        if not recipient.email:
            log.info("digest_skipped", user_id=recipient.user_id, reason="no_email")
            return result
        if digest.total == 0:
            log.info("digest_skipped", user_id=recipient.user_id, reason="no_trends")
            return result

        title = format_digest_title(digest)
        message = format_digest_message(digest)
        created = await self.notifications.create_digest_notification(
            recipient.user_id, title, message, digest_payload(digest), digest.dedupe_key
        )
        if not created:
            log.info("digest_duplicate", dedupe_key=digest.dedupe_key)
            result.duplicate = True
            return result
        result.recorded = True

        if self.email_sender:
            try:
                await self.email_sender.send(
                    recipient.email,
                    title,
                    format_digest_text(digest),
                    format_digest_html(digest, recipient),
                )
            except DeliveryError as exc:
                log.error("digest_send_failed", user_id=recipient.user_id, error=str(exc))
                result.errors.append(str(exc))
                NOTIFICATIONS_SENT.labels(channel="digest", outcome="failed").inc()
            else:
                result.email_sent = True
                NOTIFICATIONS_SENT.labels(channel="digest", outcome="sent").inc()

        log.info(
            "digest_dispatched",
            user_id=recipient.user_id,
            trends=digest.total,
            email=result.email_sent,
        )
        return result

    def _wants_email(self, recipient: Recipient) -> bool:
        return bool(self.email_sender and recipient.email_notifications and recipient.email)

    def _wants_webhook(self, recipient: Recipient) -> bool:
        return bool(
            self.webhook_sender and recipient.webhook_notifications and recipient.webhook_url
        )

    async def _deliver_email(
        self,
        recipient: Recipient,
        event: TriggerEvent,
        title: str,
        message: str,
        result: DispatchResult,
    ) -> bool:
        try:
            await self.email_sender.send(recipient.email, title, message, format_email_html(event))
        except DeliveryError as exc:
            log.error("email_send_failed", user_id=recipient.user_id, error=str(exc))
            result.errors.append(str(exc))
            NOTIFICATIONS_SENT.labels(channel="email", outcome="failed").inc()
            return False
        NOTIFICATIONS_SENT.labels(channel="email", outcome="sent").inc()
        return True

    async def _deliver_webhook(
        self,
        recipient: Recipient,
        event: TriggerEvent,
        title: str,
        message: str,
        result: DispatchResult,
    ) -> bool:
        body = {
            "type": event.entity_type.value,
            "title": title,
            "message": message,
            "data": event_payload(event),
        }
        try:
            await self.webhook_sender.send(recipient.webhook_url, body)
        except DeliveryError as exc:
            log.error("webhook_send_failed", user_id=recipient.user_id, error=str(exc))
            result.errors.append(str(exc))
            NOTIFICATIONS_SENT.labels(channel="webhook", outcome="failed").inc()
            return False
        NOTIFICATIONS_SENT.labels(channel="webhook", outcome="sent").inc()
        return True
