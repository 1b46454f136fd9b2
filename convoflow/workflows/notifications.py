"""Best-effort confirmation messages after a booking."""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from typing import Any

from convoflow.capabilities.base import ActionType, CapabilityAction
from convoflow.capabilities.manager import IntegrationManager
from convoflow.storage.base import ExecutionEvent, WorkflowStore
from convoflow.utils.logging import get_logger
from convoflow.workflows.models import MeetingDetails, WorkflowInstance

log = get_logger(__name__)


@dataclass
class NotificationReport:
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def _when(details: MeetingDetails) -> str:
    if details.start_time is None:
        return "unspecified"
    return details.start_time.strftime("%Y-%m-%d %H:%M %Z").strip()


def format_chat_message(details: MeetingDetails, booking: dict[str, Any]) -> str:
    lines = [
        "Meeting Scheduled!",
        f"*Title:* {details.title}",
        f"*Date/Time:* {_when(details)}",
        f"*Duration:* {details.duration_minutes} minutes",
        f"*Attendees:* {', '.join(details.attendees) or 'None specified'}",
        f"*Organizer:* {details.organizer_email or 'unknown'}",
    ]
    if details.location:
        lines.append(f"*Location:* {details.location}")
    if booking.get("eventLink"):
        lines.append(f"*Calendar Link:* {booking['eventLink']}")
    if booking.get("meetLink"):
        lines.append(f"*Meeting Link:* {booking['meetLink']}")
    return "\n".join(lines)


def format_invitation(details: MeetingDetails, booking: dict[str, Any]) -> tuple[str, str]:
    """Return (subject, html body) for one attendee invitation."""
    esc = html.escape
    organizer = esc(details.organizer_email or "unknown")
    items = [
        f"<li><strong>Date/Time:</strong> {esc(_when(details))}</li>",
        f"<li><strong>Duration:</strong> {details.duration_minutes} minutes</li>",
        f"<li><strong>Organizer:</strong> {organizer}</li>",
    ]
    if details.location:
        items.append(f"<li><strong>Location:</strong> {esc(details.location)}</li>")
    meet_link = booking.get("meetLink")
    if meet_link:
        items.append(
            f'<li><strong>Meeting Link:</strong> <a href="{esc(meet_link)}">{esc(meet_link)}</a></li>'
        )
    parts = [
        f"<h2>Meeting Invitation: {esc(details.title)}</h2>",
        f"<p>You have been invited to a meeting by <strong>{organizer}</strong>.</p>",
        "<ul>",
        *items,
        "</ul>",
    ]
    if details.description:
        parts.append(f"<p><strong>Description:</strong><br>{esc(details.description)}</p>")
    event_link = booking.get("eventLink")
    if event_link:
        parts.append(f'<p><a href="{esc(event_link)}">Add to calendar</a></p>')
    return f"Meeting Invitation: {details.title}", "\n".join(parts)


class NotificationFanout:
    """Sends chat-ops and email notifications.

    Each send is isolated: a failure is logged and recorded, then the next
    recipient is tried. Nothing raised here reaches the workflow.
    """

    def __init__(
        self,
        integrations: IntegrationManager,
        store: WorkflowStore | None = None,
        chat_enabled: bool = True,
        email_enabled: bool = True,
    ) -> None:
        self._integrations = integrations
        self._store = store
        self._chat_enabled = chat_enabled
        self._email_enabled = email_enabled

    async def booking_confirmed(
        self,
        workflow_id: str,
        details: MeetingDetails,
        booking: dict[str, Any],
    ) -> NotificationReport:
        report = NotificationReport()

        if self._chat_enabled and self._integrations.has_capability(ActionType.SEND_CHAT_MESSAGE):
            await self._send(
                workflow_id,
                "chat",
                CapabilityAction(
                    type=ActionType.SEND_CHAT_MESSAGE,
                    payload={"text": format_chat_message(details, booking)},
                ),
                report,
            )
        else:
            log.debug("chat_notification_skipped", workflow_id=workflow_id)

        if self._email_enabled and self._integrations.has_capability(ActionType.SEND_EMAIL):
            subject, body = format_invitation(details, booking)
            for attendee in details.attendees:
                await self._send(
                    workflow_id,
                    attendee,
                    CapabilityAction(
                        type=ActionType.SEND_EMAIL,
                        payload={"to": attendee, "subject": subject, "html": body},
                    ),
                    report,
                )
        else:
            log.debug("email_notification_skipped", workflow_id=workflow_id)

        return report

    async def workflow_summary(self, instance: WorkflowInstance, title: str) -> NotificationReport:
        """Post a chat-ops digest of the workflow's gathered facts."""
        report = NotificationReport()
        if not (self._chat_enabled and self._integrations.has_capability(ActionType.SEND_CHAT_MESSAGE)):
            return report

        lines = [f"{title}: {instance.template_name or instance.template_id or 'workflow'}"]
        for key, value in sorted(instance.context.items()):
            if isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            lines.append(f"*{key}:* {value}")
        await self._send(
            instance.id,
            "chat",
            CapabilityAction(
                type=ActionType.SEND_CHAT_MESSAGE,
                payload={"text": "\n".join(lines)},
            ),
            report,
        )
        return report

    async def _send(
        self,
        workflow_id: str,
        recipient: str,
        action: CapabilityAction,
        report: NotificationReport,
    ) -> None:
        channel = action.type.value
        try:
            result = await self._integrations.execute(action)
        except Exception as e:
            log.exception(
                "notification_failed",
                workflow_id=workflow_id,
                channel=channel,
                recipient=recipient,
            )
            error = str(e) or type(e).__name__
        else:
            if result.success:
                log.info(
                    "notification_sent",
                    workflow_id=workflow_id,
                    channel=channel,
                    recipient=recipient,
                )
                report.sent.append(recipient)
                await self._record(workflow_id, "notification_sent", channel, recipient)
                return
            error = result.error
            log.warning(
                "notification_failed",
                workflow_id=workflow_id,
                channel=channel,
                recipient=recipient,
                error=error,
            )

        report.failed.append(recipient)
        await self._record(workflow_id, "notification_failed", channel, recipient, error)

    async def _record(
        self,
        workflow_id: str,
        event: str,
        channel: str,
        recipient: str,
        error: str | None = None,
    ) -> None:
        if self._store is None:
            return
        detail: dict[str, Any] = {"channel": channel, "recipient": recipient}
        if error:
            detail["error"] = error
        try:
            await self._store.record_event(
                ExecutionEvent(workflow_id=workflow_id, event=event, detail=detail)
            )
        except Exception:
            log.exception("notification_record_failed", workflow_id=workflow_id)
