from __future__ import annotations

import enum
import html
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote

import httpx

from ..config import Settings
from ..domain.capacity import level_label
from ..observability.metrics import EMAIL_FAILED

logger = logging.getLogger(__name__)


class NoticeKind(str, enum.Enum):
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    PROMOTED = "promoted"


@dataclass(frozen=True)
class Notice:
    """An email owed to a registrant once the response has gone out.

    ``event_title`` is None when the title still has to be fetched
    (promotions triggered by a cancel request do not carry one).
    """

    kind: NoticeKind
    to: str
    event_id: int
    ride_level: str
    cancel_token: str = field(repr=False)
    event_title: Optional[str] = None


# kind -> (subject, heading, lead, footer line, link text)
_COPY = {
    NoticeKind.CONFIRMED: (
        "Your event spot is saved",
        "Your event spot is saved",
        "We have you on the list for:",
        "Need to cancel? Use the link below.",
        "Cancel my spot",
    ),
    NoticeKind.WAITLISTED: (
        "You are on the waitlist",
        "You are on the waitlist",
        "We added you to the waitlist for:",
        "If a spot opens, we will email you right away.",
        "Leave the waitlist",
    ),
    NoticeKind.PROMOTED: (
        "A spot opened up for your event",
        "A spot opened up",
        "You are now confirmed for:",
        "Need to cancel? Use the link below.",
        "Cancel my spot",
    ),
}


def cancel_url(base_url: str, raw_token: str) -> str:
    return f"{base_url.rstrip('/')}/event/cancel?token={quote(raw_token, safe='')}"


def render(kind: NoticeKind, event_title: str, level: str, url: str) -> tuple[str, str, str]:
    """(subject, html, text) for one notice."""
    subject, heading, lead, footer, link_text = _COPY[kind]
    title = html.escape(event_title)
    label = html.escape(level)
    body_html = (
        '<!DOCTYPE html><html><head><meta charset="utf-8">'
        '<meta name="viewport" content="width=device-width, initial-scale=1.0"></head>'
        '<body style="font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; '
        'color: #1F2223; max-width: 560px; margin: 0 auto; padding: 24px;">'
        f'<h1 style="font-size: 1.4rem; color: #46519C; font-weight: 600;">{heading}</h1>'
        f"<p>{lead}</p><p><strong>{title}</strong><br/>{label}</p>"
        f'<p style="margin-top: 24px; font-size: 0.9rem; color: #5f6264;">{footer}</p>'
        f'<p style="margin-top: 8px;"><a href="{html.escape(url)}" style="color: #46519C;">{link_text}</a></p>'
        "</body></html>"
    )
    text = "\n".join([heading, "", lead, f"{event_title} - {level}", "", footer, url])
    return subject, body_html, text


class NotificationDispatcher:
    """Best-effort transactional email via the Resend HTTP API.

    ``send`` never raises: registration state is already committed when it
    runs, so a failed email is logged (with kind and recipient, for manual
    follow-up) and counted, nothing more.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._api_key = settings.RESEND_API_KEY
        self._api_url = settings.RESEND_API_URL
        self._from = settings.EMAIL_FROM
        self._base_url = settings.PUBLIC_BASE_URL
        self._client = client or httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SEC)

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def send(self, kind: NoticeKind, to: str, event_title: str, ride_level: str, raw_token: str) -> bool:
        if not self.enabled:
            logger.debug("email send skipped because Resend is not configured.")
            return False
        subject, body_html, text = render(
            kind, event_title, level_label(ride_level), cancel_url(self._base_url, raw_token)
        )
        try:
            resp = await self._client.post(
                self._api_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"from": self._from, "to": [to], "subject": subject, "html": body_html, "text": text},
            )
            resp.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            EMAIL_FAILED.labels(kind=kind.value).inc()
            logger.warning(
                "notification_failed",
                extra={"kind": kind.value, "recipient": to, "ride_level": ride_level, "error": str(exc)},
            )
            return False

    async def aclose(self) -> None:
        await self._client.aclose()


async def deliver(notice: Notice, dispatcher: NotificationDispatcher, content) -> None:
    """Background task body: resolve the title if needed, then send."""
    try:
        title = notice.event_title
        if title is None:
            title = await content.fetch_event_title(notice.event_id)
        await dispatcher.send(notice.kind, notice.to, title, notice.ride_level, notice.cancel_token)
    except Exception:
        # best effort: nothing upstream may fail because of an email
        EMAIL_FAILED.labels(kind=notice.kind.value).inc()
        logger.exception("notification_failed", extra={"kind": notice.kind.value, "recipient": notice.to})
