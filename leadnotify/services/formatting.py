"""Channel message construction.

Every notification source has one fixed layout (header, key/value fields,
free-text body, action links). The layout is computed once from the payload
and rendered per channel: Slack blocks, Telegram HTML, and email
subject/html/text. Nothing here performs I/O.
"""

from __future__ import annotations

import html
from dataclasses import dataclass, field

from ..schemas.notification import NotificationPayload

NA = "N/A"

_CELL = "padding: 8px; border: 1px solid #ddd;"
_BUTTON = (
    "display: inline-block; margin-top: 20px; margin-right: 10px; padding: 10px 20px; "
    "background-color: {color}; color: white; text-decoration: none; border-radius: 5px;"
)
_QUOTE = (
    "white-space: pre-wrap; padding: 10px; background-color: #f5f5f5; "
    "border-left: 4px solid {color};"
)


@dataclass(frozen=True)
class Link:
    label: str
    url: str
    primary: bool = False


@dataclass(frozen=True)
class Layout:
    icon: str
    title: str
    subject: str
    fields: list[tuple[str, str]]
    body: list[tuple[str, str]] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    urgent: bool = False

    @property
    def header(self) -> str:
        return f"{self.icon} {self.title}"


@dataclass(frozen=True)
class EmailContent:
    subject: str
    html: str
    text: str


def _value(value: object | None) -> str:
    if value is None or value == "":
        return NA
    return str(value)


def _score(score: float | None) -> str:
    return f"{(score or 0):g}/100"


def build_layout(payload: NotificationPayload, admin_url: str) -> Layout:
    """Resolve the fixed layout for ``payload.source``."""
    source = payload.source
    name = payload.customer_name
    admin_link = Link("View in Admin Panel", admin_url, primary=True)

    if source == "chatbot":
        return Layout(
            icon="🤖",
            title="New Chatbot Conversation",
            subject=f"🤖 New Chatbot Lead: {name}",
            fields=[
                ("Name", _value(name)),
                ("Intent", _value(payload.intent)),
                ("Email", _value(payload.customer_email)),
                ("Phone", _value(payload.customer_phone)),
                ("Budget", _value(payload.budget)),
                ("Property Type", _value(payload.property_type)),
                ("Area", _value(payload.area)),
                ("Lead Score", _score(payload.lead_score)),
            ],
            body=[("Duration", f"{payload.duration or 0} minutes")],
            links=[admin_link],
        )

    if source == "contact_form":
        return Layout(
            icon="📬",
            title="New Contact Form Message",
            subject=f"📬 New Contact Form: {_value(payload.subject)}",
            fields=[
                ("Name", _value(name)),
                ("Department", _value(payload.department)),
                ("Email", _value(payload.customer_email)),
                ("Phone", _value(payload.customer_phone)),
            ],
            body=[
                ("Subject", _value(payload.subject)),
                ("Message", _value(payload.message)),
            ],
            links=[admin_link],
        )

    if source == "property_inquiry":
        links = []
        if payload.property_url:
            links.append(Link("View Property", payload.property_url))
        links.append(Link("View in Admin", admin_url, primary=True))
        return Layout(
            icon="🏠",
            title="New Property Inquiry",
            subject=f"🏠 New Property Inquiry: {_value(payload.property_title)}",
            fields=[
                ("Name", _value(name)),
                ("Property", _value(payload.property_title)),
                ("Email", _value(payload.customer_email)),
                ("Phone", _value(payload.customer_phone)),
            ],
            body=[("Message", payload.message or "No message provided")],
            links=links,
        )

    if source in ("sla_warning", "sla_breach"):
        breached = source == "sla_breach"
        icon = "🚨" if breached else "⚠️"
        title = "SLA Breached" if breached else "SLA Warning"
        default_subject = f"🚨 SLA BREACHED: {name}" if breached else f"⚠️ SLA Warning: {name}"
        return Layout(
            icon=icon,
            title=title,
            subject=payload.subject or default_subject,
            fields=[
                ("Name", _value(name)),
                ("Phone", _value(payload.customer_phone)),
                ("Lead Score", _score(payload.lead_score)),
            ],
            body=[("Action", _value(payload.message))],
            links=[admin_link],
            urgent=True,
        )

    return Layout(
        icon="🔔",
        title="New Lead",
        subject=payload.subject or f"New Lead: {name}",
        fields=[
            ("Name", _value(name)),
            ("Email", _value(payload.customer_email)),
            ("Phone", _value(payload.customer_phone)),
        ],
        body=[("Message", payload.message)] if payload.message else [],
        links=[admin_link],
    )


def _slack_escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def build_slack_message(payload: NotificationPayload, admin_url: str) -> dict:
    layout = build_layout(payload, admin_url)
    fallback = layout.subject if layout.urgent else f"🔔 New Lead: {payload.customer_name or 'Unknown'}"

    blocks: list[dict] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": layout.header, "emoji": True},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*{label}:*\n{_slack_escape(value)}"}
                for label, value in layout.fields
            ],
        },
    ]
    if layout.body:
        blocks.append(
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "\n\n".join(
                        f"*{label}:*\n{_slack_escape(text)}" for label, text in layout.body
                    ),
                },
            }
        )
    if layout.links:
        buttons = []
        for link in layout.links:
            button = {
                "type": "button",
                "text": {"type": "plain_text", "text": link.label},
                "url": link.url,
            }
            if link.primary:
                button["style"] = "danger" if layout.urgent else "primary"
            buttons.append(button)
        blocks.append({"type": "actions", "elements": buttons})

    return {"text": fallback, "blocks": blocks}


def build_telegram_message(payload: NotificationPayload, admin_url: str) -> str:
    layout = build_layout(payload, admin_url)
    esc = html.escape

    lines = [f"{layout.icon} <b>{esc(layout.title)}</b>", ""]
    lines.extend(f"<b>{esc(label)}:</b> {esc(value)}" for label, value in layout.fields)
    for label, text in layout.body:
        lines.append("")
        lines.append(f"<b>{esc(label)}:</b>")
        lines.append(esc(text))
    if layout.links:
        lines.append("")
        lines.append(
            " | ".join(f'<a href="{esc(link.url)}">{esc(link.label)}</a>' for link in layout.links)
        )
    return "\n".join(lines).strip()


def build_email_message(payload: NotificationPayload, admin_url: str) -> EmailContent:
    layout = build_layout(payload, admin_url)
    esc = html.escape
    accent = "#dc3545" if layout.urgent else "#007bff"

    rows = "\n".join(
        f'<tr><td style="{_CELL}"><strong>{esc(label)}:</strong></td>'
        f'<td style="{_CELL}">{esc(value)}</td></tr>'
        for label, value in layout.fields
    )
    body_html = "\n".join(
        f"<h3>{esc(label)}:</h3>\n"
        f'<p style="{_QUOTE.format(color=accent)}">{esc(text)}</p>'
        for label, text in layout.body
    )
    buttons = "\n".join(
        f'<a href="{esc(link.url)}" style="{_BUTTON.format(color=accent if link.primary else "#28a745")}">'
        f"{esc(link.label)}</a>"
        for link in layout.links
    )
    html_body = (
        f"<h2>{esc(layout.header)}</h2>\n"
        '<table style="border-collapse: collapse; width: 100%; max-width: 600px;">\n'
        f"{rows}\n"
        "</table>\n"
        f"{body_html}\n"
        f"<p>{buttons}</p>"
    )

    text_parts = [layout.title, ""]
    text_parts.extend(f"{label}: {value}" for label, value in layout.fields)
    for label, text in layout.body:
        text_parts.extend(["", f"{label}:", text])
    if layout.links:
        text_parts.append("")
        text_parts.extend(f"{link.label}: {link.url}" for link in layout.links)

    return EmailContent(subject=layout.subject, html=html_body, text="\n".join(text_parts))
