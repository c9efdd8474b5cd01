"""Tests for per-channel notification message construction."""

from __future__ import annotations

from leadnotify.schemas.notification import NotificationPayload
from leadnotify.services.formatting import (
    build_email_message,
    build_layout,
    build_slack_message,
    build_telegram_message,
)

ADMIN_URL = "https://example.com/admin/conversations"


def _chatbot_payload(**overrides) -> NotificationPayload:
    data = {
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
        "customer_phone": "+971501234567",
        "intent": "buy",
        "budget": "2M AED",
        "property_type": "Apartment",
        "area": "Dubai Marina",
        "lead_score": 85,
        "duration": 12,
        "source": "chatbot",
    }
    data.update(overrides)
    return NotificationPayload(**data)


def test_chatbot_layout():
    layout = build_layout(_chatbot_payload(), ADMIN_URL)
    assert layout.header == "🤖 New Chatbot Conversation"
    assert layout.subject == "🤖 New Chatbot Lead: Jane Doe"
    fields = dict(layout.fields)
    assert fields["Lead Score"] == "85/100"
    assert fields["Area"] == "Dubai Marina"
    assert dict(layout.body)["Duration"] == "12 minutes"
    assert [link.label for link in layout.links] == ["View in Admin Panel"]


def test_missing_values_render_na():
    payload = NotificationPayload(customer_name="Jane Doe", source="chatbot")
    fields = dict(build_layout(payload, ADMIN_URL).fields)
    assert fields["Email"] == "N/A"
    assert fields["Budget"] == "N/A"
    assert fields["Lead Score"] == "0/100"


def test_contact_form_layout():
    payload = NotificationPayload(
        customer_name="Sam",
        customer_email="sam@example.com",
        source="contact_form",
        subject="Viewing request",
        message="Can I view on Friday?",
        department="sales",
    )
    layout = build_layout(payload, ADMIN_URL)
    assert layout.icon == "📬"
    assert layout.subject == "📬 New Contact Form: Viewing request"
    assert dict(layout.fields)["Department"] == "sales"
    assert dict(layout.body)["Message"] == "Can I view on Friday?"


def test_property_inquiry_links():
    payload = NotificationPayload(
        customer_name="Sam",
        source="property_inquiry",
        property_title="Marina Heights 2BR",
        property_url="https://example.com/p/42",
    )
    layout = build_layout(payload, ADMIN_URL)
    assert layout.subject == "🏠 New Property Inquiry: Marina Heights 2BR"
    assert [link.label for link in layout.links] == ["View Property", "View in Admin"]
    assert dict(layout.body)["Message"] == "No message provided"


def test_property_inquiry_without_url_has_admin_link_only():
    payload = NotificationPayload(
        customer_name="Sam", source="property_inquiry", property_title="Villa"
    )
    layout = build_layout(payload, ADMIN_URL)
    assert [link.url for link in layout.links] == [ADMIN_URL]


def test_sla_layouts_are_urgent():
    warning = build_layout(NotificationPayload(customer_name="Jane", source="sla_warning"), ADMIN_URL)
    breach = build_layout(NotificationPayload(customer_name="Jane", source="sla_breach"), ADMIN_URL)
    assert warning.urgent and breach.urgent
    assert warning.subject == "⚠️ SLA Warning: Jane"
    assert breach.subject == "🚨 SLA BREACHED: Jane"


def test_generic_layout_uses_subject_override():
    payload = NotificationPayload(customer_name="Jane", subject="Custom subject", message="hello")
    layout = build_layout(payload, ADMIN_URL)
    assert layout.header == "🔔 New Lead"
    assert layout.subject == "Custom subject"
    assert dict(layout.body)["Message"] == "hello"


def test_slack_message_structure():
    message = build_slack_message(_chatbot_payload(), ADMIN_URL)
    assert message["text"] == "🔔 New Lead: Jane Doe"
    types = [block["type"] for block in message["blocks"]]
    assert types == ["header", "section", "section", "actions"]
    button = message["blocks"][-1]["elements"][0]
    assert button["url"] == ADMIN_URL
    assert button["style"] == "primary"


def test_slack_urgent_button_style():
    message = build_slack_message(
        NotificationPayload(customer_name="Jane", source="sla_breach", message="Call now"),
        ADMIN_URL,
    )
    assert message["text"] == "🚨 SLA BREACHED: Jane"
    assert message["blocks"][-1]["elements"][0]["style"] == "danger"


def test_telegram_escapes_html():
    payload = _chatbot_payload(customer_name="<b>Jane</b> & Co")
    text = build_telegram_message(payload, ADMIN_URL)
    assert "&lt;b&gt;Jane&lt;/b&gt; &amp; Co" in text
    assert "<b>Jane</b>" not in text
    assert text.startswith("🤖 <b>New Chatbot Conversation</b>")
    assert f'<a href="{ADMIN_URL}">View in Admin Panel</a>' in text


def test_email_content():
    content = build_email_message(_chatbot_payload(customer_name="Jane <script>"), ADMIN_URL)
    assert content.subject == "🤖 New Chatbot Lead: Jane <script>"
    assert "Jane &lt;script&gt;" in content.html
    assert "<script>" not in content.html
    assert "Lead Score: 85/100" in content.text
    assert f"View in Admin Panel: {ADMIN_URL}" in content.text
