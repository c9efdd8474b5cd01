"""Delivery channels: Slack webhook, Telegram bot, email (SendGrid then SMTP).

A channel either returns normally (delivered) or raises ``ChannelError``.
Channels whose credentials are missing raise ``NotificationNotConfigured``.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

import httpx

from ..config import LeadNotifySettings
from ..schemas.notification import NotificationPayload
from .formatting import (
    EmailContent,
    build_email_message,
    build_slack_message,
    build_telegram_message,
)

log = logging.getLogger(__name__)


class ChannelError(Exception):
    """A channel attempted delivery and it failed."""


class NotificationNotConfigured(ChannelError):
    """Raised when a channel's credentials are missing."""


class Channel(Protocol):
    name: str

    @property
    def configured(self) -> bool: ...

    async def send(self, payload: NotificationPayload) -> None: ...


class SlackChannel:
    name = "slack"

    def __init__(
        self,
        webhook_url: str | None,
        admin_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.webhook_url = webhook_url
        self.admin_url = admin_url
        self._client = client
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, payload: NotificationPayload) -> None:
        if not self.configured:
            raise NotificationNotConfigured("slack not configured")

        message = build_slack_message(payload, self.admin_url)
        if self._client is not None:
            resp = await self._client.post(self.webhook_url, json=message)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.webhook_url, json=message)

        if resp.status_code >= 300:
            raise ChannelError(f"Slack API error: {resp.status_code} {resp.text[:500]}")


class TelegramChannel:
    name = "telegram"

    def __init__(
        self,
        bot_token: str | None,
        chat_id: str | None,
        admin_url: str,
        api_base: str = "https://api.telegram.org",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.admin_url = admin_url
        self.api_base = api_base.rstrip("/")
        self._client = client
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    @property
    def send_url(self) -> str:
        return f"{self.api_base}/bot{self.bot_token}/sendMessage"

    async def send(self, payload: NotificationPayload) -> None:
        if not self.configured:
            raise NotificationNotConfigured("telegram not configured")

        body = {
            "chat_id": self.chat_id,
            "text": build_telegram_message(payload, self.admin_url),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if self._client is not None:
            resp = await self._client.post(self.send_url, json=body)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.send_url, json=body)

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 300 or not data.get("ok", False):
            detail = data.get("description") or resp.text[:500]
            raise ChannelError(f"Telegram API error: {resp.status_code} {detail}")


class EmailSender(Protocol):
    name: str

    @property
    def configured(self) -> bool: ...

    async def send(self, recipients: list[str], content: EmailContent) -> None: ...


class SendGridSender:
    name = "sendgrid"

    def __init__(
        self,
        api_key: str | None,
        from_email: str | None,
        from_name: str | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    def _send_sync(self, recipients: list[str], content: EmailContent) -> None:
        import sendgrid
        from sendgrid.helpers.mail import Content, Email, Mail, To

        sg = sendgrid.SendGridAPIClient(api_key=self.api_key)
        mail = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=[To(addr) for addr in recipients],
            subject=content.subject,
            plain_text_content=Content("text/plain", content.text),
            html_content=Content("text/html", content.html),
        )
        response = sg.client.mail.send.post(request_body=mail.get())
        status = getattr(response, "status_code", 202)
        if status >= 300:
            raise ChannelError(f"SendGrid API error: {status}")

    async def send(self, recipients: list[str], content: EmailContent) -> None:
        if not self.configured:
            raise NotificationNotConfigured("sendgrid not configured")
        try:
            await asyncio.to_thread(self._send_sync, recipients, content)
        except ChannelError:
            raise
        except Exception as exc:
            raise ChannelError(f"SendGrid error: {exc}") from exc


class SmtpSender:
    name = "smtp"

    def __init__(
        self,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        from_email: str | None = None,
        use_ssl: bool = False,
        starttls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.use_ssl = use_ssl
        self.starttls = starttls
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    def _build_message(self, recipients: list[str], content: EmailContent) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = content.subject
        msg["From"] = self.from_email
        msg["To"] = ", ".join(recipients)
        msg.set_content(content.text)
        msg.add_alternative(content.html, subtype="html")
        return msg

    def _send_sync(self, recipients: list[str], content: EmailContent) -> None:
        msg = self._build_message(recipients, content)
        if self.use_ssl:
            server = smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout, context=ssl.create_default_context()
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            if not self.use_ssl and self.starttls:
                server.starttls(context=ssl.create_default_context())
            server.login(self.username, self.password)
            server.send_message(msg, to_addrs=recipients)

    async def send(self, recipients: list[str], content: EmailContent) -> None:
        if not self.configured:
            raise NotificationNotConfigured("smtp not configured")
        try:
            await asyncio.to_thread(self._send_sync, recipients, content)
        except (smtplib.SMTPException, OSError) as exc:
            raise ChannelError(f"SMTP error: {exc}") from exc


class EmailChannel:
    """Email to the operator mailboxes; the fallback sender is tried only if the primary fails.

    Each sender gets its own ``sender_timeout``. A primary that hangs counts as
    a failure and the fallback is still tried within the channel budget.
    """

    name = "email"

    def __init__(
        self,
        recipients: list[str],
        admin_url: str,
        primary: EmailSender | None = None,
        fallback: EmailSender | None = None,
        sender_timeout: float = 10.0,
    ) -> None:
        self.recipients = recipients
        self.admin_url = admin_url
        self.senders = [s for s in (primary, fallback) if s is not None]
        self.sender_timeout = sender_timeout

    @property
    def configured(self) -> bool:
        return bool(self.recipients) and any(s.configured for s in self.senders)

    @property
    def timeout_seconds(self) -> float:
        """Overall budget: one ``sender_timeout`` per configured sender."""
        return self.sender_timeout * max(1, sum(1 for s in self.senders if s.configured))

    async def send(self, payload: NotificationPayload) -> None:
        if not self.configured:
            raise NotificationNotConfigured("email not configured")

        content = build_email_message(payload, self.admin_url)
        errors: list[str] = []
        for sender in self.senders:
            if not sender.configured:
                continue
            try:
                await asyncio.wait_for(
                    sender.send(self.recipients, content), timeout=self.sender_timeout
                )
            except asyncio.TimeoutError:
                log.warning(
                    "Email via %s timed out after %ss",
                    sender.name,
                    self.sender_timeout,
                    extra={"channel": "email"},
                )
                errors.append(f"{sender.name}: timed out after {self.sender_timeout}s")
                continue
            except ChannelError as exc:
                log.warning(
                    "Email via %s failed: %s", sender.name, exc, extra={"channel": "email"}
                )
                errors.append(f"{sender.name}: {exc}")
                continue
            if errors:
                log.info("Email delivered via fallback %s", sender.name, extra={"channel": "email"})
            return

        raise ChannelError("; ".join(errors))


def build_channels(cfg: LeadNotifySettings) -> list[Channel]:
    """Channels in their fixed reporting order: slack, email, telegram."""
    admin_url = cfg.admin_conversations_url
    timeout = cfg.notify_channel_timeout_seconds
    return [
        SlackChannel(cfg.slack_webhook_url, admin_url, timeout=timeout),
        EmailChannel(
            cfg.email_recipients,
            admin_url,
            primary=SendGridSender(
                cfg.sendgrid_api_key, cfg.sendgrid_from_email, cfg.sendgrid_from_name
            ),
            fallback=SmtpSender(
                cfg.smtp_host,
                cfg.smtp_port,
                cfg.smtp_user,
                cfg.smtp_password,
                from_email=cfg.smtp_from_email,
                use_ssl=cfg.smtp_use_ssl,
                starttls=cfg.smtp_starttls,
                timeout=cfg.smtp_timeout_seconds,
            ),
            sender_timeout=timeout,
        ),
        TelegramChannel(
            cfg.telegram_bot_token,
            cfg.telegram_chat_id,
            admin_url,
            api_base=cfg.telegram_api_base,
            timeout=timeout,
        ),
    ]
