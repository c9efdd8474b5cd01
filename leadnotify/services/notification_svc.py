"""Notification service: best-effort fan-out across every channel.

``send_notification`` never raises. Each channel runs concurrently under its
own timeout and its outcome is reported as a ``ChannelResult``; the overall
result is successful when at least one channel delivered.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..config import LeadNotifySettings, settings
from ..schemas.notification import NotificationPayload
from .channels import Channel, NotificationNotConfigured, build_channels

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelResult:
    success: bool
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"success": self.success}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class NotificationResult:
    success: bool
    channels: dict[str, ChannelResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return [name for name, result in self.channels.items() if result.success]

    @property
    def failed(self) -> dict[str, str | None]:
        return {name: result.error for name, result in self.channels.items() if not result.success}

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "channels": {name: result.to_dict() for name, result in self.channels.items()},
        }


class NotificationService:
    def __init__(self, channels: Sequence[Channel], timeout_seconds: float = 10.0) -> None:
        self.channels = list(channels)
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, cfg: LeadNotifySettings | None = None) -> NotificationService:
        cfg = cfg or settings
        return cls(build_channels(cfg), timeout_seconds=cfg.notify_channel_timeout_seconds)

    def configured_channels(self) -> list[str]:
        return [channel.name for channel in self.channels if channel.configured]

    def _timeout_for(self, channel: Channel) -> float:
        # Channels with internal fallbacks (email) declare a larger budget.
        return max(self.timeout_seconds, getattr(channel, "timeout_seconds", 0.0))

    async def _attempt(self, channel: Channel, payload: NotificationPayload) -> ChannelResult:
        if not channel.configured:
            return ChannelResult(False, f"{channel.name} not configured")
        timeout = self._timeout_for(channel)
        try:
            await asyncio.wait_for(channel.send(payload), timeout=timeout)
        except NotificationNotConfigured as exc:
            return ChannelResult(False, str(exc))
        except asyncio.TimeoutError:
            log.error(
                "%s notification timed out after %ss",
                channel.name,
                timeout,
                extra={"channel": channel.name},
            )
            return ChannelResult(False, f"{channel.name} timed out after {timeout}s")
        except Exception as exc:
            log.error(
                "%s notification failed: %s",
                channel.name,
                exc,
                extra={"channel": channel.name},
            )
            return ChannelResult(False, str(exc) or type(exc).__name__)

        log.info("%s notification sent", channel.name, extra={"channel": channel.name})
        return ChannelResult(True)

    async def send_notification(self, payload: NotificationPayload) -> NotificationResult:
        """Attempt every channel and report each outcome."""
        results = await asyncio.gather(
            *(self._attempt(channel, payload) for channel in self.channels)
        )
        channels = {channel.name: result for channel, result in zip(self.channels, results)}
        return NotificationResult(
            success=any(result.success for result in results),
            channels=channels,
        )
