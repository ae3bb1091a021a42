from __future__ import annotations

import logging
from dataclasses import dataclass

from notifier import metrics
from notifier.models.models import Channel
from notifier.services.notification.channels.base import ChannelResult
from notifier.services.notification.channels.email import EmailChannel
from notifier.services.notification.channels.whatsapp import WhatsAppChannel

logger = logging.getLogger(__name__)

# When both channels succeed, the record names the first one here
CHANNEL_PRIORITY = (Channel.WHATSAPP.value, Channel.EMAIL.value)


@dataclass
class DeliveryOutcome:
    """Per-channel results of one delivery attempt. ``None`` means not attempted."""

    whatsapp: ChannelResult | None = None
    email: ChannelResult | None = None

    def result_for(self, channel: str) -> ChannelResult | None:
        return self.whatsapp if channel == Channel.WHATSAPP.value else self.email

    @property
    def attempted_channels(self) -> list[str]:
        return [c for c in CHANNEL_PRIORITY if self.result_for(c) is not None]

    @property
    def any_success(self) -> bool:
        return self.succeeded_channel is not None

    @property
    def succeeded_channel(self) -> str | None:
        for channel in CHANNEL_PRIORITY:
            result = self.result_for(channel)
            if result is not None and result.success:
                return channel
        return None

    @property
    def error_summary(self) -> str | None:
        if not self.attempted_channels:
            return "No contact channel available"
        errors = [
            f"{channel}: {self.result_for(channel).error}"  # type: ignore[union-attr]
            for channel in self.attempted_channels
            if not self.result_for(channel).success  # type: ignore[union-attr]
        ]
        return "; ".join(errors) or None


class NotificationService:
    """Facade over the WhatsApp template and email channels."""

    def __init__(
        self,
        whatsapp: WhatsAppChannel | None = None,
        email: EmailChannel | None = None,
    ) -> None:
        self.whatsapp = whatsapp or WhatsAppChannel()
        self.email = email or EmailChannel()

    async def send_whatsapp_template(
        self,
        phone: str,
        template_name: str,
        parameters: list[dict[str, str]],
    ) -> ChannelResult:
        try:
            result = await self.whatsapp.send_template(phone, template_name, parameters)
        except Exception as exc:
            logger.exception("[WATI] Unexpected error sending %s to %s", template_name, phone)
            result = ChannelResult.failed(str(exc) or exc.__class__.__name__)
        metrics.channel_delivery(Channel.WHATSAPP.value, result.success)
        return result

    async def send_email(self, to_email: str, subject: str, html: str) -> ChannelResult:
        try:
            result = await self.email.send(to_email, subject, html)
        except Exception as exc:
            logger.exception("[EMAIL] Unexpected error sending '%s' to %s", subject, to_email)
            result = ChannelResult.failed(str(exc) or exc.__class__.__name__)
        metrics.channel_delivery(Channel.EMAIL.value, result.success)
        return result

    async def send_both(
        self,
        *,
        phone: str | None,
        template_name: str,
        parameters: list[dict[str, str]],
        email: str | None,
        subject: str,
        html: str,
    ) -> DeliveryOutcome:
        """Attempt each channel that has a destination, regardless of the other's result.

        A channel that raises is logged and counted as a failed attempt.
        """
        outcome = DeliveryOutcome()
        if phone:
            outcome.whatsapp = await self.send_whatsapp_template(phone, template_name, parameters)
        if email:
            outcome.email = await self.send_email(email, subject, html)
        logger.info(
            "Delivery attempt - WhatsApp: %s, Email: %s",
            None if outcome.whatsapp is None else outcome.whatsapp.success,
            None if outcome.email is None else outcome.email.success,
        )
        return outcome
