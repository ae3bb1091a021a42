from __future__ import annotations

import asyncio
import logging
import re
import smtplib
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from notifier.core.config import settings
from notifier.core.exceptions import ChannelFailure, ChannelNotConfiguredError, InvalidDestinationError
from notifier.models.models import Channel
from notifier.services.notification.channels.base import ChannelResult
from notifier.utils.validators import validate_email

logger = logging.getLogger(__name__)

# Rejections the server will repeat on every attempt
PERMANENT_SMTP_ERRORS = (
    smtplib.SMTPAuthenticationError,
    smtplib.SMTPRecipientsRefused,
    smtplib.SMTPSenderRefused,
    smtplib.SMTPNotSupportedError,
)


class EmailChannel:
    """Transactional HTML email over SMTP (STARTTLS).

    smtplib is blocking, so delivery runs in a worker thread. A thread cannot
    be cancelled from the event loop, so the ``timeout`` budget is enforced
    inside the thread instead: every connection gets the time left before the
    deadline as its socket timeout, and no retry starts once it has passed.
    """

    name = Channel.EMAIL.value

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        from_email: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_base_seconds: float | None = None,
    ) -> None:
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.user = user or settings.SMTP_USER
        self.password = password or settings.SMTP_PASSWORD
        self.from_email = from_email or settings.FROM_EMAIL or self.user
        self.timeout = timeout or settings.CHANNEL_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts or settings.CHANNEL_MAX_ATTEMPTS)
        self.retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None else settings.CHANNEL_RETRY_BASE_SECONDS
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    async def send(self, to_email: str | None, subject: str, html: str) -> ChannelResult:
        try:
            if not validate_email(to_email):
                raise InvalidDestinationError(self.name, to_email)
            if not self.configured:
                raise ChannelNotConfiguredError(self.name)
            await asyncio.to_thread(self._deliver_with_retries, to_email, subject, html)
        except ChannelFailure as exc:
            logger.warning("[EMAIL] %s", exc.message)
            return ChannelResult.failed(exc.message)
        except TimeoutError:
            logger.error("[EMAIL] Timed out after %ss sending to %s", self.timeout, to_email)
            return ChannelResult.failed(f"timeout after {self.timeout}s")
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("[EMAIL] SMTP send failed to %s: %s", to_email, exc)
            return ChannelResult.failed(str(exc) or exc.__class__.__name__)

        logger.info("[EMAIL] ✓ Sent '%s' to %s", subject, to_email)
        return ChannelResult.ok()

    def _deliver_with_retries(self, to_email: str, subject: str, html: str) -> None:
        deadline = time.monotonic() + self.timeout
        for attempt in range(1, self.max_attempts + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"timeout after {self.timeout}s")
            try:
                self._deliver(to_email, subject, html, timeout=remaining)
                return
            except PERMANENT_SMTP_ERRORS:
                raise
            except (smtplib.SMTPException, OSError) as exc:
                if attempt == self.max_attempts:
                    raise
                logger.warning("[EMAIL] Attempt %s/%s to %s failed: %s", attempt, self.max_attempts, to_email, exc)
            pause = self.retry_base_seconds * (2 ** (attempt - 1))
            if time.monotonic() + pause >= deadline:
                raise TimeoutError(f"timeout after {self.timeout}s")
            time.sleep(pause)

    def _deliver(self, to_email: str, subject: str, html: str, timeout: float) -> None:
        msg = MIMEMultipart("alternative")
        msg["From"] = f"{settings.BUSINESS_NAME} <{self.from_email}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(html_to_text(html), "plain"))
        msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP(self.host, self.port, timeout=timeout) as server:  # type: ignore[arg-type]
            server.starttls()
            server.login(self.user, self.password)  # type: ignore[arg-type]
            server.send_message(msg)


def html_to_text(html: str) -> str:
    """Rough plain-text alternative for clients that refuse HTML."""
    text = re.sub(r"<(style|head)[^>]*>.*?</\1>", "", html, flags=re.S | re.I)
    text = re.sub(r"<br\s*/?>|</p>|</div>|</h\d>|</li>", "\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", "", text)
    lines = (line.strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)
