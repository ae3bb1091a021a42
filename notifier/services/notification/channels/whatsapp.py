from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from notifier.core.config import settings
from notifier.core.exceptions import ChannelFailure, ChannelNotConfiguredError, InvalidDestinationError
from notifier.models.models import Channel
from notifier.services.notification.channels.base import ChannelResult
from notifier.utils.validators import normalize_phone, validate_phone

logger = logging.getLogger(__name__)

SEND_TEMPLATE_PATH = "/api/v1/sendTemplateMessage"

# Final client errors; any other status is retried
NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 404, 422})


class WhatsAppChannel:
    """Pre-approved template messages through the Wati WhatsApp Business API.

    Templates work outside Meta's 24-hour customer service window, which is
    why every automated reminder goes out as a template rather than free text.
    """

    name = Channel.WHATSAPP.value

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int | None = None,
        retry_base_seconds: float | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.WATI_API_KEY
        self.base_url = (base_url or settings.WATI_API_URL).rstrip("/")
        self.timeout = timeout or settings.CHANNEL_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts or settings.CHANNEL_MAX_ATTEMPTS)
        self.retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None else settings.CHANNEL_RETRY_BASE_SECONDS
        )
        self._transport = transport

    async def send_template(
        self,
        phone: str | None,
        template_name: str,
        parameters: list[dict[str, str]],
    ) -> ChannelResult:
        """Send ``template_name`` with ordered ``[{name, value}]`` parameters.

        Transient failures (timeouts, connection errors, 5xx, 429) are retried
        with exponential backoff up to ``max_attempts`` times. The whole loop,
        backoff sleeps included, runs inside one ``timeout`` budget. Never
        raises: every failure comes back as a failed ``ChannelResult``.
        """
        try:
            if not validate_phone(phone):
                raise InvalidDestinationError(self.name, phone)
            if not self.api_key:
                raise ChannelNotConfiguredError(self.name)
            destination = normalize_phone(phone)  # type: ignore[arg-type]
            payload = {
                "template_name": template_name,
                "broadcast_name": settings.WATI_BROADCAST_NAME,
                "parameters": template_parameters(parameters),
            }
            return await asyncio.wait_for(
                self._send_with_retries(destination, template_name, payload),
                timeout=self.timeout,
            )
        except ChannelFailure as exc:
            logger.warning("[WATI] %s", exc.message)
            return ChannelResult.failed(exc.message)
        except asyncio.TimeoutError:
            logger.error("[WATI] Timed out after %ss sending %s to %s", self.timeout, template_name, phone)
            return ChannelResult.failed(f"timeout after {self.timeout}s")

    async def _send_with_retries(
        self,
        destination: str,
        template_name: str,
        payload: dict[str, Any],
    ) -> ChannelResult:
        error = "Failed to send WhatsApp message"
        for attempt in range(1, self.max_attempts + 1):
            try:
                data = await self._post_template(destination, payload)
            except httpx.TimeoutException:
                error = f"timeout after {self.timeout}s"
                logger.warning("[WATI] Attempt %s/%s timed out sending %s", attempt, self.max_attempts, template_name)
            except httpx.HTTPStatusError as exc:
                error = _provider_error(exc.response)
                if exc.response.status_code in NON_RETRYABLE_STATUSES:
                    logger.error("[WATI] %s sending %s to %s, not retrying", error, template_name, destination)
                    return ChannelResult.failed(error)
                logger.warning("[WATI] Attempt %s/%s failed: %s", attempt, self.max_attempts, error)
            except httpx.HTTPError as exc:
                error = str(exc) or exc.__class__.__name__
                logger.warning("[WATI] Attempt %s/%s failed: %s", attempt, self.max_attempts, error)
            else:
                return self._interpret(data, template_name, destination)

            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_base_seconds * (2 ** (attempt - 1)))

        logger.error("[WATI] All %s attempts failed for %s to %s: %s", self.max_attempts, template_name, destination, error)
        return ChannelResult.failed(error)

    def _interpret(self, data: Any, template_name: str, destination: str) -> ChannelResult:
        if not isinstance(data, dict):
            logger.error("[WATI] Malformed response for %s to %s: %r", template_name, destination, data)
            return ChannelResult.failed("Malformed provider response")
        if data.get("result") is False or data.get("result") == "error":
            error = data.get("info") or data.get("message") or "Unknown error from Wati"
            logger.warning("[WATI] Provider rejected %s for %s: %s", template_name, destination, error)
            return ChannelResult.failed(str(error))

        logger.info("[WATI] ✓ Sent %s to %s", template_name, destination)
        message_id = data.get("id") or data.get("messageId")
        return ChannelResult.ok(str(message_id) if message_id else None)

    async def _post_template(self, destination: str, payload: dict[str, Any]) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        ) as client:
            response = await client.post(
                SEND_TEMPLATE_PATH,
                params={"whatsappNumber": destination},
                json=payload,
            )
            response.raise_for_status()
            try:
                return response.json()
            except ValueError:
                return {}


def template_parameters(parameters: Any) -> list[dict[str, str]]:
    """Normalise ``[{name, value}]`` pairs, rejecting anything else."""
    try:
        return [{"name": str(p["name"]), "value": str(p["value"])} for p in parameters or []]
    except (KeyError, TypeError) as exc:
        raise ChannelFailure(
            Channel.WHATSAPP.value,
            f"Malformed template parameters: {exc!r}",
            code="CHN103",
        ) from exc


def _provider_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    message = body.get("message") or body.get("info") if isinstance(body, dict) else None
    return f"HTTP {response.status_code}: {message}" if message else f"HTTP {response.status_code}"
