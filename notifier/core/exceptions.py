"""Exception hierarchy for the reminder engine.

Error codes follow pattern: [CATEGORY][NUMBER]
- ELG: Eligibility failures (reminder cancelled, never retried)
- CHN: Channel failures (counted per channel, never raised to the batch loop)
- RTY: Retry exhaustion
- CLM: Claim conflicts between overlapping workers
- PAY: Notification payload errors
- STM: Terminal state violations
"""

from __future__ import annotations

from typing import Any


class NotifierException(Exception):
    """Base exception for all reminder engine errors."""

    def __init__(
        self,
        message: str,
        code: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "details": self.details,
            }
        }


# ============================================================================
# ELIGIBILITY (ELG001-099)
# ============================================================================

class EligibilityFailure(NotifierException):
    """A reminder's order no longer warrants a reminder.

    Carries the ``CancellationReason`` produced by the failing predicate.
    """

    def __init__(self, reason: Any, detail: str | None = None):
        reason_value = getattr(reason, "value", str(reason))
        message = detail or f"Reminder cancelled: {reason_value}"
        super().__init__(
            message=message,
            code="ELG001",
            details={"reason": reason_value},
        )
        self.reason = reason


# ============================================================================
# CHANNEL (CHN100-199)
# ============================================================================

class ChannelFailure(NotifierException):
    """A channel send failed (timeout, provider error, not configured)."""

    def __init__(self, channel: str, message: str, code: str = "CHN100"):
        super().__init__(
            message=message,
            code=code,
            details={"channel": channel},
        )
        self.channel = channel


class InvalidDestinationError(ChannelFailure):
    """Destination rejected before calling the provider."""

    def __init__(self, channel: str, destination: str | None):
        super().__init__(
            channel=channel,
            message=f"Invalid {channel} destination: {destination!r}",
            code="CHN101",
        )
        self.details["destination"] = destination


class ChannelNotConfiguredError(ChannelFailure):
    """Provider credentials are missing."""

    def __init__(self, channel: str):
        super().__init__(
            channel=channel,
            message=f"{channel} channel not configured",
            code="CHN102",
        )


# ============================================================================
# RETRY (RTY200-299)
# ============================================================================

class RetryExhausted(NotifierException):
    """All retry attempts used up; record is now terminal."""

    def __init__(self, record_id: str | int, attempts: int, last_error: str | None = None):
        message = f"Retries exhausted after {attempts} attempts"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(
            message=message,
            code="RTY200",
            details={"record_id": record_id, "attempts": attempts},
        )


# ============================================================================
# CLAIM (CLM300-399)
# ============================================================================

class ClaimConflict(NotifierException):
    """Another worker changed the record before we could claim it."""

    def __init__(self, record_id: str | int, expected_status: str):
        super().__init__(
            message=f"Record {record_id} is no longer {expected_status}",
            code="CLM300",
            details={"record_id": record_id, "expected_status": expected_status},
        )


# ============================================================================
# PAYLOAD (PAY400-499)
# ============================================================================

class IncompletePayloadError(NotifierException):
    """A generic notification lacks the fields needed to (re)deliver it."""

    def __init__(self, channel: str, missing: list[str]):
        super().__init__(
            message=f"Incomplete {channel} payload, missing: {', '.join(missing)}",
            code="PAY400",
            details={"channel": channel, "missing": missing},
        )
        self.missing = missing


# ============================================================================
# STATE (STM500-599)
# ============================================================================

class TerminalStateError(NotifierException):
    """Attempt to modify a record that already reached a terminal status."""

    def __init__(self, record: str, status: str, fields: list[str]):
        super().__init__(
            message=f"{record} is {status}; refusing to change {', '.join(fields)}",
            code="STM500",
            details={"record": record, "status": status, "fields": fields},
        )
