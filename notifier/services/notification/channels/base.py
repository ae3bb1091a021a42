from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ChannelResult:
    """Outcome of one provider call. Channels never raise to the caller."""

    success: bool
    message_id: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, message_id: str | None = None) -> "ChannelResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(cls, error: str) -> "ChannelResult":
        return cls(success=False, error=error)
