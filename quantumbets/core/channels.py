"""
Common result type for the email and SMS channel senders.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional


@dataclass
class SendResult:
    """Outcome of a single send through a channel provider."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, message_id: Optional[str] = None) -> "SendResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(success=False, error=error)


# send(destination, body, subject_or_meta) -> SendResult
ChannelSender = Callable[..., Awaitable[SendResult]]
