# quantumbets/core/exceptions.py
"""
Exception hierarchy for the delivery pipeline.

Batch operations never raise for a single bad delivery; these exceptions
escape only for invocation-level problems (unknown content, bad state
requests) or are caught per delivery and recorded on the record.
"""

from typing import Optional


class DeliveryPipelineError(Exception):
    """Base exception for all delivery pipeline errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "DELIVERY_ERROR",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(DeliveryPipelineError):
    """Referenced content, subscriber or delivery does not exist."""

    def __init__(self, resource: str, resource_id):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            message=f"{resource} with ID {resource_id} not found",
            error_code="NOT_FOUND",
            details={"resource": resource, "id": resource_id},
        )


class SendFailure(DeliveryPipelineError):
    """A channel provider rejected the message or could not be reached."""

    def __init__(self, message: str, channel: str, **kwargs):
        self.channel = channel
        super().__init__(message, error_code="SEND_FAILURE", **kwargs)


class InvalidTransitionError(DeliveryPipelineError):
    """Requested delivery status change is not allowed by the state machine."""

    def __init__(self, delivery_id: int, current: str, target: str):
        super().__init__(
            message=f"Delivery {delivery_id} cannot move from {current} to {target}",
            error_code="INVALID_TRANSITION",
            details={"delivery_id": delivery_id, "current": current, "target": target},
        )
