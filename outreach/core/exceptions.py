# outreach/core/exceptions.py
"""
Error taxonomy for the segmentation and campaign engine.

Per-target errors (TransportFailure, TransportTimeout) are recovered inside
a campaign pass. Tenant-wide errors (SchemaViolation, InvalidState,
InsufficientBalance) abort the pass.
"""
from typing import Optional


class OutreachError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class SchemaViolation(OutreachError):
    """Unknown attribute key, illegal operator or malformed operand."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operator: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.key = key
        self.operator = operator
        details = dict(details or {})
        if key is not None:
            details["key"] = key
        if operator is not None:
            details["operator"] = operator
        super().__init__(message, details)


class InvalidState(OutreachError):
    """Execution requested on a campaign that is not runnable."""

    def __init__(self, campaign_id, status: Optional[str], message: Optional[str] = None):
        self.campaign_id = campaign_id
        self.status = status
        super().__init__(
            message or f"Campaign cannot be executed. Status: {status}",
            {"campaign_id": campaign_id, "status": status}
        )


class InsufficientBalance(OutreachError):
    """Tenant balance does not cover the next message."""

    def __init__(self, tenant_id: str, amount):
        self.tenant_id = tenant_id
        self.amount = amount
        super().__init__(
            "Insufficient balance",
            {"tenant_id": tenant_id, "required": str(amount)}
        )


class TransportFailure(OutreachError):
    """Channel provider rejected or could not deliver a message."""

    def __init__(
        self,
        message: str,
        channel: Optional[str] = None,
        recipient: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.channel = channel
        self.recipient = recipient
        details = {}
        if channel:
            details["channel"] = channel
        super().__init__(message, details, original_error)


class TransportTimeout(TransportFailure):
    """Channel provider did not answer within the per-call timeout."""
    pass
