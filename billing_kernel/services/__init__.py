"""Services for the billing kernel (write side)."""

from billing_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "SequenceCounter",
    "SequenceService",
]
