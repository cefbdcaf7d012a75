"""Application services."""

from .batches import BatchService, CallerContext, get_batch_service, reset_batch_state

__all__ = [
    "BatchService",
    "CallerContext",
    "get_batch_service",
    "reset_batch_state",
]
