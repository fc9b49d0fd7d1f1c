"""
Router: rule evaluation, concurrent delivery, retry with backoff and
dead-letter handling.
"""

from .dead_letter import DeadLetterStore
from .delivery import TargetDispatcher
from .errors import DeliveryError
from .retry import RetryCoordinator
from .router import Router

__all__ = [
    "Router",
    "RetryCoordinator",
    "DeadLetterStore",
    "TargetDispatcher",
    "DeliveryError",
]
