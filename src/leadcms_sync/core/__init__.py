"""HTTP client, error types and async helpers shared by the sync engine."""

from .async_utils import gather_ordered, init_semaphore, run_in_thread
from .client import LeadCMSClient, SyncPage
from .errors import (
    AuthenticationError,
    ConfigurationError,
    LeadCMSError,
    TransportError,
)

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "LeadCMSClient",
    "LeadCMSError",
    "SyncPage",
    "TransportError",
    "gather_ordered",
    "init_semaphore",
    "run_in_thread",
]
