"""
Funds-transfer service (Stripe Connect) with a mock provider for local runs.
"""
from .base import (
    OnboardingLink,
    PayeeAccount,
    PayeeStatus,
    TransferClient,
    TransferResult,
    TransferServiceError,
)
from .factory import build_transfer_client

__all__ = [
    "OnboardingLink",
    "PayeeAccount",
    "PayeeStatus",
    "TransferClient",
    "TransferResult",
    "TransferServiceError",
    "build_transfer_client",
]
