from __future__ import annotations

from app.core.config import Settings
from app.services.transfers.base import TransferClient
from app.services.transfers.mock_provider import MockTransferClient
from app.services.transfers.stripe_client import StripeTransferClient


class TransferMisconfiguredError(RuntimeError):
    pass


def build_transfer_client(settings: Settings) -> TransferClient:
    provider = (settings.transfer_provider or "stripe").strip().lower()

    if provider == "mock":
        return MockTransferClient()

    if provider != "stripe":
        raise TransferMisconfiguredError(f"TRANSFER_MISCONFIGURED:transfer_provider={provider}")

    if not settings.stripe_secret_key.strip():
        raise TransferMisconfiguredError("TRANSFER_MISCONFIGURED:missing STRIPE_SECRET_KEY")

    return StripeTransferClient(secret_key=settings.stripe_secret_key.strip())
