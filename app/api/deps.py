"""
Shared FastAPI dependencies. Tests swap these via app.dependency_overrides.
"""
from functools import lru_cache

from app.core.config import settings
from app.referral.tasks import QueuedEmailNotifier
from app.services.idempotency import IdempotencyStore
from app.services.transfers import TransferClient, build_transfer_client


@lru_cache(maxsize=1)
def get_transfer_client() -> TransferClient:
    return build_transfer_client(settings)


@lru_cache(maxsize=1)
def get_claim_store() -> IdempotencyStore:
    return IdempotencyStore()


def get_notifier() -> QueuedEmailNotifier:
    return QueuedEmailNotifier()
