from __future__ import annotations

from uuid import uuid4

from app.services.transfers.base import (
    OnboardingLink,
    PayeeAccount,
    PayeeStatus,
    TransferClient,
    TransferResult,
)


class MockTransferClient(TransferClient):
    """Local/dev provider: accounts are instantly enabled, transfers always succeed."""

    name = "mock"

    def __init__(self) -> None:
        self._transfers: dict[str, TransferResult] = {}

    def create_payee(self, *, email: str | None, metadata: dict | None = None) -> PayeeAccount:
        account_id = f"acct_mock_{uuid4().hex[:16]}"
        return PayeeAccount(
            id=account_id,
            status=PayeeStatus(details_submitted=False),
            raw={"id": account_id, "email": email, "metadata": metadata or {}},
        )

    def create_onboarding_link(self, account_id: str) -> OnboardingLink:
        return OnboardingLink(url=f"https://example.com/mock/onboarding?account={account_id}")

    def retrieve_account(self, account_id: str) -> PayeeAccount:
        return PayeeAccount(
            id=account_id,
            status=PayeeStatus(charges_enabled=True, payouts_enabled=True, details_submitted=True),
            raw={"id": account_id},
        )

    def transfer(
        self,
        *,
        account_id: str,
        amount_minor: int,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> TransferResult:
        # same key, same transfer: mirrors processor-side idempotency
        if idempotency_key not in self._transfers:
            self._transfers[idempotency_key] = TransferResult(
                id=f"tr_mock_{uuid4().hex[:16]}",
                amount_minor=amount_minor,
                currency=currency,
                destination=account_id,
                raw={"metadata": metadata or {}},
            )
        return self._transfers[idempotency_key]
