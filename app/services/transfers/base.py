"""Funds-transfer service interface: payee accounts, onboarding links, transfers."""
from __future__ import annotations

from dataclasses import dataclass, field


class TransferServiceError(Exception):
    """The processor rejected the call or could not be reached."""


@dataclass
class PayeeAccount:
    id: str
    status: "PayeeStatus"
    raw: dict | None = None


@dataclass
class PayeeStatus:
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    disabled_reason: str | None = None
    requirements_due: list[str] = field(default_factory=list)

    @classmethod
    def from_account(cls, account: dict) -> "PayeeStatus":
        requirements = account.get("requirements") or {}
        return cls(
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
            disabled_reason=requirements.get("disabled_reason"),
            requirements_due=list(requirements.get("currently_due") or []),
        )

    def as_dict(self) -> dict:
        return {
            "charges_enabled": self.charges_enabled,
            "payouts_enabled": self.payouts_enabled,
            "details_submitted": self.details_submitted,
            "disabled_reason": self.disabled_reason,
            "requirements_due": list(self.requirements_due),
        }


@dataclass
class OnboardingLink:
    url: str
    expires_at: int | None = None


@dataclass
class TransferResult:
    id: str
    amount_minor: int
    currency: str
    destination: str
    raw: dict | None = None


class TransferClient:
    name = "unknown"

    def create_payee(self, *, email: str | None, metadata: dict | None = None) -> PayeeAccount:
        raise NotImplementedError

    def create_onboarding_link(self, account_id: str) -> OnboardingLink:
        raise NotImplementedError

    def retrieve_account(self, account_id: str) -> PayeeAccount:
        raise NotImplementedError

    def transfer(
        self,
        *,
        account_id: str,
        amount_minor: int,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> TransferResult:
        raise NotImplementedError

    def close(self) -> None:
        return None
