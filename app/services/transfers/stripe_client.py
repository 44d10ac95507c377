"""
Stripe Connect client over httpx (sync, usable from API handlers and Celery).
Express payee accounts, onboarding links and transfers to connected accounts.
"""
from __future__ import annotations

import logging
import time

import httpx
import pybreaker

from app.core.config import settings
from app.services.circuit_breaker import get_circuit_breaker
from app.services.transfers.base import (
    OnboardingLink,
    PayeeAccount,
    PayeeStatus,
    TransferClient,
    TransferResult,
    TransferServiceError,
)
from app.utils.metrics import transfer_request_duration_seconds, transfer_requests_total

logger = logging.getLogger(__name__)


class _UpstreamUnavailable(Exception):
    """Network failure or 5xx: counted by the circuit breaker."""


def _form_encode(data: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Stripe form encoding: {"metadata": {"a": 1}} -> [("metadata[a]", "1")]."""
    items: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            items.extend(_form_encode(value, name))
        elif isinstance(value, bool):
            items.append((name, "true" if value else "false"))
        else:
            items.append((name, str(value)))
    return items


class StripeTransferClient(TransferClient):
    name = "stripe"

    def __init__(
        self,
        secret_key: str | None = None,
        api_base: str | None = None,
        http_client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self._api_base = (api_base or settings.stripe_api_base).rstrip("/")
        self._client = http_client
        self._breaker = breaker

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=settings.http_client_timeout,
                transport=httpx.HTTPTransport(retries=1),
            )
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_circuit_breaker("stripe")
        return self._breaker

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _send(self, method: str, path: str, data: dict | None, headers: dict) -> httpx.Response:
        try:
            resp = self.client.request(
                method,
                f"{self._api_base}{path}",
                data=dict(_form_encode(data)) if data else None,
                headers=headers,
                auth=(self._secret_key, ""),
            )
        except httpx.HTTPError as e:
            raise _UpstreamUnavailable(str(e)) from e
        if resp.status_code >= 500:
            raise _UpstreamUnavailable(f"HTTP {resp.status_code}")
        return resp

    def _request(
        self,
        method: str,
        path: str,
        data: dict | None = None,
        idempotency_key: str | None = None,
    ) -> dict:
        op = f"{method} {path.split('/')[1]}"
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        start = time.time()
        try:
            resp = self.breaker.call(self._send, method, path, data, headers)
        except pybreaker.CircuitBreakerError as e:
            transfer_requests_total.labels(method=op, status="circuit_open").inc()
            raise TransferServiceError("Transfer service temporarily unavailable") from e
        except _UpstreamUnavailable as e:
            transfer_requests_total.labels(method=op, status="error").inc()
            transfer_request_duration_seconds.labels(method=op).observe(time.time() - start)
            logger.warning("transfer_api_unavailable", extra={"method": op, "error": str(e)})
            raise TransferServiceError(str(e)) from e

        transfer_request_duration_seconds.labels(method=op).observe(time.time() - start)
        try:
            body = resp.json() if resp.content else {}
        except ValueError as e:
            transfer_requests_total.labels(method=op, status="error").inc()
            logger.warning(
                "transfer_api_bad_response",
                extra={"method": op, "status_code": resp.status_code, "error": str(e)},
            )
            raise TransferServiceError(f"Unreadable response (HTTP {resp.status_code})") from e
        if resp.status_code >= 400:
            transfer_requests_total.labels(method=op, status="rejected").inc()
            message = ((body.get("error") or {}).get("message") or f"HTTP {resp.status_code}").strip()
            logger.warning(
                "transfer_api_rejected",
                extra={"method": op, "status_code": resp.status_code, "error": message},
            )
            raise TransferServiceError(message)
        transfer_requests_total.labels(method=op, status="success").inc()
        return body

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_payee(self, *, email: str | None, metadata: dict | None = None) -> PayeeAccount:
        body = self._request(
            "POST",
            "/accounts",
            {
                "type": "express",
                "country": settings.stripe_account_country,
                "email": email,
                "capabilities": {"transfers": {"requested": True}},
                "metadata": metadata or {},
            },
        )
        return PayeeAccount(id=body["id"], status=PayeeStatus.from_account(body), raw=body)

    def create_onboarding_link(self, account_id: str) -> OnboardingLink:
        body = self._request(
            "POST",
            "/account_links",
            {
                "account": account_id,
                "refresh_url": settings.connect_refresh_url,
                "return_url": settings.connect_return_url,
                "type": "account_onboarding",
            },
        )
        return OnboardingLink(url=body["url"], expires_at=body.get("expires_at"))

    def retrieve_account(self, account_id: str) -> PayeeAccount:
        body = self._request("GET", f"/accounts/{account_id}")
        return PayeeAccount(id=body["id"], status=PayeeStatus.from_account(body), raw=body)

    def transfer(
        self,
        *,
        account_id: str,
        amount_minor: int,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> TransferResult:
        body = self._request(
            "POST",
            "/transfers",
            {
                "amount": amount_minor,
                "currency": currency,
                "destination": account_id,
                "metadata": metadata or {},
            },
            idempotency_key=idempotency_key,
        )
        return TransferResult(
            id=body["id"],
            amount_minor=int(body.get("amount", amount_minor)),
            currency=body.get("currency", currency),
            destination=body.get("destination", account_id),
            raw=body,
        )
