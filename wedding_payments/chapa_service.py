import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from wedding_payments.config import load_settings
from wedding_payments.exceptions import ExternalProviderError

logger = logging.getLogger(__name__)


def _client() -> httpx.Client:
    settings = load_settings()
    return httpx.Client(
        base_url=settings.chapa_base_url,
        headers={
            "Authorization": f"Bearer {settings.chapa_secret_key}",
            "Content-Type": "application/json",
        },
        timeout=settings.chapa_timeout,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return str(body)
    message = body.get("message")
    if isinstance(message, dict):
        # Chapa reports field errors as {"field": ["reason", ...]}
        return ", ".join(f"{k}: {v}" for k, v in message.items())
    if body.get("errors"):
        return ", ".join(str(v) for v in body["errors"].values())
    return str(message or f"HTTP {response.status_code}")


def _request(method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Call Chapa and return the JSON body, or raise ExternalProviderError."""
    try:
        with _client() as client:
            response = client.request(method, path, json=payload)
    except httpx.TimeoutException as exc:
        logger.error("Chapa %s %s timed out", method, path)
        raise ExternalProviderError(
            "Payment provider timed out", context={"path": path, "error": str(exc)}
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("Chapa %s %s failed: %s", method, path, exc)
        raise ExternalProviderError(
            "Payment provider is unavailable", context={"path": path, "error": str(exc)}
        ) from exc

    if response.status_code >= 400:
        detail = _error_message(response)
        logger.error("Chapa %s %s returned %s: %s", method, path, response.status_code, detail)
        raise ExternalProviderError(
            f"Chapa Error: {detail}",
            context={"path": path, "status_code": response.status_code},
        )

    try:
        body = response.json()
    except ValueError as exc:
        raise ExternalProviderError(
            "Payment provider returned an unreadable response", context={"path": path}
        ) from exc

    if not isinstance(body, dict) or body.get("status") != "success":
        detail = _error_message(response)
        logger.error("Chapa %s %s was not successful: %s", method, path, detail)
        raise ExternalProviderError(f"Chapa Error: {detail}", context={"path": path})
    return body


def create_subaccount(
    business_name: str,
    account_name: str,
    bank_code: str,
    account_number: str,
    split_value: Decimal,
) -> str:
    body = _request("POST", "/subaccount", {
        "business_name": business_name,
        "account_name": account_name,
        "bank_code": bank_code,
        "account_number": account_number,
        "split_type": "percentage",
        "split_value": str(split_value),
    })
    try:
        return body["data"]["subaccount_id"]
    except (KeyError, TypeError) as exc:
        raise ExternalProviderError(
            "Payment provider did not return a sub-account id", context={"body": body}
        ) from exc


def initialize_transaction(
    amount: Decimal,
    currency: str,
    email: str,
    first_name: Optional[str],
    last_name: Optional[str],
    tx_ref: str,
    callback_url: str,
    return_url: str,
    subaccounts: List[Dict[str, Any]],
) -> str:
    """Start a hosted checkout and return its checkout URL."""
    body = _request("POST", "/transaction/initialize", {
        "amount": str(amount),
        "currency": currency,
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "tx_ref": tx_ref,
        "callback_url": callback_url,
        "return_url": return_url,
        "subaccounts": subaccounts,
        "customization": {
            "title": "Event Payment",
            "description": "Payment for event booking",
        },
    })
    try:
        return body["data"]["checkout_url"]
    except (KeyError, TypeError) as exc:
        raise ExternalProviderError(
            "Payment provider did not return a checkout URL", context={"tx_ref": tx_ref}
        ) from exc


def verify_transaction(tx_ref: str) -> Optional[str]:
    """Return the processor-reported transaction status for tx_ref."""
    body = _request("GET", f"/transaction/verify/{tx_ref}")
    data = body.get("data") or {}
    return data.get("status")


def refund_transaction(tx_ref: str, amount: Optional[Decimal] = None, reason: Optional[str] = None) -> Dict[str, Any]:
    """Ask Chapa to reverse a settled charge; omitting ``amount`` refunds it in full."""
    payload: Dict[str, Any] = {}
    if amount is not None:
        payload["amount"] = str(amount)
    if reason:
        payload["reason"] = reason
    body = _request("POST", f"/refund/{tx_ref}", payload)
    return body.get("data") or {}
