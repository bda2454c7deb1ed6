"""
Whish payment gateway adapter.

Thin httpx client for the external payment microservice: create a hosted
payment link, re-check a payment's status, and read the account balance.
Input problems raise ValidationError before any request is sent; anything
the provider (or the network) does wrong surfaces as PaymentGatewayError.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx

from agentchat.config import Settings
from agentchat.errors import ConfigurationError, PaymentGatewayError, ValidationError

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ("USD", "LBP", "AED")
CURRENCY_SYMBOLS = {
    "USD": "$",
    "LBP": "L.L.",
    "AED": "AED ",
}


def is_valid_currency(currency: Optional[str]) -> bool:
    return bool(currency) and str(currency).upper() in SUPPORTED_CURRENCIES


def format_price(amount, currency: str = "USD") -> str:
    """Display string for a price, e.g. ``$5.00`` or ``L.L.150000.00``."""
    code = (currency or "USD").upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{currency} ")
    return f"{symbol}{float(amount):.2f}"


def _provider_message(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
    return str(exc) or exc.__class__.__name__


class PaymentGatewayClient:
    """Client for the Whish payment microservice."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = (settings.payment_api_url or "").rstrip("/")
        self.backend_url = (settings.backend_url or "").rstrip("/")
        self.frontend_url = (settings.frontend_url or "").rstrip("/")
        self.timeout = settings.payment_timeout_seconds
        self._transport = transport

        missing = settings.missing_payment_settings
        if missing:
            logger.warning(
                f"⚠️ Payment gateway: missing environment variables: {', '.join(missing)}. "
                "Payment functionality will be unavailable."
            )

    def ensure_configured(self):
        if not self.api_url:
            raise ConfigurationError("PAYMENT_API_URL environment variable is not configured")
        if not self.backend_url:
            raise ConfigurationError("BACKEND_URL environment variable is not configured")
        if not self.frontend_url:
            raise ConfigurationError("FRONTEND_URL environment variable is not configured")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Content-Type": "application/json", "User-Agent": "AgentChat/1.0"},
            transport=self._transport,
        )

    def build_payload(
        self,
        user_id: str,
        agent_id: str,
        amount: Any,
        currency: str,
        agent_name: Optional[str],
        payment_record_id: Any,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("Invalid userId: must be a non-empty string", field="userId")
        if not agent_id or not isinstance(agent_id, str):
            raise ValidationError("Invalid agentId: must be a non-empty string", field="agentId")
        try:
            numeric_amount = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            numeric_amount = Decimal(0)
        if not numeric_amount.is_finite() or numeric_amount <= 0:
            raise ValidationError("Invalid amount: must be a positive number", field="amount")
        if not is_valid_currency(currency):
            raise ValidationError("Invalid currency: must be USD, LBP, or AED", field="currency")
        if not payment_record_id:
            raise ValidationError("Invalid paymentRecordId: required for payment tracking", field="paymentRecordId")

        safe_user_id = str(user_id)[:255]
        safe_agent_id = str(agent_id)[:255]
        if agent_name:
            safe_name = str(agent_name)[:100].replace("<", "").replace(">", "")
        else:
            safe_name = safe_agent_id

        return {
            "amount": float(numeric_amount),
            "currency": currency.upper(),
            "invoice": f"Agent Access: {safe_name} - User: {safe_user_id}",
            "externalId": payment_record_id,
            "successCallbackUrl": f"{self.backend_url}/api/payments/webhook/success",
            "failureCallbackUrl": f"{self.backend_url}/api/payments/webhook/failure",
            "successRedirectUrl": success_redirect_url or f"{self.frontend_url}/payment/success",
            "failureRedirectUrl": failure_redirect_url or f"{self.frontend_url}/payment/failed",
        }

    async def create_payment(
        self,
        user_id: str,
        agent_id: str,
        amount: Any,
        currency: str = "USD",
        agent_name: Optional[str] = None,
        payment_record_id: Any = None,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a hosted payment link. Returns ``{collectUrl, externalId}``."""
        self.ensure_configured()
        payload = self.build_payload(
            user_id, agent_id, amount, currency, agent_name, payment_record_id,
            success_redirect_url, failure_redirect_url,
        )

        logger.info(
            f"💳 Creating payment: amount={payload['amount']} currency={payload['currency']} "
            f"externalId={payload['externalId']}"
        )
        try:
            async with self._client() as client:
                response = await client.post(f"{self.api_url}/payments", json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            message = _provider_message(e)
            logger.error(f"❌ Payment creation failed: {message}")
            status_code = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            raise PaymentGatewayError(f"Failed to create payment: {message}", status_code=status_code) from e

        logger.info(
            f"✅ Payment created: externalId={data.get('externalId')} hasCollectUrl={bool(data.get('collectUrl'))}"
        )
        return data

    async def check_payment_status(self, external_id: Any, currency: str = "USD") -> Dict[str, Any]:
        """Returns ``{collectStatus, payerPhoneNumber, externalId, currency}``."""
        self.ensure_configured()
        if not external_id:
            raise ValidationError("Invalid externalId: required for status check", field="externalId")
        if not is_valid_currency(currency):
            raise ValidationError("Invalid currency: must be USD, LBP, or AED", field="currency")
        try:
            numeric_id = int(str(external_id))
        except ValueError:
            raise ValidationError("Invalid externalId: must be numeric", field="externalId")

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.api_url}/payments/status",
                    json={"externalId": numeric_id, "currency": currency.upper()},
                )
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            message = _provider_message(e)
            logger.error(f"❌ Payment status check failed for {numeric_id}: {message}")
            status_code = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            raise PaymentGatewayError(f"Failed to check payment status: {message}", status_code=status_code) from e

    async def get_balance(self) -> Dict[str, Any]:
        """Returns ``{available, pending, total, currency}``."""
        self.ensure_configured()
        try:
            async with self._client() as client:
                response = await client.get(f"{self.api_url}/payments/balance")
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            message = _provider_message(e)
            logger.error(f"❌ Balance lookup failed: {message}")
            raise PaymentGatewayError(f"Failed to get balance: {message}") from e
