"""Pingpay hosted checkout sessions.

The session id Pingpay returns is the order memo, so the order can only be
written after this call succeeds.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

import httpx
import structlog

from crixen.core.exceptions import ConfigurationError, ProviderError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PingPaySession:
    session_id: str
    url: str


def to_minor_units(amount: Decimal, decimals: int) -> str:
    """Convert a USD amount to the asset's integer base units (USDC has 6)."""
    scaled = (amount * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return str(int(scaled))


class PingPayClient:
    """Thin async client for the Pingpay checkout API."""

    provider_name = "pingpay"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        success_url: str,
        cancel_url: str,
        asset_chain: str = "NEAR",
        asset_symbol: str = "USDC",
        asset_decimals: int = 6,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.asset_chain = asset_chain
        self.asset_symbol = asset_symbol
        self.asset_decimals = asset_decimals
        self.timeout = timeout
        self._transport = transport

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("Pingpay is not configured (missing PINGPAY_API_KEY)")
        if not self.api_url:
            raise ConfigurationError("Pingpay is not configured (missing PINGPAY_API_URL)")

    async def create_checkout_session(self, amount: Decimal, metadata: dict) -> PingPaySession:
        """Create a hosted checkout session.

        Raises:
            ConfigurationError: API key or URL missing.
            ProviderError: 400 when Pingpay rejects the request (4xx), 502 on
                5xx, transport failure, or an unusable response body.
        """
        self.ensure_configured()

        payload = {
            "amount": to_minor_units(amount, self.asset_decimals),
            "asset": {"chain": self.asset_chain, "symbol": self.asset_symbol},
            "successUrl": self.success_url,
            "cancelUrl": self.cancel_url,
            "metadata": metadata,
        }
        headers = {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.api_url}/checkout/sessions", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("pingpay_request_failed", error=str(exc), error_type=type(exc).__name__)
            raise ProviderError(self.provider_name, "Payment provider unreachable", status_code=502) from exc

        if response.is_client_error:
            logger.warning("pingpay_rejected_session", status_code=response.status_code, body=response.text)
            raise ProviderError(
                self.provider_name,
                "Payment provider rejected the checkout request",
                status_code=400,
                body=response.text,
            )
        if not response.is_success:
            logger.error("pingpay_session_error", status_code=response.status_code, body=response.text)
            raise ProviderError(
                self.provider_name,
                "Payment provider error",
                status_code=502,
                body=response.text,
            )

        return self._parse_session(response)

    def _parse_session(self, response: httpx.Response) -> PingPaySession:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                self.provider_name, "Malformed payment provider response", status_code=502, body=response.text
            ) from exc

        session = data.get("session", data) if isinstance(data, dict) else None
        if not isinstance(session, dict):
            raise ProviderError(
                self.provider_name, "Malformed payment provider response", status_code=502, body=response.text
            )

        session_id = session.get("sessionId") or session.get("id")
        url = session.get("sessionUrl") or session.get("url")
        if not session_id or not url:
            logger.error("pingpay_session_missing_fields", body=response.text)
            raise ProviderError(
                self.provider_name, "Malformed payment provider response", status_code=502, body=response.text
            )

        return PingPaySession(session_id=str(session_id), url=str(url))
