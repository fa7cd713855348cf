"""HMAC-SHA256 verification of provider webhook bodies."""

import hashlib
import hmac
from collections.abc import Mapping

import structlog

from crixen.core.exceptions import ConfigurationError, WebhookSignatureError
from crixen.domain.webhooks import ParsedWebhook, PaymentProvider

logger = structlog.get_logger(__name__)


def sign_body(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookSignatureVerifier:
    """Checks the provider signature header against the raw request body.

    With ``require_secrets`` (production) a provider with no configured
    secret is a configuration error; otherwise verification is skipped for
    that provider and a warning is logged.
    """

    def __init__(self, secrets: Mapping[PaymentProvider, str], require_secrets: bool = True):
        self.secrets = dict(secrets)
        self.require_secrets = require_secrets

    def verify(self, webhook: ParsedWebhook, raw_body: bytes, headers: Mapping[str, str]) -> None:
        secret = self.secrets.get(webhook.provider)
        if not secret:
            if self.require_secrets:
                logger.error("webhook_secret_missing", provider=webhook.provider.value)
                raise ConfigurationError(
                    f"Webhook endpoint is not configured for {webhook.provider.value}",
                    status_code=503,
                )
            logger.warning("webhook_signature_skipped", provider=webhook.provider.value)
            return

        provided = _header(headers, webhook.signature_header)
        if not provided:
            raise WebhookSignatureError(f"Missing {webhook.signature_header} header")

        expected = sign_body(secret, raw_body).encode("ascii")
        # Header values may be non-ASCII
        candidate = provided.strip().lower().encode("utf-8", "surrogateescape")
        if not hmac.compare_digest(expected, candidate):
            logger.warning("webhook_signature_invalid", provider=webhook.provider.value)
            raise WebhookSignatureError("Invalid signature")


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None
