"""HOT Pay redirect checkout.

HOT Pay needs no server-side session: we mint the memo ourselves, embed it
in the redirect URL, and HOT Pay echoes it back on the notify callback.
"""

import secrets
from urllib.parse import urlencode

from crixen.core.exceptions import ConfigurationError, InvalidPlanError

# 128-bit memo
_MEMO_BYTES = 16


class HotPayGateway:
    """Builds HOT Pay checkout URLs."""

    provider_name = "hot_pay"

    def __init__(
        self,
        base_url: str,
        default_item_id: str,
        notify_url: str,
        redirect_url: str,
    ):
        self.base_url = base_url
        self.default_item_id = default_item_id
        self.notify_url = notify_url
        self.redirect_url = redirect_url

    def ensure_configured(self) -> None:
        missing = [
            name
            for name, value in (
                ("HOT_PAY_BASE_URL", self.base_url),
                ("BACKEND_URL", self.notify_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"HOT Pay is not configured (missing {', '.join(missing)})")

    @staticmethod
    def new_memo() -> str:
        return secrets.token_hex(_MEMO_BYTES)

    def resolve_item_id(self, item_id: str | None) -> str:
        """Only the configured item is sold; a client-sent id must match it."""
        if not self.default_item_id:
            raise ConfigurationError("HOT Pay is not configured (missing HOT_PAY_ITEM_ID)")
        if item_id and item_id != self.default_item_id:
            raise InvalidPlanError(f"Unknown HOT Pay item: {item_id}")
        return self.default_item_id

    def build_checkout_url(self, item_id: str, amount: str, memo: str) -> str:
        self.ensure_configured()
        query = urlencode(
            {
                "item_id": item_id,
                "amount": amount,
                "memo": memo,
                "notify_url": self.notify_url,
                "redirect_url": self.redirect_url,
            }
        )
        return f"{self.base_url}?{query}"
