"""Provider webhook payloads as a tagged variant.

Both providers post to the same endpoint with incompatible JSON bodies. A
body is parsed against each known schema in priority order (HOT Pay, then
Pingpay); the first schema that validates decides the provider.
"""

from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from crixen.core.exceptions import UnrecognizedPayloadError


class PaymentProvider(str, Enum):
    HOT_PAY = "hot_pay"
    PINGPAY = "pingpay"


HOT_PAY_SUCCESS_STATUSES = frozenset({"SUCCESS"})
PINGPAY_SUCCESS_STATUSES = frozenset({"COMPLETED", "SUCCESS"})


class HotPayWebhook(BaseModel):
    """HOT Pay notify callback: flat body keyed by our own memo."""

    model_config = ConfigDict(extra="allow")

    provider: Literal[PaymentProvider.HOT_PAY] = PaymentProvider.HOT_PAY
    memo: str = Field(min_length=1)
    status: str = Field(min_length=1)
    amount: str | int | float | None = None
    item_id: str | None = None
    near_trx: str | None = None

    signature_header: ClassVar[str] = "x-hot-signature"

    @property
    def correlation_token(self) -> str:
        return self.memo

    @property
    def is_success(self) -> bool:
        return self.status.strip().upper() in HOT_PAY_SUCCESS_STATUSES


class PingPayWebhook(BaseModel):
    """Pingpay event: ``{"type": ..., "data": {"sessionId": ..., "status": ...}}``.

    A flat body with ``sessionId``/``status`` at the top level is accepted too.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    provider: Literal[PaymentProvider.PINGPAY] = PaymentProvider.PINGPAY
    event_type: str | None = Field(default=None, alias="type")
    session_id: str = Field(alias="sessionId", min_length=1)
    status: str = Field(min_length=1)

    signature_header: ClassVar[str] = "x-pingpay-signature"

    @model_validator(mode="before")
    @classmethod
    def _flatten_event_data(cls, raw: Any) -> Any:
        if isinstance(raw, dict) and isinstance(raw.get("data"), dict):
            data = raw["data"]
            merged = {k: v for k, v in raw.items() if k != "data"}
            merged.update(data)
            return merged
        return raw

    @property
    def correlation_token(self) -> str:
        return self.session_id

    @property
    def is_success(self) -> bool:
        return self.status.strip().upper() in PINGPAY_SUCCESS_STATUSES


ParsedWebhook = HotPayWebhook | PingPayWebhook

# Priority order matters: a body carrying a memo is always HOT Pay.
_SCHEMAS: tuple[type[BaseModel], ...] = (HotPayWebhook, PingPayWebhook)


def parse_webhook(payload: Any) -> ParsedWebhook:
    """Classify and parse a raw webhook body.

    Raises:
        UnrecognizedPayloadError: body is not an object or matches no schema.
    """
    if not isinstance(payload, dict):
        raise UnrecognizedPayloadError("Webhook body must be a JSON object")

    for schema in _SCHEMAS:
        try:
            return schema.model_validate(payload)
        except ValidationError:
            continue

    raise UnrecognizedPayloadError("Unrecognized webhook payload")
