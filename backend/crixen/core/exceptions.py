class CrixenError(Exception):
    """Base exception for the Crixen billing backend.

    ``status_code`` is the HTTP status the API layer maps the error to.
    """

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(CrixenError):
    """Raised when a required credential or URL is not configured."""

    status_code = 500


class ProviderError(CrixenError):
    """Raised when a payment provider API call fails.

    Carries the provider's response body for diagnostics. 400 when the
    provider rejected the request, 502 when the provider itself failed or
    answered with something we cannot use.
    """

    status_code = 502

    def __init__(self, provider: str, message: str, status_code: int = 502, body: str | None = None):
        super().__init__(message, status_code=status_code)
        self.provider = provider
        self.body = body


class DuplicateMemoError(CrixenError):
    """Raised when an order memo collides with an existing order. Retryable."""

    status_code = 503

    def __init__(self, memo: str):
        self.memo = memo
        super().__init__("Order reference collision, please retry")


class InvalidPlanError(CrixenError):
    """Raised when a checkout request names an unknown plan or wrong price."""

    status_code = 400


class UnrecognizedPayloadError(CrixenError):
    """Raised when a webhook body matches no known provider shape."""

    status_code = 400


class WebhookSignatureError(CrixenError):
    """Raised when a webhook signature is missing or does not verify."""

    status_code = 400


class OrderNotFoundError(CrixenError):
    """Raised when a webhook references a memo with no matching order."""

    status_code = 404

    def __init__(self, memo: str):
        self.memo = memo
        super().__init__("Order not found")


class SchedulerUserError(CrixenError):
    """Raised for a failure isolated to one user row during a scheduler sweep."""

    def __init__(self, user_id: int, stage: str, cause: Exception):
        self.user_id = user_id
        self.stage = stage
        self.cause = cause
        super().__init__(f"Scheduler {stage} failed for user {user_id}: {cause}")


class AmountMismatchError(CrixenError):
    """Raised when a success webhook reports a different amount than the order."""

    status_code = 400
