"""Transactional email through the Resend HTTP API.

``send`` reports delivery as a bool and never raises for transport or
provider failures: callers decide whether a failed email matters (the
expiry warning retries next run, everything else is best-effort).
"""

from pathlib import Path

import httpx
import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = structlog.get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

EXPIRY_WARNING = "expiry_warning"
EXPIRY_NOTICE = "expiry_notice"
PAYMENT_CONFIRMED = "payment_confirmed"

SUBJECTS: dict[str, str] = {
    EXPIRY_WARNING: "Your Crixen {tier_label} subscription expires in {days_phrase}",
    EXPIRY_NOTICE: "Your Crixen {tier_label} subscription has expired",
    PAYMENT_CONFIRMED: "Your Crixen {tier_label} plan is active",
}


class EmailNotifier:
    def __init__(
        self,
        api_key: str,
        sender: str,
        frontend_url: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html", "j2"]),
        )

    def render(self, template_kind: str, params: dict) -> tuple[str, str]:
        """Return ``(subject, html)`` for a template kind.

        Raises:
            ValueError: unknown template kind.
        """
        if template_kind not in SUBJECTS:
            raise ValueError(f"Unknown email template: {template_kind}")

        context = {
            "billing_url": f"{self.frontend_url}/billing",
            **params,
        }
        context.setdefault("tier_label", str(context.get("tier", "")).capitalize())
        if "days_left" in context:
            days = context["days_left"]
            context.setdefault("days_phrase", f"{days} day" if days == 1 else f"{days} days")
        subject = SUBJECTS[template_kind].format_map(_DefaultDict(context))
        html = self.env.get_template(f"{template_kind}.html.j2").render(**context)
        return subject, html

    async def send(self, recipient: str, template_kind: str, params: dict) -> bool:
        log = logger.bind(template=template_kind, recipient=recipient)

        if not self.api_key:
            log.warning("email_not_configured")
            return False

        subject, html = self.render(template_kind, params)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.sender, "to": [recipient], "subject": subject, "html": html},
                )
        except httpx.HTTPError as exc:
            log.warning("email_send_failed", error=str(exc), error_type=type(exc).__name__)
            return False

        if not response.is_success:
            log.warning("email_send_rejected", status_code=response.status_code, body=response.text)
            return False

        log.info("email_sent")
        return True


class _DefaultDict(dict):
    def __missing__(self, key):
        return ""
