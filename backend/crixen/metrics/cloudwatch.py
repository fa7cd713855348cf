"""CloudWatch business-event metrics for subscription lifecycle changes.

Fire-and-forget: boto3 is synchronous, so puts run on a small thread pool
and failures are logged, never raised. Disabled unless METRICS_ENABLED.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import boto3
import structlog

from crixen.core.config import get_settings

logger = structlog.get_logger(__name__)

NAMESPACE = "Crixen/Billing"

_cw_client = None
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cw-metrics")


def _get_client():
    global _cw_client
    if _cw_client is None:
        _cw_client = boto3.client("cloudwatch", region_name=get_settings().metrics_region)
    return _cw_client


def _put_business_event(event_name: str, provider: str | None, tier: str | None) -> None:
    dimensions = [{"Name": "Event", "Value": event_name}]
    if provider:
        dimensions.append({"Name": "Provider", "Value": provider})
    if tier:
        dimensions.append({"Name": "Tier", "Value": tier})
    try:
        _get_client().put_metric_data(
            Namespace=NAMESPACE,
            MetricData=[{
                "MetricName": "EventCount",
                "Dimensions": dimensions,
                "Value": 1.0,
                "Unit": "Count",
                "Timestamp": datetime.now(timezone.utc),
            }],
        )
    except Exception as e:
        logger.warning("business_event_emit_failed", error=str(e), event=event_name)


async def emit_business_event(event_name: str, provider: str | None = None, tier: str | None = None) -> None:
    """Emit a business event count. Non-blocking, no-op when metrics are disabled."""
    if not get_settings().metrics_enabled:
        return
    loop = asyncio.get_running_loop()
    loop.run_in_executor(_executor, _put_business_event, event_name, provider, tier)
