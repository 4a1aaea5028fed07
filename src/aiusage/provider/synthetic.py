import httpx
import structlog

from aiusage.errors import ProviderError
from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.base import MISSING_KEY, get_json, parse_timestamp, percent_of

logger = structlog.get_logger()

SYNTHETIC_USAGE_URL = "https://api.synthetic.new/v2/quotas"


class SyntheticProvider:
    """
    SyntheticProvider reports request quota usage of a Synthetic
    subscription, together with the time the quota renews.
    """

    def __init__(self, client: "httpx.AsyncClient") -> "None":
        self._client = client

    @property
    def provider_id(self) -> "str":
        return "synthetic"

    def _unavailable(self, description: "str") -> "list[UsageRecord]":
        return [UsageRecord.unavailable(self.provider_id, "Synthetic", description)]

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        if not config.api_key:
            return self._unavailable(MISSING_KEY)

        try:
            # the API takes the raw key, without a Bearer prefix
            data = await get_json(
                self._client,
                config.base_url or SYNTHETIC_USAGE_URL,
                headers={"Authorization": config.api_key},
            )
        except ProviderError as e:
            logger.warning("synthetic_fetch_failed", reason=str(e))
            return self._unavailable(str(e))

        subscription = data.get("subscription") if isinstance(data, dict) else None
        if not isinstance(subscription, dict):
            return self._unavailable("No subscription data found")

        try:
            total = float(subscription["limit"])
            used = float(subscription["requests"])
        except (KeyError, TypeError, ValueError):
            return self._unavailable("Failed to parse response")

        utilization = percent_of(used, total)
        return [
            UsageRecord(
                provider_id=self.provider_id,
                provider_name="Synthetic",
                usage_percentage=utilization,
                remaining_percentage=100.0 - utilization,
                cost_used=used,
                cost_limit=total,
                payment_type=PaymentType.QUOTA,
                usage_unit="Quota %",
                is_quota_based=True,
                description=f"{utilization:.1f}% used",
                next_reset_time=parse_timestamp(subscription.get("renewsAt")),
            )
        ]
