import httpx
import structlog

from aiusage.errors import ProviderError
from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.base import MISSING_KEY, get_json, percent_of

logger = structlog.get_logger()

OPENROUTER_CREDITS_URL = "https://openrouter.ai/api/v1/credits"


class OpenRouterProvider:
    def __init__(self, client: "httpx.AsyncClient") -> "None":
        self._client = client

    @property
    def provider_id(self) -> "str":
        return "openrouter"

    def _unavailable(self, description: "str") -> "list[UsageRecord]":
        return [UsageRecord.unavailable(self.provider_id, "OpenRouter", description)]

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        if not config.api_key:
            return self._unavailable(MISSING_KEY)

        try:
            data = await get_json(
                self._client,
                config.base_url or OPENROUTER_CREDITS_URL,
                headers={"Authorization": f"Bearer {config.api_key}"},
            )
        except ProviderError as e:
            logger.warning("openrouter_fetch_failed", reason=str(e))
            return self._unavailable(str(e))

        credits = data.get("data") if isinstance(data, dict) else None
        try:
            total = float(credits["total_credits"])
            used = float(credits["total_usage"])
        except (KeyError, TypeError, ValueError):
            return self._unavailable("Failed to parse response")

        return [
            UsageRecord(
                provider_id=self.provider_id,
                provider_name="OpenRouter",
                usage_percentage=percent_of(used, total),
                cost_used=used,
                cost_limit=total,
                payment_type=PaymentType.CREDITS,
                usage_unit="Credits",
                description=f"{used:.2f} / {total:.2f} credits",
            )
        ]
