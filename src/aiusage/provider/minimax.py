import httpx
import structlog

from aiusage.errors import ProviderError
from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.base import MISSING_KEY, get_json, percent_of

logger = structlog.get_logger()

MINIMAX_USAGE_URL = "https://api.minimax.chat/v1/user/usage"


def format_tokens(tokens: "float") -> "str":
    """
    renders a token count compactly, e.g. 1.5M or 2.0K.
    """
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K"
    return f"{tokens:.0f}"


class MinimaxProvider:
    """
    MinimaxProvider reports token usage against the account limit of
    the MiniMax China endpoint. A base_url in the config points it at
    another region.
    """

    def __init__(self, client: "httpx.AsyncClient") -> "None":
        self._client = client

    @property
    def provider_id(self) -> "str":
        return "minimax"

    def _unavailable(self, description: "str") -> "list[UsageRecord]":
        return [
            UsageRecord.unavailable(self.provider_id, "MiniMax (China)", description)
        ]

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        if not config.api_key:
            return self._unavailable(MISSING_KEY)

        try:
            data = await get_json(
                self._client,
                config.base_url or MINIMAX_USAGE_URL,
                headers={"Authorization": f"Bearer {config.api_key}"},
            )
        except ProviderError as e:
            logger.warning("minimax_fetch_failed", reason=str(e))
            return self._unavailable(str(e))

        usage = data.get("usage") if isinstance(data, dict) else None
        if not isinstance(usage, dict):
            return self._unavailable("Invalid response format")

        try:
            used = float(usage["tokensUsed"])
            total = float(usage["tokensLimit"])
        except (KeyError, TypeError, ValueError):
            return self._unavailable("Failed to parse response")

        description = f"{format_tokens(used)} tokens used"
        if total > 0:
            description += f" / {format_tokens(total)} limit"

        return [
            UsageRecord(
                provider_id=self.provider_id,
                provider_name="MiniMax (China)",
                usage_percentage=percent_of(used, total),
                cost_used=used,
                cost_limit=total,
                payment_type=PaymentType.USAGE_BASED,
                usage_unit="Tokens",
                description=description,
            )
        ]
