import httpx
import structlog

from aiusage.errors import ProviderError
from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.base import MISSING_KEY, get_json

logger = structlog.get_logger()

DEEPSEEK_BALANCE_URL = "https://api.deepseek.com/user/balance"

_CURRENCY_SYMBOLS: "dict[str, str]" = {"CNY": "¥", "USD": "$"}


class DeepSeekProvider:
    """
    DeepSeekProvider reports the remaining account balance.
    """

    def __init__(self, client: "httpx.AsyncClient") -> "None":
        self._client = client

    @property
    def provider_id(self) -> "str":
        return "deepseek"

    def _unavailable(self, description: "str") -> "list[UsageRecord]":
        return [UsageRecord.unavailable(self.provider_id, "DeepSeek", description)]

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        if not config.api_key:
            return self._unavailable(MISSING_KEY)

        try:
            data = await get_json(
                self._client,
                config.base_url or DEEPSEEK_BALANCE_URL,
                headers={
                    "Authorization": f"Bearer {config.api_key}",
                    "Accept": "application/json",
                },
            )
        except ProviderError as e:
            logger.warning("deepseek_fetch_failed", reason=str(e))
            return self._unavailable(str(e))

        if not isinstance(data, dict):
            return self._unavailable("Failed to parse response")

        if not data.get("is_available", False):
            return self._unavailable("Account unavailable")

        balances = data.get("balance_infos")
        if not isinstance(balances, list) or not balances:
            return [
                UsageRecord(
                    provider_id=self.provider_id,
                    provider_name="DeepSeek",
                    payment_type=PaymentType.CREDITS,
                    usage_unit="Currency",
                    description="No balance info found",
                )
            ]

        main = balances[0]
        try:
            total = float(main["total_balance"])
        except (KeyError, TypeError, ValueError):
            return self._unavailable("Failed to parse response")

        symbol = _CURRENCY_SYMBOLS.get(str(main.get("currency", "")), "$")
        return [
            UsageRecord(
                provider_id=self.provider_id,
                provider_name="DeepSeek",
                cost_used=0.0,
                cost_limit=total,
                payment_type=PaymentType.CREDITS,
                usage_unit="Currency",
                description=f"Balance: {symbol}{total:.2f}",
            )
        ]
