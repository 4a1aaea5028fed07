import re
from typing import Any

import httpx
import structlog

from aiusage.errors import CliError, ProviderError
from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.base import get_json, percent_of
from aiusage.provider.cli import DEFAULT_CLI_TIMEOUT, run_cli

logger = structlog.get_logger()

ANTHROPIC_USAGE_URL = "https://api.anthropic.com/v1/usage"
ANTHROPIC_VERSION = "2023-06-01"

_CURRENT_USAGE = re.compile(r"Current Usage[:\s]+\$?([0-9.]+)", re.IGNORECASE)
_BUDGET_LIMIT = re.compile(r"Budget Limit[:\s]+\$?([0-9.]+)", re.IGNORECASE)
_REMAINING = re.compile(r"Remaining[:\s]+\$?([0-9.]+)", re.IGNORECASE)


def _amount(pattern: "re.Pattern[str]", text: "str") -> "float | None":
    match = pattern.search(text)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


class ClaudeCodeProvider:
    """
    ClaudeCodeProvider asks the Anthropic usage API first and falls
    back to the claude CLI. With a key configured the account is
    still reported as connected when neither source has numbers.
    """

    def __init__(
        self,
        client: "httpx.AsyncClient",
        cli_path: "str" = "claude",
        cli_timeout: "float" = DEFAULT_CLI_TIMEOUT,
    ) -> "None":
        self._client = client
        self._cli_path = cli_path
        self._cli_timeout = cli_timeout

    @property
    def provider_id(self) -> "str":
        return "claude-code"

    def _record(self, **kwargs: "Any") -> "UsageRecord":
        return UsageRecord(
            provider_id=self.provider_id,
            provider_name="Claude Code",
            payment_type=PaymentType.USAGE_BASED,
            usage_unit="USD",
            **kwargs,
        )

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        if not config.api_key:
            return [
                UsageRecord.unavailable(
                    self.provider_id, "Claude Code", "No API key configured"
                )
            ]

        try:
            return [await self._fetch_from_api(config)]
        except ProviderError as e:
            logger.info("claude_api_unavailable", reason=str(e))

        try:
            output = await run_cli([self._cli_path, "usage"], timeout=self._cli_timeout)
        except CliError as e:
            logger.info("claude_cli_unavailable", reason=str(e))
            return [self._record(description="Connected (API key configured)")]

        return [self.parse_cli_output(output)]

    async def _fetch_from_api(self, config: "ProviderConfig") -> "UsageRecord":
        data = await get_json(
            self._client,
            config.base_url or ANTHROPIC_USAGE_URL,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )
        items = data.get("usage") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ProviderError("Failed to parse response")

        total_cost = 0.0
        total_tokens = 0
        try:
            for item in items:
                total_cost += float(item.get("cost_usd", 0))
                total_tokens += int(item.get("input_tokens", 0))
                total_tokens += int(item.get("output_tokens", 0))
        except (AttributeError, TypeError, ValueError) as e:
            raise ProviderError("Failed to parse response") from e

        return self._record(
            cost_used=total_cost,
            description=f"${total_cost:.2f} total cost | {total_tokens:,} tokens",
        )

    def parse_cli_output(self, output: "str") -> "UsageRecord":
        """
        parses the "Current Usage", "Budget Limit" and "Remaining"
        lines of `claude usage`. A missing budget is derived from
        usage plus remaining when both are present.
        """
        current = _amount(_CURRENT_USAGE, output) or 0.0
        budget = _amount(_BUDGET_LIMIT, output) or 0.0
        remaining = _amount(_REMAINING, output)
        if not budget and remaining is not None:
            budget = current + remaining

        if budget > 0:
            description = f"${current:.2f} used of ${budget:.2f} limit"
        else:
            description = f"${current:.2f} used"

        return self._record(
            usage_percentage=percent_of(current, budget),
            cost_used=current,
            cost_limit=budget,
            description=description,
        )
