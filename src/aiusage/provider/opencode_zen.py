import re

import structlog

from aiusage.errors import CliError
from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.cli import DEFAULT_CLI_TIMEOUT, cli_available, run_cli

logger = structlog.get_logger()

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_TOTAL_COST = re.compile(r"Total Cost\s+\$([0-9.]+)")
_AVG_COST = re.compile(r"Avg Cost/Day\s+\$([0-9.]+)")


def _dollars(pattern: "re.Pattern[str]", text: "str") -> "float":
    match = pattern.search(text)
    if not match:
        return 0.0
    try:
        return float(match.group(1))
    except ValueError:
        return 0.0


class OpenCodeZenProvider:
    """
    OpenCodeZenProvider reads the last seven days of spend from the
    opencode CLI's stats table.
    """

    def __init__(
        self,
        cli_path: "str" = "opencode",
        cli_timeout: "float" = DEFAULT_CLI_TIMEOUT,
    ) -> "None":
        self._cli_path = cli_path
        self._cli_timeout = cli_timeout

    @property
    def provider_id(self) -> "str":
        return "opencode-zen"

    def parse_output(self, output: "str") -> "UsageRecord":
        """
        parses lines such as "│Total Cost   $12.34" once colour codes
        have been stripped.
        """
        cleaned = _ANSI_ESCAPE.sub("", output)
        total_cost = _dollars(_TOTAL_COST, cleaned)
        avg_cost = _dollars(_AVG_COST, cleaned)

        description = f"${total_cost:.2f} (7 days)"
        if avg_cost:
            description = f"${total_cost:.2f} (7 days, ${avg_cost:.2f}/day)"

        # pay as you go, so there is no limit to compare against
        return UsageRecord(
            provider_id=self.provider_id,
            provider_name="OpenCode Zen",
            cost_used=total_cost,
            cost_limit=0.0,
            payment_type=PaymentType.USAGE_BASED,
            usage_unit="USD",
            description=description,
        )

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        if not cli_available(self._cli_path):
            return [
                UsageRecord.unavailable(
                    self.provider_id,
                    "OpenCode Zen",
                    "CLI not found at expected path",
                )
            ]

        try:
            output = await run_cli(
                [self._cli_path, "stats", "--days", "7", "--models", "10"],
                timeout=self._cli_timeout,
            )
        except CliError as e:
            logger.warning("opencode_cli_failed", reason=str(e))
            return [
                UsageRecord.unavailable(
                    self.provider_id, "OpenCode Zen", f"CLI Error: {e}"
                )
            ]

        return [self.parse_output(output)]
