import structlog

from aiusage.errors import CliError
from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.cli import DEFAULT_CLI_TIMEOUT, run_cli

logger = structlog.get_logger()

GCLOUD_TOKEN_COMMAND = ["gcloud", "auth", "print-access-token"]


class CloudCodeProvider:
    """
    CloudCodeProvider only reports connection status. Without an API
    key it asks the gcloud CLI whether a login is active.
    """

    def __init__(self, cli_timeout: "float" = DEFAULT_CLI_TIMEOUT) -> "None":
        self._cli_timeout = cli_timeout

    @property
    def provider_id(self) -> "str":
        return "cloud-code"

    def _status(self, connected: "bool", message: "str") -> "list[UsageRecord]":
        return [
            UsageRecord(
                provider_id=self.provider_id,
                provider_name="Cloud Code (Google)",
                is_available=connected,
                payment_type=PaymentType.USAGE_BASED,
                usage_unit="Status",
                description=message,
            )
        ]

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        if config.api_key:
            return self._status(True, "Configured (Key present)")

        try:
            await run_cli(GCLOUD_TOKEN_COMMAND, timeout=self._cli_timeout)
        except CliError as e:
            logger.debug("gcloud_check_failed", reason=str(e))
            return self._status(False, f"gcloud Error: {e}")

        return self._status(True, "Connected (gcloud)")
