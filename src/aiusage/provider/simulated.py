import asyncio

from aiusage.models import PaymentType, ProviderConfig, UsageRecord


class SimulatedProvider:
    """
    SimulatedProvider returns a fixed quota record after a short delay.
    It needs no credentials and is meant for demos and tests.
    """

    def __init__(self, delay: "float" = 0.5) -> "None":
        self._delay = delay

    @property
    def provider_id(self) -> "str":
        return "simulated"

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        await asyncio.sleep(self._delay)
        return [
            UsageRecord(
                provider_id=self.provider_id,
                provider_name="Simulated Provider",
                usage_percentage=45.5,
                remaining_percentage=54.5,
                cost_used=12.50,
                cost_limit=100.0,
                payment_type=PaymentType.QUOTA,
                usage_unit="Quota %",
                is_quota_based=True,
                description="45% Used",
            )
        ]
