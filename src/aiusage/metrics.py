from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from aiusage.models import UsageRecord


class MetricsUpdater:
    """
    mirrors the latest UsageRecords into Prometheus gauges, one label
    set per provider id, and tracks how the fetches themselves went.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._usage_percent: "Gauge" = Gauge(
            "aiusage_provider_usage_percent",
            "Share of the provider limit used, 0-100",
            ["provider_id"],
            registry=registry,
        )
        self._available: "Gauge" = Gauge(
            "aiusage_provider_available",
            "1 when the last fetch produced usable data, else 0",
            ["provider_id"],
            registry=registry,
        )
        self._cost_used: "Gauge" = Gauge(
            "aiusage_provider_cost_used",
            "Amount used in the provider's usage unit",
            ["provider_id", "unit"],
            registry=registry,
        )
        self._cost_limit: "Gauge" = Gauge(
            "aiusage_provider_cost_limit",
            "Provider limit in its usage unit, 0 when unlimited",
            ["provider_id", "unit"],
            registry=registry,
        )
        self._fetch_duration: "Histogram" = Histogram(
            "aiusage_fetch_duration_seconds",
            "Duration of provider fetches",
            ["provider_id"],
            registry=registry,
        )
        self._degraded: "Counter" = Counter(
            "aiusage_fetch_degraded_total",
            "Total number of fetches that ended in an unavailable record",
            ["provider_id"],
            registry=registry,
        )
        self._last_refresh: "Gauge" = Gauge(
            "aiusage_last_refresh_timestamp_seconds",
            "Unix timestamp of the last completed refresh cycle",
            registry=registry,
        )

    def update_usage(self, record: "UsageRecord") -> "None":
        """
        sets the gauges of the record's provider to the record's values.
        """
        pid = record.provider_id
        self._available.labels(provider_id=pid).set(1 if record.is_available else 0)
        if not record.is_available:
            return

        self._usage_percent.labels(provider_id=pid).set(record.usage_percentage)
        unit = record.usage_unit
        self._cost_used.labels(provider_id=pid, unit=unit).set(record.cost_used)
        self._cost_limit.labels(provider_id=pid, unit=unit).set(record.cost_limit)

    def observe_fetch_duration(
        self, provider_id: "str", duration_seconds: "float"
    ) -> "None":
        self._fetch_duration.labels(provider_id=provider_id).observe(duration_seconds)

    def inc_degraded(self, provider_id: "str") -> "None":
        self._degraded.labels(provider_id=provider_id).inc()

    def set_last_refresh(self, timestamp: "float") -> "None":
        self._last_refresh.set(timestamp)
