from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

import httpx

from aiusage.errors import ProviderError
from aiusage.models import ProviderConfig, UsageRecord

MISSING_KEY = "API key missing"


class UsageProvider(Protocol):
    """
    UsageProvider stands as a common protocol that all
    AI providers must satisfy.

    Providers receive their own config and return provider-agnostic
    usage records. They must never raise: failures are reported as a
    record with is_available=False and a readable description.
    """

    @property
    def provider_id(self) -> "str": ...

    async def fetch_usage(
        self,
        config: "ProviderConfig",
    ) -> "Sequence[UsageRecord]": ...


def percent_of(used: "float", total: "float") -> "float":
    """
    share of total that has been used, in percent. A zero or negative
    total means there is no limit to measure against.
    """
    if total <= 0:
        return 0.0
    return min(used / total * 100.0, 100.0)


def parse_timestamp(value: "Any") -> "datetime | None":
    """
    parses an ISO 8601 timestamp into an aware UTC datetime. Naive
    values are taken as UTC; anything unparseable yields None.
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


async def get_json(
    client: "httpx.AsyncClient",
    url: "str",
    headers: "dict[str, str] | None" = None,
) -> "Any":
    """
    issues a GET and decodes the JSON body. Failures are raised as
    ProviderError whose message is the description shown to users.
    """
    try:
        resp = await client.get(url, headers=headers)
    except httpx.HTTPError as e:
        raise ProviderError("Connection Failed") from e

    if not resp.is_success:
        raise ProviderError(f"API Error ({resp.status_code})")

    try:
        return resp.json()
    except ValueError as e:
        raise ProviderError("Failed to parse response") from e
