import json
import re
from datetime import datetime
from typing import Any

import httpx
import structlog

from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.base import MISSING_KEY, parse_timestamp, percent_of

logger = structlog.get_logger()

GENERIC_PROVIDER_ID = "generic-pay-as-you-go"

OPENCODE_CREDITS_URL = "https://api.opencode.ai/v1/credits"
KILOCODE_CREDITS_URL = "https://api.kilocode.ai/v1/credits"
# providers whose id must match exactly
EXACT_ENDPOINTS: "dict[str, str]" = {
    "minimax": "https://api.minimax.chat/v1/user/usage",
    "xiaomi": "https://api.xiaomimimo.com/v1/user/balance",
}

_ENDPOINT_HINTS = ("/quota", "billing", "usage", "balance")


def _known_endpoint(provider_id: "str") -> "str | None":
    if "opencode" in provider_id:
        return OPENCODE_CREDITS_URL
    if provider_id in EXACT_ENDPOINTS:
        return EXACT_ENDPOINTS[provider_id]
    if "kilocode" in provider_id or provider_id == "kilo":
        return KILOCODE_CREDITS_URL
    return None


def resolve_url(config: "ProviderConfig") -> "str | None":
    """
    works out the credits endpoint from base_url, or from the
    provider id for the providers we know about. Bare hosts gain an
    https scheme and a /v1/credits path.
    """
    url = config.base_url
    if not url:
        return _known_endpoint(config.provider_id)

    if not url.startswith("http"):
        url = f"https://{url}"

    if not url.endswith("/credits") and not any(h in url for h in _ENDPOINT_HINTS):
        if url.endswith("/v1"):
            url = f"{url}/credits"
        else:
            url = f"{url.rstrip('/')}/v1/credits"
    return url


def display_name(config: "ProviderConfig", url: "str") -> "str":
    """
    title-cased name for display. The catch-all provider is named
    after the host it talks to.
    """
    name = config.provider_id
    if name == GENERIC_PROVIDER_ID:
        name = (
            url.replace("https://", "")
            .replace("http://", "")
            .replace("/v1/credits", "")
            .replace("/credits", "")
        )
    words = re.split(r"[-. ]", name)
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def _number(container: "Any", key: "str") -> "float | None":
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_credits(
    body: "Any",
) -> "tuple[float, float, PaymentType, datetime | None] | None":
    """
    tries the known response shapes in turn and returns
    (used, total, payment_type, next_reset_time), or None when the
    body matches none of them.

    - OpenCode style: {"data": {"total_credits", "used_credits"}}
    - Synthetic style: {"subscription": {"limit", "requests", "renewsAt"}}
    - Kimi style: {"data": {"available_balance"}}
    """
    if not isinstance(body, dict):
        return None

    data = body.get("data")
    total = _number(data, "total_credits")
    used = _number(data, "used_credits")
    if total is not None and used is not None:
        return used, total, PaymentType.CREDITS, None

    subscription = body.get("subscription")
    total = _number(subscription, "limit")
    used = _number(subscription, "requests")
    if total is not None and used is not None:
        renews_at = parse_timestamp(subscription.get("renewsAt"))
        return used, total, PaymentType.QUOTA, renews_at

    balance = _number(data, "available_balance")
    if balance is not None:
        return 0.0, balance, PaymentType.CREDITS, None

    return None


class GenericPayAsYouGoProvider:
    """
    GenericPayAsYouGoProvider handles credit endpoints that share no
    common schema. It also serves any configured provider id that has
    no dedicated implementation.
    """

    def __init__(self, client: "httpx.AsyncClient") -> "None":
        self._client = client

    @property
    def provider_id(self) -> "str":
        return GENERIC_PROVIDER_ID

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        pid = config.provider_id

        def unavailable(description: "str") -> "list[UsageRecord]":
            return [UsageRecord.unavailable(pid, pid, description)]

        if not config.api_key:
            return unavailable(MISSING_KEY)

        url = resolve_url(config)
        if url is None:
            return unavailable("Configuration Required (add a base_url)")

        try:
            resp = await self._client.get(
                url, headers={"Authorization": f"Bearer {config.api_key}"}
            )
        except httpx.HTTPError as e:
            logger.warning("generic_fetch_failed", provider_id=pid, error=str(e))
            return unavailable("Connection Failed")

        if not resp.is_success:
            return unavailable(f"API Error ({resp.status_code})")

        text = resp.text
        if text.strip().lower() == "not found":
            return [
                UsageRecord(
                    provider_id=pid,
                    provider_name=pid,
                    description="Not Found (Invalid Key/URL)",
                )
            ]

        try:
            body = json.loads(text)
        except ValueError:
            return unavailable("Failed to parse response")

        parsed = parse_credits(body)
        if parsed is None:
            logger.debug("generic_unknown_format", provider_id=pid)
            return unavailable("Unknown response format")

        used, total, payment_type, next_reset = parsed
        description = f"{used:.2f} / {total:.2f} credits"
        if next_reset is not None:
            description += f" (Resets: {next_reset.strftime('%b %d %H:%M')})"

        return [
            UsageRecord(
                provider_id=pid,
                provider_name=display_name(config, url),
                usage_percentage=percent_of(used, total),
                cost_used=used,
                cost_limit=total,
                payment_type=payment_type,
                usage_unit="Credits",
                is_quota_based=payment_type is PaymentType.QUOTA,
                description=description,
                next_reset_time=next_reset,
            )
        ]
