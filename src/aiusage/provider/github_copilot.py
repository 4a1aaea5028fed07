from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import structlog

from aiusage.models import PaymentType, ProviderConfig, UsageRecord
from aiusage.provider.base import parse_timestamp, percent_of

logger = structlog.get_logger()

GITHUB_API_URL = "https://api.github.com"
COPILOT_PROVIDER_ID = "github-copilot"

_PLAN_NAMES: "dict[str, str]" = {
    "copilot_individual": "Copilot Individual",
    "copilot_business": "Copilot Business",
    "copilot_enterprise": "Copilot Enterprise",
    "copilot_free": "Copilot Free",
    "individual": "Copilot Individual",
    "business": "Copilot Business",
    "enterprise": "Copilot Enterprise",
    "free": "Copilot Free",
}


class TokenSource(Protocol):
    def get_current_token(self) -> "str | None": ...


def normalize_plan_name(plan: "str") -> "str":
    return _PLAN_NAMES.get(plan, plan)


def next_monthly_reset(now: "datetime | None" = None) -> "datetime":
    """
    Copilot quotas reset at 00:00 UTC on the first day of each month.
    """
    now = now or datetime.now(timezone.utc)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


class GitHubCopilotProvider:
    """
    GitHubCopilotProvider reports the premium request quota of the
    signed in GitHub account. The token comes from the device flow
    login, or from the config's api_key when nobody has logged in.

    When the Copilot quota endpoint has nothing to offer, the core
    REST rate limit is shown instead so the tray still has a gauge.
    """

    def __init__(
        self,
        client: "httpx.AsyncClient",
        token_source: "TokenSource | None" = None,
    ) -> "None":
        self._client = client
        self._token_source = token_source

    @property
    def provider_id(self) -> "str":
        return COPILOT_PROVIDER_ID

    def _unavailable(self, description: "str") -> "list[UsageRecord]":
        return [
            UsageRecord.unavailable(
                self.provider_id,
                "GitHub Copilot",
                description,
                payment_type=PaymentType.QUOTA,
                is_quota_based=True,
            )
        ]

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        token = None
        if self._token_source is not None:
            token = self._token_source.get_current_token()
        token = token or config.api_key
        if not token:
            return self._unavailable("Not authenticated. Please login in Settings.")

        base_url = (config.base_url or GITHUB_API_URL).rstrip("/")
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "User-Agent": "aiusage",
        }

        try:
            resp = await self._client.get(f"{base_url}/user", headers=headers)
        except httpx.HTTPError as e:
            logger.warning("copilot_user_fetch_failed", error=str(e))
            return self._unavailable("Network Error: Unable to reach GitHub")

        if resp.status_code == 401:
            return self._unavailable("Authentication failed (401). Please re-login.")
        if not resp.is_success:
            return self._unavailable(f"API Error ({resp.status_code})")

        try:
            username = str(resp.json().get("login") or "User")
        except (ValueError, AttributeError):
            return self._unavailable("Failed to parse response")

        quota = await self._fetch_optional(f"{base_url}/copilot_internal/user", headers)
        plan_name = ""
        reset_time = next_monthly_reset()
        used = limit = 0.0
        source = ""

        if quota is not None:
            plan_name = normalize_plan_name(str(quota.get("copilot_plan") or ""))
            reset_time = parse_timestamp(quota.get("quota_reset_date")) or reset_time
            snapshot = _premium_snapshot(quota.get("quota_snapshots"))
            if snapshot is not None:
                used, limit = snapshot
                source = "Premium Requests"

        if not source:
            rate = await self._fetch_optional(f"{base_url}/rate_limit", headers)
            core = _core_rate_limit(rate)
            if core is not None:
                used, limit = core
                source = "API Rate Limit"

        if source:
            description = f"{source}: {limit - used:.0f}/{limit:.0f} Remaining"
        else:
            description = f"Authenticated as {username}"
        if plan_name:
            description += f" ({plan_name})"

        usage = percent_of(used, limit)
        return [
            UsageRecord(
                provider_id=self.provider_id,
                provider_name="GitHub Copilot",
                usage_percentage=usage,
                remaining_percentage=100.0 - usage if limit > 0 else None,
                cost_used=used,
                cost_limit=limit,
                payment_type=PaymentType.QUOTA,
                usage_unit="Requests",
                is_quota_based=True,
                description=description,
                auth_source=plan_name or "Unknown",
                account_name=username,
                next_reset_time=reset_time,
            )
        ]

    async def _fetch_optional(
        self,
        url: "str",
        headers: "dict[str, str]",
    ) -> "dict[str, Any] | None":
        """
        best-effort GET used for the optional quota sources. Any
        failure means the source is skipped.
        """
        try:
            resp = await self._client.get(url, headers=headers)
            if not resp.is_success:
                return None
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("copilot_optional_fetch_failed", url=url, error=str(e))
            return None
        return data if isinstance(data, dict) else None


def _premium_snapshot(snapshots: "Any") -> "tuple[float, float] | None":
    if not isinstance(snapshots, dict):
        return None
    premium = snapshots.get("premium_interactions")
    if not isinstance(premium, dict):
        return None
    try:
        entitlement = float(premium["entitlement"])
        remaining = float(premium["remaining"])
    except (KeyError, TypeError, ValueError):
        return None
    if entitlement <= 0:
        return None
    remaining = max(0.0, min(remaining, entitlement))
    return entitlement - remaining, entitlement


def _core_rate_limit(rate: "dict[str, Any] | None") -> "tuple[float, float] | None":
    if rate is None:
        return None
    resources = rate.get("resources")
    core = resources.get("core") if isinstance(resources, dict) else None
    if not isinstance(core, dict):
        return None
    try:
        limit = float(core["limit"])
        remaining = float(core["remaining"])
    except (KeyError, TypeError, ValueError):
        return None
    return max(0.0, limit - remaining), limit
