import enum
import hashlib
import json
import math
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any


class PaymentType(str, enum.Enum):
    USAGE_BASED = "usage_based"
    CREDITS = "credits"
    QUOTA = "quota"


def clamp_percentage(value: "float") -> "float":
    """
    clamps a percentage into the 0-100 range, treating NaN as zero.
    """
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, value))


@dataclass(slots=True)
class ProviderConfig:
    """
    ProviderConfig is the persisted configuration of a single
    provider account. An empty api_key means "not configured",
    which is a valid state.
    """

    provider_id: "str"
    api_key: "str" = ""
    config_type: "str" = "pay-as-you-go"
    payment_type: "PaymentType" = PaymentType.USAGE_BASED
    limit: "float | None" = 100.0
    base_url: "str | None" = None
    show_in_tray: "bool" = False
    enabled_sub_trays: "list[str]" = field(default_factory=list)
    auth_source: "str" = ""
    description: "str | None" = None

    def to_dict(self) -> "dict[str, Any]":
        data = asdict(self)
        data["payment_type"] = self.payment_type.value
        return data

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "ProviderConfig":
        """
        builds a config from its storage form. Unknown keys are
        ignored and missing keys fall back to the defaults.
        """
        if not isinstance(data, dict):
            raise TypeError(
                f"provider entry must be an object, got {type(data).__name__}"
            )
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "payment_type" in kwargs:
            kwargs["payment_type"] = PaymentType(kwargs["payment_type"])
        if kwargs.get("api_key") is None:
            kwargs["api_key"] = ""
        kwargs["enabled_sub_trays"] = list(kwargs.get("enabled_sub_trays") or [])
        return cls(**kwargs)

    def fingerprint(self) -> "str":
        """
        stable digest over every field, used to tell apart cached
        results for the same provider id under different settings.
        """
        raw = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class SubUsage:
    name: "str"
    used: "float"
    description: "str" = ""


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """
    UsageRecord is the normalized usage status of one provider
    account. A record with is_available=False and a readable
    description is how providers report failures.
    """

    provider_id: "str"
    provider_name: "str"
    # always within 0-100
    usage_percentage: "float" = 0.0
    remaining_percentage: "float | None" = None
    cost_used: "float" = 0.0
    cost_limit: "float" = 0.0
    payment_type: "PaymentType" = PaymentType.USAGE_BASED
    usage_unit: "str" = "USD"
    is_quota_based: "bool" = False
    is_available: "bool" = True
    description: "str" = ""
    auth_source: "str" = ""
    account_name: "str" = ""
    next_reset_time: "datetime | None" = None
    details: "tuple[SubUsage, ...]" = ()

    def __post_init__(self) -> "None":
        object.__setattr__(
            self, "usage_percentage", clamp_percentage(self.usage_percentage)
        )
        if self.remaining_percentage is not None:
            object.__setattr__(
                self,
                "remaining_percentage",
                clamp_percentage(self.remaining_percentage),
            )

    @classmethod
    def unavailable(
        cls,
        provider_id: "str",
        provider_name: "str",
        description: "str",
        **extra: "Any",
    ) -> "UsageRecord":
        """
        builds the degraded record used in place of an exception.
        """
        return cls(
            provider_id=provider_id,
            provider_name=provider_name,
            is_available=False,
            description=description,
            **extra,
        )


@dataclass(frozen=True, slots=True)
class DeviceFlowResponse:
    device_code: "str"
    user_code: "str"
    verification_uri: "str"
    # seconds between polls
    interval: "int" = 5
    # seconds until the device code expires
    expires_in: "int" = 900


class PollStatus(enum.Enum):
    TOKEN = "token"
    PENDING = "pending"
    SLOW_DOWN = "slow_down"
    EXPIRED = "expired"
    ACCESS_DENIED = "access_denied"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TokenPollResult:
    """
    TokenPollResult is the outcome of a single token poll.

    PENDING and SLOW_DOWN tell the caller to keep polling, TOKEN
    carries the access token and every other status is a terminal
    failure.
    """

    status: "PollStatus"
    token: "str | None" = None
    message: "str | None" = None

    @classmethod
    def token_ok(cls, token: "str") -> "TokenPollResult":
        return cls(PollStatus.TOKEN, token=token)

    @classmethod
    def pending(cls) -> "TokenPollResult":
        return cls(PollStatus.PENDING)

    @classmethod
    def slow_down(cls) -> "TokenPollResult":
        return cls(PollStatus.SLOW_DOWN)

    @classmethod
    def expired(cls) -> "TokenPollResult":
        return cls(PollStatus.EXPIRED, message="Device code expired")

    @classmethod
    def access_denied(cls) -> "TokenPollResult":
        return cls(PollStatus.ACCESS_DENIED, message="Access denied by user")

    @classmethod
    def error(cls, message: "str") -> "TokenPollResult":
        return cls(PollStatus.ERROR, message=message)

    @property
    def is_success(self) -> "bool":
        return self.status is PollStatus.TOKEN

    @property
    def is_terminal(self) -> "bool":
        return self.status not in (PollStatus.PENDING, PollStatus.SLOW_DOWN)


@dataclass(slots=True)
class Preferences:
    show_all: "bool" = False
    # mask account names and emails before display
    privacy_mode: "bool" = False
    refresh_interval_seconds: "int" = 300

    def to_dict(self) -> "dict[str, Any]":
        return asdict(self)

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "Preferences":
        if not isinstance(data, dict):
            raise TypeError(
                f"preferences must be an object, got {type(data).__name__}"
            )
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
