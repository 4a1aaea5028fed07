import os
from dataclasses import dataclass

from aiusage.auth.device_flow import GITHUB_COPILOT_CLIENT_ID

DEFAULT_CONFIG_PATH = "~/.config/aiusage/config.json"


@dataclass
class Config:
    # listen_address: format ":9185" or
    # "0.0.0.0:9185"
    listen_address: "str" = ":9185"
    # refresh interval in seconds, None uses the saved preference
    refresh_interval: "int | None" = None
    provider_timeout: "float" = 10.0
    cache_ttl: "float" = 120.0
    log_level: "str" = "info"

    config_path: "str" = DEFAULT_CONFIG_PATH
    github_client_id: "str" = GITHUB_COPILOT_CLIENT_ID

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            config_path=os.environ.get("AIUSAGE_CONFIG_PATH", DEFAULT_CONFIG_PATH),
            github_client_id=os.environ.get(
                "AIUSAGE_GITHUB_CLIENT_ID", GITHUB_COPILOT_CLIENT_ID
            ),
        )

    @property
    def expanded_config_path(self) -> "str":
        return os.path.expanduser(self.config_path)
