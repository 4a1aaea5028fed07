from typing import Iterable

import httpx

from aiusage.provider.base import UsageProvider
from aiusage.provider.claude_code import ClaudeCodeProvider
from aiusage.provider.cloud_code import CloudCodeProvider
from aiusage.provider.deepseek import DeepSeekProvider
from aiusage.provider.generic_payg import GenericPayAsYouGoProvider
from aiusage.provider.github_copilot import GitHubCopilotProvider, TokenSource
from aiusage.provider.minimax import MinimaxProvider
from aiusage.provider.opencode_zen import OpenCodeZenProvider
from aiusage.provider.openrouter import OpenRouterProvider
from aiusage.provider.simulated import SimulatedProvider
from aiusage.provider.synthetic import SyntheticProvider


class ProviderRegistry:
    """
    ProviderRegistry owns the fixed set of provider implementations,
    looked up by provider id. Ids without a dedicated implementation
    resolve to the fallback provider, if one is set.
    """

    def __init__(
        self,
        providers: "Iterable[UsageProvider]",
        fallback: "UsageProvider | None" = None,
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._providers: "dict[str, UsageProvider]" = {}
        for provider in providers:
            if provider.provider_id in self._providers:
                raise ValueError(f"duplicate provider id: {provider.provider_id}")
            self._providers[provider.provider_id] = provider
        self._fallback = fallback
        self._client = client

    @property
    def provider_ids(self) -> "list[str]":
        return list(self._providers)

    def get(self, provider_id: "str") -> "UsageProvider | None":
        return self._providers.get(provider_id)

    def resolve(self, provider_id: "str") -> "UsageProvider | None":
        return self._providers.get(provider_id, self._fallback)

    async def close(self) -> "None":
        """
        closes the HTTP client shared by the providers.
        """
        if self._client is not None:
            await self._client.aclose()


def default_registry(
    client: "httpx.AsyncClient | None" = None,
    token_source: "TokenSource | None" = None,
    cli_timeout: "float" = 5.0,
) -> "ProviderRegistry":
    """
    builds the registry of every built-in provider around one shared
    HTTP client.
    """
    client = client or httpx.AsyncClient(timeout=10.0)
    generic = GenericPayAsYouGoProvider(client)
    providers: "list[UsageProvider]" = [
        SimulatedProvider(),
        DeepSeekProvider(client),
        MinimaxProvider(client),
        SyntheticProvider(client),
        OpenRouterProvider(client),
        generic,
        GitHubCopilotProvider(client, token_source=token_source),
        CloudCodeProvider(cli_timeout=cli_timeout),
        OpenCodeZenProvider(cli_timeout=cli_timeout),
        ClaudeCodeProvider(client, cli_timeout=cli_timeout),
    ]
    return ProviderRegistry(providers, fallback=generic, client=client)
