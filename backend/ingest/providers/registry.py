"""
Provider registry.
Builds provider instances from settings and picks the provider serving each
data domain: the configured default when it supports the domain, otherwise
the first registered provider that does.
"""
from __future__ import annotations

from typing import Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import UnsupportedOperationError
from shared.models.enums import DataDomain, ProviderName
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import BaseProvider
from ingest.providers.espn import ESPNProvider
from ingest.providers.odds_api import OddsAPIProvider

logger = get_logger(__name__)


def create_provider(
    name: ProviderName | str,
    settings: Settings | None = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseProvider:
    """Instantiate a provider by name. ``transport`` lets tests mock the wire."""
    settings = settings or get_settings()
    name = ProviderName(name)
    if name == ProviderName.ESPN:
        client = ProviderHTTPClient(
            provider_name=name.value,
            base_url=settings.espn_base_url,
            timeout_s=settings.provider_request_timeout_s,
            transport=transport,
        )
        return ESPNProvider(settings=settings, http_client=client)
    client = ProviderHTTPClient(
        provider_name=name.value,
        base_url=settings.odds_api_base_url,
        timeout_s=settings.provider_request_timeout_s,
        transport=transport,
    )
    return OddsAPIProvider(settings=settings, http_client=client)


class ProviderRegistry:
    """Holds provider instances and resolves which one serves a domain."""

    def __init__(self, providers: dict[ProviderName, BaseProvider], default: ProviderName) -> None:
        if default not in providers:
            raise ValueError(f"default provider {default.value!r} is not registered")
        self._providers = providers
        self._default = default

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ProviderRegistry":
        settings = settings or get_settings()
        default = ProviderName(settings.default_provider)
        names = [default]
        if ProviderName.ESPN not in names:
            names.append(ProviderName.ESPN)
        if settings.odds_api_key and ProviderName.ODDS_API not in names:
            names.append(ProviderName.ODDS_API)
        providers = {n: create_provider(n, settings, transport) for n in names}
        return cls(providers, default)

    @property
    def providers(self) -> dict[ProviderName, BaseProvider]:
        return dict(self._providers)

    def get_provider(self, name: ProviderName) -> Optional[BaseProvider]:
        return self._providers.get(name)

    def provider_for(self, domain: DataDomain) -> BaseProvider:
        default = self._providers[self._default]
        if default.supports(domain):
            return default
        for name, provider in self._providers.items():
            if provider.supports(domain):
                logger.debug("provider_fallback", domain=domain.value, provider=name.value)
                return provider
        raise UnsupportedOperationError(self._default.value, f"no provider serves {domain.value}")

    async def start(self) -> None:
        for provider in self._providers.values():
            await provider.start()

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
