"""
Provider registry — type tag → Provider dispatch.

The diff engine and the executor never pick a provider themselves;
they always resolve through the registry. Custom fragments are
additionally resolved to an extension script before planning.
"""

from __future__ import annotations

import logging
from typing import Any

from sapphire.core.errors import UnregisteredProviderError
from sapphire.core.providers.base import Provider, ProviderContext

logger = logging.getLogger(__name__)

# Type tag used by the package provider for manifests
PACKAGES = "packages"


class ProviderRegistry:
    """Registry of providers keyed by the type tag they implement."""

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}

    def register(self, provider: Provider) -> None:
        tag = provider.type_tag
        if tag in self._providers:
            logger.warning("Overwriting existing provider: %s", tag)
        self._providers[tag] = provider
        logger.debug("Registered provider: %s", tag)

    def get(self, tag: str) -> Provider | None:
        return self._providers.get(str(tag))

    def resolve(self, fragment_type: str) -> Provider:
        """The provider for a type tag.

        Raises:
            UnregisteredProviderError: No provider handles this type.
        """
        provider = self._providers.get(str(fragment_type))
        if provider is None:
            raise UnregisteredProviderError(
                f"No provider registered for type {str(fragment_type)!r} "
                f"(known: {', '.join(self.list_providers())})",
                target=str(fragment_type),
            )
        return provider

    def resolve_document(self, document: Any) -> Provider:
        """Provider for a manifest or fragment, with document-level checks.

        Raises:
            UnregisteredProviderError: No provider handles the document type.
            ExtensionNotFoundError: A custom fragment's script cannot be used.
        """
        if document.document_type == "manifest":
            provider = self.resolve(PACKAGES)
        else:
            provider = self.resolve(document.fragment_type)
        provider.check(document)
        return provider

    def list_providers(self) -> list[str]:
        return list(self._providers.keys())


def default_registry(context: ProviderContext) -> ProviderRegistry:
    """Registry with every built-in provider bound to ``context``."""
    from sapphire.core.providers.containers import ContainersProvider
    from sapphire.core.providers.custom import CustomProvider
    from sapphire.core.providers.dotfiles import DotfilesProvider
    from sapphire.core.providers.network import NetworkProvider
    from sapphire.core.providers.packages import PackagesProvider
    from sapphire.core.providers.system import SystemProvider

    registry = ProviderRegistry()
    for provider_cls in (
        PackagesProvider,
        DotfilesProvider,
        SystemProvider,
        NetworkProvider,
        ContainersProvider,
        CustomProvider,
    ):
        registry.register(provider_cls(context))
    return registry
