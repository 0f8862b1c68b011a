"""
Table Client Factory

Maps provider names to adapter classes and builds the adapter selected by
configuration.

Adapters register themselves with @table_provider when their module is
imported. A built-in adapter module is imported only when its provider is
requested, or when the full table is listed.
"""

import importlib
import logging
from typing import Callable, Dict, Mapping, Optional, Type, TypeVar

from .client import TableClient
from .exceptions import ConfigurationError
from .models import TableProviderOptions, TableSettings, configure_settings

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=Type[TableClient])

AdapterFactory = Callable[[Mapping[str, str], TableSettings], TableClient]
ConfigureSettings = Callable[[TableSettings], None]


class Providers:
    """Provider names understood by the factory."""

    AZURE_TABLE_STORAGE = "Azure.TableStorage"
    GOOGLE_DATASTORE = "Google.Datastore"


_BUILTIN_PROVIDER_MODULES = {
    Providers.AZURE_TABLE_STORAGE: "multicloud_table.providers.azure.adapter",
    Providers.GOOGLE_DATASTORE: "multicloud_table.providers.google.adapter",
}

_PROVIDERS: Dict[str, Type[TableClient]] = {}


def table_provider(name: str) -> Callable[[C], C]:
    """
    Class decorator registering a TableClient implementation.

    Args:
        name: Provider name the adapter answers to

    Returns:
        Decorator that tags the class with provider_name and registers it

    Raises:
        ValueError: If another class already registered the name
    """
    def register(cls: C) -> C:
        existing = _PROVIDERS.get(name)
        if existing is not None and existing is not cls:
            raise ValueError(
                f"Provider '{name}' is already registered by {existing.__qualname__}"
            )
        cls.provider_name = name
        _PROVIDERS[name] = cls
        return cls

    return register


def _load_provider(name: str) -> Optional[Type[TableClient]]:
    if name not in _PROVIDERS and name in _BUILTIN_PROVIDER_MODULES:
        importlib.import_module(_BUILTIN_PROVIDER_MODULES[name])
    return _PROVIDERS.get(name)


def registered_providers() -> Dict[str, Type[TableClient]]:
    """
    Get the provider table.

    Imports every built-in adapter, so every vendor SDK must be importable.

    Returns:
        Copy of the provider name -> adapter class mapping
    """
    for name in _BUILTIN_PROVIDER_MODULES:
        _load_provider(name)
    return dict(_PROVIDERS)


class TableClientFactory:
    """
    Creates table clients for a configured provider.

    Example:
        ```python
        factory = TableClientFactory(configure=lambda s: setattr(s, "page_size", 100))
        client = factory.create(TableProviderOptions(
            provider="Google.Datastore",
            options={"ProjectId": "my-project"},
        ))
        ```
    """

    def __init__(
        self,
        settings: Optional[TableSettings] = None,
        providers: Optional[Mapping[str, AdapterFactory]] = None,
        configure: Optional[ConfigureSettings] = None
    ):
        """
        Initialize factory.

        Args:
            settings: Shared settings injected into every adapter
            providers: Provider table override; defaults to the registered
                       adapters, imported on first use
            configure: Best-effort callback adjusting the shared settings
        """
        self.settings = configure_settings(configure, settings)
        self._providers: Optional[Dict[str, AdapterFactory]] = (
            dict(providers) if providers is not None else None
        )

    @property
    def provider_names(self) -> list:
        if self._providers is not None:
            return sorted(self._providers)
        return sorted(set(_PROVIDERS) | set(_BUILTIN_PROVIDER_MODULES))

    def create(self, options: Optional[TableProviderOptions]) -> TableClient:
        """
        Build the adapter for a provider.

        Args:
            options: Provider name and option map

        Returns:
            Constructed table client

        Raises:
            ConfigurationError: If options is None, the provider is not
                registered, the option map is None or the adapter rejects
                its options
        """
        if options is None:
            raise ConfigurationError("options can't be null.")

        adapter_factory = self._lookup(options.provider) if options.provider else None
        if adapter_factory is None:
            raise ConfigurationError(
                f"There is no table client type connected to provider: {options.provider}. "
                "Check provider name."
            )

        if options.options is None:
            raise ConfigurationError("options.options can't be null.")

        client = adapter_factory(dict(options.options), self.settings)
        logger.info("Table client initialised (provider=%s)", options.provider)
        return client

    def _lookup(self, name: str) -> Optional[AdapterFactory]:
        if self._providers is not None:
            return self._providers.get(name)
        return _load_provider(name)
