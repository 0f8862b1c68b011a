"""
Multicloud Table: one table-storage API over Azure Table Storage and
Google Cloud Datastore.

Records are pydantic models deriving from TableEntity; the provider is
chosen by name at runtime through TableClientFactory.
"""

__version__ = "0.1.0"

from .client import EntityPager, TableClient
from .codec import EntityCodec, EntityField, describe_entity
from .config import ConfigManager, MulticloudTableConfig
from .exceptions import ConfigurationError, OperationCancelledError, TableClientError
from .facade import MulticloudTableClient
from .logging_config import get_logger, setup_logging
from .models import TableEntity, TableProviderOptions, TableSettings, configure_settings
from .registry import Providers, TableClientFactory, registered_providers, table_provider
from .types import EdmType, Int64

__all__ = [
    "__version__",
    "ConfigManager",
    "ConfigurationError",
    "EdmType",
    "EntityCodec",
    "EntityField",
    "EntityPager",
    "Int64",
    "MulticloudTableClient",
    "MulticloudTableConfig",
    "OperationCancelledError",
    "Providers",
    "TableClient",
    "TableClientError",
    "TableClientFactory",
    "TableEntity",
    "TableProviderOptions",
    "TableSettings",
    "configure_settings",
    "describe_entity",
    "get_logger",
    "registered_providers",
    "setup_logging",
    "table_provider",
]
