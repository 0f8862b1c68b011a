"""Azure Table Storage provider."""

from .adapter import AzureTableStorageAdapter
from .codec import AzureEntityCodec

__all__ = ["AzureTableStorageAdapter", "AzureEntityCodec"]
