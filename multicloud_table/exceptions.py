"""
Multicloud Table Exceptions.

Error taxonomy shared by the factory, the provider adapters and the facade.
Provider faults (network, auth, conflicts) are not wrapped: they propagate
as the SDK raised them.
"""

import asyncio
from typing import Optional


class TableClientError(Exception):
    """Base exception for multicloud table errors."""

    pass


class ConfigurationError(TableClientError, ValueError):
    """
    Raised when a provider cannot be configured.

    Covers a missing or unknown provider name, an absent option map and
    missing required option keys. Only raised while constructing a client.

    Attributes:
        message: Error message
        option: Name of the offending option key, if any
    """

    def __init__(self, message: str, option: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.option = option


class OperationCancelledError(asyncio.CancelledError):
    """
    Raised when a caller-supplied cancellation event is observed.

    Derives from asyncio.CancelledError so that it is treated as a
    cancellation outcome rather than a data error.
    """

    def __init__(self, message: str = "Operation was cancelled"):
        super().__init__(message)
        self.message = message
