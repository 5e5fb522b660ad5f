"""
Core components of remotefn.

This module contains configuration, the exception hierarchy and the byte
encoding of packaged functions.
"""

from .config import PackagingConfig, get_config, set_config
from .exceptions import (
    RemoteFnError,
    PackagingError,
    UnanalyzableBody,
    UnresolvedSymbol,
    RejectedBinding,
    SerializationError,
    ConfigurationError,
)

__all__ = [
    "PackagingConfig",
    "get_config",
    "set_config",
    "RemoteFnError",
    "PackagingError",
    "UnanalyzableBody",
    "UnresolvedSymbol",
    "RejectedBinding",
    "SerializationError",
    "ConfigurationError",
]
