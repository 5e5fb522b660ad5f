"""
remotefn

Package Python functions together with the lexical environment they depend
on, so they can be shipped to another process and invoked there unchanged.
"""

import logging

__version__ = "0.1.0"
__author__ = "Mathieu Gosbee"
__email__ = "mail@matbee.com"

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# Core imports
from .core.config import PackagingConfig, get_config, set_config
from .core.exceptions import (
    RemoteFnError,
    PackagingError,
    UnanalyzableBody,
    UnresolvedSymbol,
    RejectedBinding,
    SerializationError,
    ConfigurationError,
)
from .packaging import CodePackager, PackageContainer, PackagingState, package
from .core.serialization import encode, decode, inspect_archive

__all__ = [
    # Packaging
    "package",
    "CodePackager",
    "PackageContainer",
    "PackagingState",
    # Serialization
    "encode",
    "decode",
    "inspect_archive",
    # Configuration
    "PackagingConfig",
    "get_config",
    "set_config",
    # Exceptions
    "RemoteFnError",
    "PackagingError",
    "UnanalyzableBody",
    "UnresolvedSymbol",
    "RejectedBinding",
    "SerializationError",
    "ConfigurationError",
    # Version info
    "__version__",
    "__author__",
    "__email__",
]
