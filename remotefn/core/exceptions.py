"""
Custom exceptions for remotefn.
"""

from typing import Optional


class RemoteFnError(Exception):
    """Base exception for all remotefn errors."""
    pass


class PackagingError(RemoteFnError):
    """Exception raised when a callable cannot be packaged."""
    pass


class UnanalyzableBody(PackagingError):
    """Raised when a callable's code body cannot be statically analyzed."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"Cannot analyze '{target}': {reason}")
        self.target = target
        self.reason = reason


class UnresolvedSymbol(PackagingError):
    """Raised when a free symbol is not bound anywhere in the scope chain."""

    def __init__(self, symbol: str, function: Optional[str] = None):
        message = f"Unresolved symbol '{symbol}'"
        if function:
            message += f" referenced by '{function}'"
        super().__init__(message)
        self.symbol = symbol
        self.function = function


class RejectedBinding(PackagingError):
    """Raised when a dependency is bound to a non-relocatable resource."""

    def __init__(self, symbol: str, reason: str, function: Optional[str] = None):
        message = f"Cannot capture '{symbol}'"
        if function:
            message += f" (referenced by '{function}')"
        message += f": {reason}"
        super().__init__(message)
        self.symbol = symbol
        self.reason = reason
        self.function = function


class SerializationError(RemoteFnError):
    """Exception raised for serialization/deserialization errors."""
    pass


class ConfigurationError(RemoteFnError):
    """Exception raised for configuration-related errors."""
    pass
