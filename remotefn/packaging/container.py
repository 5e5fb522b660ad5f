"""
The relocatable callable produced by packaging.
"""

from typing import Any, Dict, Tuple

from .flattener import FlattenedScope, materialize


class PackageContainer:
    """
    A function plus its flattened captured scope, callable like the original.

    Each invocation materializes a fresh copy of the captured scope, so calls
    never observe each other's side effects on captured state and the
    container can be called concurrently without synchronization.
    """

    def __init__(self, scope: FlattenedScope, symbols: Tuple[str, ...] = ()):
        self._scope = scope
        self._symbols = tuple(symbols)
        root = scope.root
        self.__name__ = root.name
        self.__qualname__ = root.qualname
        self.__doc__ = root.doc

    @property
    def scope(self) -> FlattenedScope:
        return self._scope

    @property
    def symbols(self) -> Tuple[str, ...]:
        """Captured top-level symbol names of the packaged function."""
        return self._symbols

    def materialize(self):
        """Return a live, rebound copy of the packaged function."""
        return materialize(self._scope)

    def __call__(self, *args, **kwargs) -> Any:
        return self.materialize()(*args, **kwargs)

    def describe(self) -> Dict[str, Any]:
        """Manifest-style summary for diagnostics."""
        root = self._scope.root
        return {
            "name": root.name,
            "qualname": root.qualname,
            "module": root.module,
            "symbols": list(self._symbols),
            "frame_count": len(self._scope.frames),
            "function_count": len(self._scope.functions),
            "value_modules": list(self._scope.value_modules),
        }

    def __repr__(self) -> str:
        return f"<PackageContainer {self.__qualname__} symbols=[{', '.join(self._symbols)}]>"
