"""
Explicit lexical scope chains for Python functions.

A function resolves its free symbols through closure cells, then its module
globals, then the builtins namespace. Each of those levels is modelled as a
``Frame`` whose identity is the identity of the namespace object it wraps, so
two frames are the same entity only if they wrap the same cell or dict.
"""

import builtins
import logging
import types
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import UnresolvedSymbol

logger = logging.getLogger(__name__)


class FrameKind(Enum):
    """Kinds of frames in a scope chain."""
    CELL = "cell"
    DEFAULTS = "defaults"
    GLOBAL = "global"
    BUILTIN = "builtin"


@dataclass(frozen=True, eq=False)
class Frame:
    """
    One level of a scope chain.

    ``namespace`` is a closure cell for CELL frames and a dict for every other
    kind. A CELL frame binds exactly one name, ``cell_name``.
    """
    kind: FrameKind
    namespace: Any
    cell_name: Optional[str] = None

    @property
    def identity(self) -> int:
        return id(self.namespace)

    def lookup(self, symbol: str) -> Tuple[bool, Any]:
        """Return ``(found, value)`` for ``symbol`` in this frame only."""
        if self.kind is FrameKind.CELL:
            if symbol != self.cell_name:
                return False, None
            try:
                return True, self.namespace.cell_contents
            except ValueError:
                # Empty cell: the enclosing scope has not assigned it yet.
                return False, None

        if symbol in self.namespace:
            return True, self.namespace[symbol]
        return False, None


@dataclass(frozen=True, eq=False)
class Binding:
    """A name bound to a value in a specific frame."""
    name: str
    value: Any
    frame: Frame

    @property
    def key(self) -> Tuple[int, str]:
        return (self.frame.identity, self.name)

    @property
    def is_base(self) -> bool:
        return self.frame.kind is FrameKind.BUILTIN


def _builtins_namespace(func_globals: Dict[str, Any]) -> Dict[str, Any]:
    ns = func_globals.get("__builtins__", builtins)
    if isinstance(ns, types.ModuleType):
        ns = ns.__dict__
    return ns


class ScopeChain:
    """Ordered frames searched innermost to outermost; the last one is the base boundary."""

    def __init__(self, frames: List[Frame], owner: Optional[str] = None):
        if not frames or frames[-1].kind is not FrameKind.BUILTIN:
            raise ValueError("A scope chain must end with the builtin frame")
        self.frames = list(frames)
        self.owner = owner

    @classmethod
    def of(cls, func: types.FunctionType) -> "ScopeChain":
        """Build the scope chain active at the definition site of ``func``."""
        code = func.__code__
        frames = [
            Frame(FrameKind.CELL, cell, name)
            for name, cell in zip(code.co_freevars, func.__closure__ or ())
        ]
        frames.append(Frame(FrameKind.GLOBAL, func.__globals__))
        frames.append(Frame(FrameKind.BUILTIN, _builtins_namespace(func.__globals__)))
        return cls(frames, owner=func.__qualname__)

    @property
    def base(self) -> Frame:
        return self.frames[-1]

    def find(self, symbol: str, global_scope: bool = False) -> Optional[Binding]:
        """
        Return the innermost binding of ``symbol``, or None.

        A closure variable is bound by its cell alone: an empty cell does not
        fall through to the globals. ``global_scope`` skips the cells, the way
        a ``global`` declaration or a module-level lookup does.
        """
        for frame in self.frames:
            if frame.kind is FrameKind.CELL:
                if global_scope or symbol != frame.cell_name:
                    continue
                found, value = frame.lookup(symbol)
                return Binding(symbol, value, frame) if found else None
            found, value = frame.lookup(symbol)
            if found:
                return Binding(symbol, value, frame)
        return None

    def __len__(self) -> int:
        return len(self.frames)

    def __repr__(self) -> str:
        kinds = ", ".join(frame.kind.value for frame in self.frames)
        return f"ScopeChain(owner={self.owner!r}, frames=[{kinds}])"


def resolve(symbol: str, chain: ScopeChain, global_scope: bool = False) -> Binding:
    """
    Resolve ``symbol`` through ``chain`` the way ordinary name lookup would.

    With ``global_scope`` the search starts at the globals frame.

    Raises:
        UnresolvedSymbol: If no frame up to the base boundary binds the symbol
    """
    binding = chain.find(symbol, global_scope)
    if binding is None:
        raise UnresolvedSymbol(symbol, chain.owner)
    logger.debug(f"Resolved '{symbol}' in {binding.frame.kind.value} frame for {chain.owner}")
    return binding
