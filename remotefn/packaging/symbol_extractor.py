"""
Free-symbol extraction from compiled function bodies.

The compiler has already applied Python's scoping rules when it produced the
code object: parameters and locals are accessed as fast locals, closure
variables through cells, and everything else through the global namespace.
Extraction therefore walks the instruction stream of the code body and of
every nested code object (inner functions, lambdas, comprehensions, class
bodies) and collects the names that escape to an enclosing scope.
"""

import dis
import functools
import logging
import types
from typing import FrozenSet, Iterator, NamedTuple, Set

from ..core.exceptions import UnanalyzableBody

logger = logging.getLogger(__name__)

# Opcodes that look a name up in the global namespace
_GLOBAL_OPS = frozenset({"LOAD_GLOBAL", "DELETE_GLOBAL"})

# Opcodes used by class bodies, which search their own namespace first
_NAME_LOAD_OPS = frozenset({"LOAD_NAME", "LOAD_FROM_DICT_OR_GLOBALS"})

# Builtins whose behavior depends on names the compiler cannot see
DYNAMIC_SCOPE_NAMES = frozenset({"globals", "locals", "eval", "exec"})


class FreeSymbols(NamedTuple):
    """Free symbols of a function, split by the scope that binds them."""
    cell_names: FrozenSet[str]
    global_names: FrozenSet[str]

    @property
    def names(self) -> FrozenSet[str]:
        return self.cell_names | self.global_names


def _iter_code(code: types.CodeType) -> Iterator[types.CodeType]:
    yield code
    for const in code.co_consts:
        if isinstance(const, types.CodeType):
            yield from _iter_code(const)


@functools.lru_cache(maxsize=1024)
def _escaping_names(code: types.CodeType) -> FrozenSet[str]:
    names: Set[str] = set()
    for nested in _iter_code(code):
        loaded: Set[str] = set()
        stored: Set[str] = set()
        for instr in dis.get_instructions(nested):
            if instr.opname in _GLOBAL_OPS:
                names.add(instr.argval)
            elif instr.opname in _NAME_LOAD_OPS:
                loaded.add(instr.argval)
            elif instr.opname == "STORE_NAME":
                stored.add(instr.argval)
        # A class body's own assignments shadow the enclosing scopes
        names |= loaded - stored
    return frozenset(names)


def extract(func, reject_dynamic_scope: bool = True) -> FreeSymbols:
    """
    Find every symbol ``func`` references that is bound outside of it.

    Args:
        func: A Python function (def or lambda)
        reject_dynamic_scope: Refuse bodies that call ``globals``, ``locals``,
            ``eval`` or ``exec``, whose name usage cannot be known statically

    Returns:
        ``FreeSymbols``: closure variables, and names looked up in the global
        namespace by the body or any nested body. A name can be in both when
        a nested function declares it ``global``

    Raises:
        UnanalyzableBody: If ``func`` has no code body or uses dynamic scope
    """
    target = getattr(func, "__qualname__", None) or repr(func)
    code = getattr(func, "__code__", None)
    if not isinstance(code, types.CodeType):
        raise UnanalyzableBody(target, "object has no Python code body")

    try:
        escaping = _escaping_names(code)
    except (TypeError, ValueError, IndexError) as e:
        raise UnanalyzableBody(target, f"{type(e).__name__}: {e}") from e

    if reject_dynamic_scope:
        dynamic = escaping & DYNAMIC_SCOPE_NAMES
        if dynamic:
            raise UnanalyzableBody(
                target,
                f"body uses dynamic scope access ({', '.join(sorted(dynamic))})"
            )

    symbols = FreeSymbols(frozenset(code.co_freevars), escaping)
    logger.debug(
        f"Extracted free symbols from {target}: cells={sorted(symbols.cell_names)}, "
        f"globals={sorted(symbols.global_names)}"
    )
    return symbols
