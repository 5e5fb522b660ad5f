"""
Scope flattening and rebinding.

``flatten`` turns a dependency graph into a ``FlattenedScope``: a frozen,
self-contained description of every captured binding, grouped by the frame
that originally owned it, plus one record per captured function. It holds
code objects, deep-copied data and import paths only; nothing in it points
back into the live scopes it was built from.

``materialize`` turns a ``FlattenedScope`` back into live functions whose
globals and closure cells are fresh namespaces filled from the captured
bindings, and returns the rebound root function.
"""

import builtins
import copy
import importlib
import logging
import types
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from ..core.exceptions import RejectedBinding
from .classifier import CaptureKind
from .dependency_graph import BindingNode, CallableNode, DependencyGraph
from .scope import Frame, FrameKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValueSlot:
    """Plain data, stored as a private deep copy."""
    value: Any


@dataclass(frozen=True)
class ReferenceSlot:
    """An object imported by name at the destination."""
    module: str
    attribute: str = ""

    def load(self) -> Any:
        target = importlib.import_module(self.module)
        if self.attribute:
            for part in self.attribute.split("."):
                target = getattr(target, part)
        return target


@dataclass(frozen=True)
class CallableSlot:
    """A captured function, by its id in ``FlattenedScope.functions``."""
    function_id: int


Slot = Union[ValueSlot, ReferenceSlot, CallableSlot]


@dataclass(frozen=True)
class CapturedFrame:
    """Captured bindings that shared one original frame."""
    index: int
    kind: FrameKind
    bindings: Tuple[Tuple[str, Slot], ...]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.bindings)


@dataclass(frozen=True)
class FunctionRecord:
    """Everything needed to rebuild one captured function."""
    function_id: int
    code: types.CodeType
    name: str
    qualname: str
    module: Optional[str]
    doc: Optional[str]
    globals_frame: int
    cell_frames: Tuple[int, ...]
    defaults_frame: Optional[int] = None
    positional_defaults: Tuple[str, ...] = ()
    keyword_defaults: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FlattenedScope:
    """Frames in first-resolution order plus the functions bound to them."""
    frames: Tuple[CapturedFrame, ...]
    functions: Tuple[FunctionRecord, ...]
    root_id: int = 0
    # Modules pickled by value when the scope is encoded
    value_modules: Tuple[str, ...] = ()

    @property
    def root(self) -> FunctionRecord:
        return self.functions[self.root_id]

    def describe(self) -> Dict[str, Any]:
        return {
            "frames": [
                {"index": f.index, "kind": f.kind.value, "names": list(f.names)}
                for f in self.frames
            ],
            "functions": [r.qualname for r in self.functions],
            "value_modules": list(self.value_modules),
        }


class ScopeFlattener:
    """Builds a ``FlattenedScope`` from a dependency graph."""

    def __init__(self, graph: DependencyGraph):
        self.graph = graph
        self._frame_index: Dict[int, int] = {}
        self._frame_kinds: List[FrameKind] = []
        self._frame_bindings: List[List[Tuple[str, Slot]]] = []
        self._function_ids: Dict[int, int] = {}
        self._memo: Dict[int, Any] = {}

    def flatten(self) -> FlattenedScope:
        # Frames are numbered in the order resolution first met them.
        for node in self.graph.callables.values():
            self._function_ids[node.identity] = len(self._function_ids)
            for frame in node.chain.frames[:-1]:
                self._index_of(frame)
            if node.defaults_frame is not None:
                self._index_of(node.defaults_frame)

        value_modules = set()
        for bnode in self.graph.bindings.values():
            if bnode.kind is CaptureKind.ELIDE:
                continue
            value_modules.update(bnode.classification.value_modules)
            index = self._frame_index[bnode.binding.frame.identity]
            self._frame_bindings[index].append((bnode.binding.name, self._slot(bnode)))

        frames = tuple(
            CapturedFrame(index, kind, tuple(bindings))
            for index, (kind, bindings) in enumerate(zip(self._frame_kinds, self._frame_bindings))
        )
        functions = tuple(self._record(node) for node in self.graph.callables.values())
        scope = FlattenedScope(
            frames, functions, self._function_ids[id(self.graph.root)], tuple(sorted(value_modules))
        )
        logger.debug(f"Flattened {len(functions)} functions into {len(frames)} frames")
        return scope

    def _index_of(self, frame: Frame) -> int:
        index = self._frame_index.get(frame.identity)
        if index is None:
            index = len(self._frame_kinds)
            self._frame_index[frame.identity] = index
            self._frame_kinds.append(frame.kind)
            self._frame_bindings.append([])
        return index

    def _slot(self, bnode: BindingNode) -> Slot:
        kind = bnode.kind
        if kind is CaptureKind.CALLABLE:
            return CallableSlot(self._function_ids[id(bnode.binding.value)])
        if kind is CaptureKind.REFERENCE:
            return ReferenceSlot(*bnode.classification.import_path)
        try:
            # One memo for the whole scope keeps aliasing between captured values.
            return ValueSlot(copy.deepcopy(bnode.binding.value, self._memo))
        except (TypeError, copy.Error, RecursionError) as e:
            raise RejectedBinding(bnode.binding.name, f"value cannot be copied: {e}") from e

    def _record(self, node: CallableNode) -> FunctionRecord:
        func = node.func
        defaults_frame = None
        if node.defaults_frame is not None:
            defaults_frame = self._frame_index[node.defaults_frame.identity]
        return FunctionRecord(
            function_id=self._function_ids[node.identity],
            code=func.__code__,
            name=func.__name__,
            qualname=func.__qualname__,
            module=func.__module__,
            doc=func.__doc__,
            globals_frame=self._frame_index[id(func.__globals__)],
            cell_frames=tuple(self._frame_index[id(cell)] for cell in func.__closure__ or ()),
            defaults_frame=defaults_frame,
            positional_defaults=node.positional_defaults,
            keyword_defaults=node.keyword_defaults,
        )


def flatten(graph: DependencyGraph) -> FlattenedScope:
    """Flatten ``graph`` into a standalone scope."""
    return ScopeFlattener(graph).flatten()


def materialize(scope: FlattenedScope) -> types.FunctionType:
    """
    Rebuild live functions from ``scope`` and return the rebound root.

    Every call creates fresh namespaces and fresh copies of captured data, so
    the returned functions share no mutable state with ``scope`` or with any
    earlier materialization.
    """
    namespaces: Dict[int, Any] = {}
    for frame in scope.frames:
        if frame.kind is FrameKind.CELL:
            namespaces[frame.index] = types.CellType()
        elif frame.kind is FrameKind.GLOBAL:
            namespaces[frame.index] = {"__builtins__": builtins}
        else:
            namespaces[frame.index] = {}

    functions: Dict[int, types.FunctionType] = {}
    for record in scope.functions:
        closure = tuple(namespaces[i] for i in record.cell_frames) or None
        func = types.FunctionType(
            record.code, namespaces[record.globals_frame], record.name, None, closure
        )
        func.__qualname__ = record.qualname
        func.__module__ = record.module
        func.__doc__ = record.doc
        functions[record.function_id] = func

    # Functions exist before any slot is filled, so cycles resolve.
    memo: Dict[int, Any] = {}
    for frame in scope.frames:
        namespace = namespaces[frame.index]
        for name, slot in frame.bindings:
            if isinstance(slot, CallableSlot):
                value = functions[slot.function_id]
            elif isinstance(slot, ReferenceSlot):
                value = slot.load()
            else:
                value = copy.deepcopy(slot.value, memo)

            if frame.kind is FrameKind.CELL:
                namespace.cell_contents = value
            else:
                namespace[name] = value

    for record in scope.functions:
        if record.defaults_frame is None:
            continue
        defaults = namespaces[record.defaults_frame]
        func = functions[record.function_id]
        func.__defaults__ = tuple(defaults[n] for n in record.positional_defaults) or None
        func.__kwdefaults__ = {n: defaults[n] for n in record.keyword_defaults} or None

    return functions[scope.root_id]
