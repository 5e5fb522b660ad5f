"""
Dependency graph construction over live lexical scopes.

Starting from a root function, every free symbol is resolved through the
scope chain of the function that references it, classified, and, when it is
itself a function, queued for the same analysis against its own scope chain.
"""

import logging
import types
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..core.config import PackagingConfig
from ..core.exceptions import RejectedBinding, UnanalyzableBody
from .classifier import CapturabilityClassifier, CaptureKind, Classification
from .scope import Binding, Frame, FrameKind, ScopeChain, resolve
from .symbol_extractor import FreeSymbols, extract

logger = logging.getLogger(__name__)

BindingKey = Tuple[int, str]


@dataclass
class BindingNode:
    """A resolved binding and how it will be captured."""
    binding: Binding
    classification: Classification

    @property
    def kind(self) -> CaptureKind:
        return self.classification.kind


@dataclass
class CallableNode:
    """
    A function in the graph, with an edge per free symbol and default value.

    Closure variables and global-scope names keep separate edges, since one
    name can be both when a nested function declares it ``global``.
    """
    func: types.FunctionType
    chain: ScopeChain
    symbols: FreeSymbols
    cell_edges: Dict[str, BindingKey] = field(default_factory=dict)
    global_edges: Dict[str, BindingKey] = field(default_factory=dict)
    defaults_frame: Optional[Frame] = None
    positional_defaults: Tuple[str, ...] = ()
    keyword_defaults: Tuple[str, ...] = ()

    @property
    def identity(self) -> int:
        return id(self.func)

    @property
    def name(self) -> str:
        return self.func.__qualname__


class DependencyGraph:
    """Callables and bindings reachable from a root function."""

    def __init__(self, root: types.FunctionType):
        self.root = root
        self.callables: Dict[int, CallableNode] = {}
        self.bindings: Dict[BindingKey, BindingNode] = {}

    @property
    def root_node(self) -> CallableNode:
        return self.callables[id(self.root)]

    def binding_for(self, node: CallableNode, symbol: str, global_scope: bool = False) -> BindingNode:
        """The binding ``symbol`` resolved to, as the body of ``node`` sees it."""
        if not global_scope and symbol in node.cell_edges:
            return self.bindings[node.cell_edges[symbol]]
        return self.bindings[node.global_edges[symbol]]

    def captured_symbols(self) -> List[str]:
        """Top-level symbols of the root function that are not elided."""
        root = self.root_node
        edges = list(root.cell_edges.items()) + list(root.global_edges.items())
        return sorted({
            symbol for symbol, key in edges
            if self.bindings[key].kind is not CaptureKind.ELIDE
        })

    def __repr__(self) -> str:
        return (
            f"DependencyGraph(root={self.root.__qualname__!r}, "
            f"callables={len(self.callables)}, bindings={len(self.bindings)})"
        )


def _defaults_frame(func: types.FunctionType) -> Tuple[Optional[Frame], Tuple[str, ...], Tuple[str, ...]]:
    code = func.__code__
    positional = func.__defaults__ or ()
    keyword = func.__kwdefaults__ or {}
    if not positional and not keyword:
        return None, (), ()

    names = code.co_varnames[code.co_argcount - len(positional):code.co_argcount]
    namespace = dict(zip(names, positional))
    namespace.update(keyword)
    return Frame(FrameKind.DEFAULTS, namespace), tuple(names), tuple(keyword)


class DependencyGraphBuilder:
    """
    Builds the transitive dependency graph of a function.

    Bindings are visited once per ``(frame identity, symbol)`` and callables
    once per function identity, so mutual recursion and self reference
    terminate.
    """

    def __init__(
        self,
        config: Optional[PackagingConfig] = None,
        classifier: Optional[CapturabilityClassifier] = None
    ):
        self.config = config or PackagingConfig()
        self.classifier = classifier or CapturabilityClassifier(self.config)

    def build(
        self,
        root: types.FunctionType,
        on_phase: Optional[Callable[[str], None]] = None
    ) -> DependencyGraph:
        """
        Analyze ``root`` and everything it transitively depends on.

        Args:
            root: Function to analyze
            on_phase: Optional callback receiving "extracting", "resolving" or
                "classifying" as analysis moves between phases

        Returns:
            The complete dependency graph

        Raises:
            UnanalyzableBody: If a function body cannot be analyzed
            UnresolvedSymbol: If a free symbol has no binding
            RejectedBinding: If a dependency cannot be relocated
        """
        if not isinstance(root, types.FunctionType):
            raise UnanalyzableBody(
                getattr(root, "__qualname__", None) or repr(root),
                f"expected a Python function, got {type(root).__name__}"
            )

        notify = on_phase or (lambda phase: None)
        graph = DependencyGraph(root)
        queue = deque([root])
        scheduled: Set[int] = {id(root)}

        while queue:
            func = queue.popleft()
            for value in self._expand(func, graph, notify):
                if id(value) not in scheduled:
                    scheduled.add(id(value))
                    queue.append(value)

        logger.debug(f"Built {graph!r}")
        return graph

    def _expand(
        self,
        func: types.FunctionType,
        graph: DependencyGraph,
        notify: Callable[[str], None]
    ) -> List[types.FunctionType]:
        notify("extracting")
        symbols = extract(func, reject_dynamic_scope=self.config.reject_dynamic_scope)
        defaults_frame, positional, keyword = _defaults_frame(func)
        node = CallableNode(
            func=func,
            chain=ScopeChain.of(func),
            symbols=symbols,
            defaults_frame=defaults_frame,
            positional_defaults=positional,
            keyword_defaults=keyword,
        )
        graph.callables[node.identity] = node

        notify("resolving")
        pending: List[Tuple[str, Binding]] = []
        for symbol in sorted(symbols.cell_names):
            binding = resolve(symbol, node.chain)
            node.cell_edges[symbol] = binding.key
            pending.append((symbol, binding))
        for symbol in sorted(symbols.global_names):
            binding = resolve(symbol, node.chain, global_scope=True)
            node.global_edges[symbol] = binding.key
            pending.append((symbol, binding))
        if defaults_frame is not None:
            for param, value in defaults_frame.namespace.items():
                pending.append((f"{param} (default)", Binding(param, value, defaults_frame)))

        notify("classifying")
        discovered = []
        for label, binding in pending:
            if binding.key in graph.bindings:
                continue
            classification = self.classifier.classify(binding)
            if classification.kind is CaptureKind.REJECT:
                raise RejectedBinding(label, classification.reason, node.name)
            graph.bindings[binding.key] = BindingNode(binding, classification)
            if classification.kind is CaptureKind.CALLABLE:
                discovered.append(binding.value)

        logger.debug(
            f"Expanded {node.name}: {len(symbols.names)} symbols, "
            f"{len(discovered)} new callables"
        )
        return discovered
