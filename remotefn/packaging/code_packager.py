"""
Function packager for relocating callables to other processes.

Packaging runs dependency analysis over the function's live lexical scopes,
flattens everything it captures into a standalone scope and returns a
``PackageContainer`` that can be invoked directly or encoded to bytes.
"""

import logging
from enum import Enum
from typing import List, Optional

from ..core.config import PackagingConfig, get_config
from .container import PackageContainer
from .dependency_graph import DependencyGraphBuilder
from .flattener import flatten

logger = logging.getLogger(__name__)


class PackagingState(Enum):
    """Lifecycle of a single packaging run."""
    INIT = "init"
    EXTRACTING = "extracting"
    RESOLVING = "resolving"
    CLASSIFYING = "classifying"
    FLATTENING = "flattening"
    READY = "ready"
    FAILED = "failed"


class CodePackager:
    """
    Packages Python functions together with their lexical environment.

    Packaging is all-or-nothing: any failure leaves the packager in the
    FAILED state and raises, and no container is returned.
    """

    def __init__(self, config: Optional[PackagingConfig] = None):
        """
        Initialize the code packager.

        Args:
            config: Packaging configuration. If None, uses the global configuration.
        """
        self.config = config or get_config()
        self.builder = DependencyGraphBuilder(self.config)
        self.state = PackagingState.INIT
        self.history: List[PackagingState] = [PackagingState.INIT]
        self.failure: Optional[Exception] = None

    def package(self, func) -> PackageContainer:
        """
        Package a function with every binding it lexically depends on.

        Args:
            func: Python function to package

        Returns:
            A callable container with identical invocation semantics

        Raises:
            UnanalyzableBody: If a function body cannot be analyzed
            UnresolvedSymbol: If a free symbol has no binding
            RejectedBinding: If a dependency cannot be relocated
        """
        self.state = PackagingState.INIT
        self.history = [PackagingState.INIT]
        self.failure = None

        name = getattr(func, "__qualname__", None) or repr(func)
        logger.info(f"Packaging function {name}")

        try:
            graph = self.builder.build(func, on_phase=self._on_phase)
            self._transition(PackagingState.FLATTENING)
            scope = flatten(graph)
        except Exception as e:
            self.failure = e
            self._transition(PackagingState.FAILED)
            logger.error(f"Failed to package {name}: {e}")
            raise

        container = PackageContainer(scope, tuple(graph.captured_symbols()))
        self._transition(PackagingState.READY)

        logger.info(
            f"Packaged {name}: {len(scope.functions)} functions, "
            f"{len(scope.frames)} frames"
        )
        for symbol in container.symbols:
            logger.debug(f"  - {symbol}")
        return container

    def package_archive(self, func) -> bytes:
        """Package ``func`` and encode the container to archive bytes."""
        from ..core.serialization import encode

        return encode(self.package(func), config=self.config)

    def _on_phase(self, phase: str) -> None:
        self._transition(PackagingState(phase))

    def _transition(self, state: PackagingState) -> None:
        if state is self.state:
            return
        logger.debug(f"Packaging state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


def package(func, config: Optional[PackagingConfig] = None) -> PackageContainer:
    """Package ``func`` with a fresh ``CodePackager``."""
    return CodePackager(config).package(func)
