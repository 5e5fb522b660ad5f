"""
Capturability classification for resolved bindings.

Every binding a packaged function depends on is sorted into one of the
``CaptureKind`` variants. The rest of the pipeline only looks at the variant,
never at the value's type.
"""

import asyncio
import concurrent.futures
import dataclasses
import datetime
import decimal
import enum
import fractions
import io
import itertools
import logging
import mmap
import multiprocessing.process
import os
import selectors
import socket
import sqlite3
import subprocess
import sys
import sysconfig
import threading
import types
import uuid
import weakref
from pathlib import PurePath
from typing import Any, Iterable, List, Optional, Set, Tuple

import numpy as np

from ..core.config import PackagingConfig
from .scope import Binding

logger = logging.getLogger(__name__)


class CaptureKind(enum.Enum):
    """What to do with a resolved binding."""
    ELIDE = "elide"            # owned by the base boundary, present everywhere
    VALUE = "value"            # plain data, deep copied
    CALLABLE = "callable"      # function with a code body, analyzed recursively
    REFERENCE = "reference"    # importable by name at the destination
    REJECT = "reject"          # cannot be relocated


@dataclasses.dataclass(frozen=True)
class Classification:
    """Result of classifying one binding."""
    kind: CaptureKind
    reason: Optional[str] = None
    import_path: Optional[Tuple[str, str]] = None
    # Modules whose classes travel with the value instead of by name
    value_modules: Tuple[str, ...] = ()

    @property
    def captured(self) -> bool:
        return self.kind in (CaptureKind.VALUE, CaptureKind.CALLABLE, CaptureKind.REFERENCE)


ELIDE = Classification(CaptureKind.ELIDE)
VALUE = Classification(CaptureKind.VALUE)
CALLABLE = Classification(CaptureKind.CALLABLE)


def reject(reason: str) -> Classification:
    return Classification(CaptureKind.REJECT, reason=reason)


def reference(module_name: str, attribute: str = "") -> Classification:
    return Classification(CaptureKind.REFERENCE, import_path=(module_name, attribute))


def by_value(modules: Iterable[str] = ()) -> Classification:
    modules = tuple(sorted(modules))
    if not modules:
        return VALUE
    return Classification(CaptureKind.VALUE, value_modules=modules)


# Live external resources, matched with isinstance
_RESOURCE_TYPES: List[Tuple[type, str]] = [
    (io.IOBase, "open stream"),
    (socket.socket, "socket"),
    (selectors.BaseSelector, "selector"),
    (mmap.mmap, "memory map"),
    (threading.Thread, "thread"),
    (type(threading.Lock()), "lock"),
    (type(threading.RLock()), "lock"),
    (threading.Condition, "condition variable"),
    (threading.Semaphore, "semaphore"),
    (threading.Event, "event"),
    (subprocess.Popen, "subprocess"),
    (multiprocessing.process.BaseProcess, "process"),
    (sqlite3.Connection, "database connection"),
    (sqlite3.Cursor, "database cursor"),
    (asyncio.AbstractEventLoop, "event loop"),
    (asyncio.Future, "pending future"),
    (concurrent.futures.Future, "pending future"),
    (concurrent.futures.Executor, "executor"),
    (types.GeneratorType, "suspended generator"),
    (types.CoroutineType, "coroutine"),
    (types.AsyncGeneratorType, "async generator"),
    (types.FrameType, "interpreter frame"),
    (types.TracebackType, "traceback"),
    (weakref.ref, "weak reference"),
]

# Third-party resources; only checked when their library is already loaded
_OPTIONAL_RESOURCE_TYPES = {
    "grpc.Channel": "gRPC channel",
    "grpc.aio.Channel": "gRPC channel",
    "av.container.InputContainer": "media container",
    "av.container.OutputContainer": "media container",
}

_SCALAR_TYPES = (
    type(None), bool, int, float, complex, str, bytes, bytearray, range,
    type(Ellipsis), decimal.Decimal, fractions.Fraction, datetime.date,
    datetime.time, datetime.timedelta, datetime.timezone, uuid.UUID, PurePath,
)

_CONTAINER_TYPES = (list, tuple, set, frozenset, dict)

# Objects whose own reduction recreates them by name
_NAMED_TYPES = (logging.Logger,)

# Packages remotefn itself needs, so every destination has them
_REQUIRED_PACKAGES = frozenset({"remotefn", "numpy", "cloudpickle", "yaml"})

_MISSING = object()


def _in_stdlib(module_name: str) -> bool:
    return module_name.split(".")[0] in sys.stdlib_module_names


def _loaded_type(path: str) -> Optional[type]:
    module_name, _, attr = path.rpartition(".")
    module = sys.modules.get(module_name)
    if module is None:
        return None
    candidate = getattr(module, attr, None)
    return candidate if isinstance(candidate, type) else None


def import_path(obj: Any) -> Optional[Tuple[str, str]]:
    """
    Find ``(module, attribute path)`` that imports ``obj`` itself, or None.

    Only modules already present in ``sys.modules`` are consulted and
    ``__main__`` is never used.
    """
    if isinstance(obj, np.ufunc):
        return ("numpy", obj.__name__) if getattr(np, obj.__name__, None) is obj else None

    module_name = getattr(obj, "__module__", None)
    if not isinstance(module_name, str) or module_name == "__main__":
        return None
    module = sys.modules.get(module_name)
    if module is None:
        return None

    for path in (getattr(obj, "__qualname__", None), getattr(obj, "__name__", None)):
        if not isinstance(path, str) or "<" in path:
            continue
        target = module
        for part in path.split("."):
            target = getattr(target, part, _MISSING)
            if target is _MISSING:
                break
        if target is obj:
            return (module_name, path)
    return None


def _installed_prefixes() -> Tuple[str, ...]:
    paths = sysconfig.get_paths()
    return tuple(
        os.path.normcase(os.path.realpath(paths[key]))
        for key in ("purelib", "platlib") if key in paths
    )


class CapturabilityClassifier:
    """
    Decides how each resolved binding is captured.

    Rules, in order:
    1. Bindings owned by the base boundary are elided.
    2. Live external resources are rejected with their kind.
    3. Modules are referenced by import name when the destination has them
       (standard library, remotefn's own requirements, installed
       distributions, configured modules) and rejected otherwise.
    4. Python functions are captured as callables unless they live in a
       by-reference module.
    5. Classes from by-reference modules are referenced; any other class
       written in Python is carried by value together with its definition.
    6. Plain data is captured by value.
    7. Anything else importable from a by-reference module (builtin
       functions, ufuncs) is referenced; the rest is rejected.
    """

    def __init__(self, config: Optional[PackagingConfig] = None):
        self.config = config or PackagingConfig()
        self._installed = _installed_prefixes() if self.config.reference_installed else ()

    def classify(self, binding: Binding) -> Classification:
        if binding.is_base:
            return ELIDE
        classification = self.classify_value(binding.value)
        logger.debug(f"Classified '{binding.name}' as {classification.kind.value}")
        return classification

    def classify_value(self, value: Any) -> Classification:
        kind = self.resource_kind(value)
        if kind:
            return reject(kind)

        if isinstance(value, types.ModuleType):
            name = value.__name__
            if name == "__main__" or sys.modules.get(name) is not value:
                return reject(f"module '{name}' cannot be imported by name")
            if not self.is_reference_module(name):
                return reject(f"module '{name}' is not available at the destination")
            return reference(name)

        if isinstance(value, types.FunctionType):
            path = import_path(value)
            if path and self.is_reference_module(path[0]):
                if self.config.reference_stdlib or not _in_stdlib(path[0]):
                    return reference(*path)
            return CALLABLE

        modules: Set[str] = set()
        if isinstance(value, type):
            path = import_path(value)
            if path and self.is_reference_module(path[0]):
                return reference(*path)
            problem = self.class_problem(value, modules)
        else:
            problem = self.data_problem(value, modules=modules)
        if problem is None:
            return by_value(modules)

        path = import_path(value)
        if path and self.is_reference_module(path[0]):
            return reference(*path)
        if path:
            return reject(f"'{path[0]}.{path[1]}' is not available at the destination")
        return reject(problem)

    def resource_kind(self, value: Any) -> Optional[str]:
        """Name the kind of external resource ``value`` is, or None."""
        for resource_type, kind in _RESOURCE_TYPES:
            if isinstance(value, resource_type):
                return kind
        for path, kind in _OPTIONAL_RESOURCE_TYPES.items():
            resource_type = _loaded_type(path)
            if resource_type is not None and isinstance(value, resource_type):
                return kind
        for path in self.config.extra_resource_types:
            resource_type = _loaded_type(path)
            if resource_type is not None and isinstance(value, resource_type):
                return f"resource {path}"
        return None

    def is_reference_module(self, module_name: str) -> bool:
        """Whether ``module_name`` can be imported by name at the destination."""
        root = module_name.split(".")[0]
        if _in_stdlib(module_name) or root in _REQUIRED_PACKAGES:
            return True
        for name in self.config.reference_modules:
            if module_name == name or module_name.startswith(name + "."):
                return True
        if self._installed:
            module_file = getattr(sys.modules.get(module_name), "__file__", None)
            if module_file:
                module_file = os.path.normcase(os.path.realpath(module_file))
                return any(module_file.startswith(prefix + os.sep) for prefix in self._installed)
        return False

    def class_problem(self, cls: type, modules: Set[str]) -> Optional[str]:
        """
        Explain why instances of ``cls`` cannot travel, or return None.

        Classes outside by-reference modules travel by value; the module of an
        importable one is added to ``modules`` so the encoder pickles it by
        value instead of by name.
        """
        path = import_path(cls)
        if path and self.is_reference_module(path[0]):
            return None
        if "__module__" not in vars(cls):
            # Extension types cannot be rebuilt from their definition.
            return f"class {cls.__qualname__} is not available at the destination"
        if path:
            modules.add(path[0])
        return None

    def data_problem(
        self,
        value: Any,
        seen: Optional[Set[int]] = None,
        modules: Optional[Set[str]] = None
    ) -> Optional[str]:
        """
        Explain why ``value`` is not plain data, or return None if it is.

        Containers are checked recursively; reference cycles are allowed.
        Modules whose classes are carried by value are added to ``modules``.
        """
        if seen is None:
            seen = set()
        if modules is None:
            modules = set()

        kind = self.resource_kind(value)
        if kind:
            return kind

        cls = type(value)
        if isinstance(value, (enum.Enum,) + _NAMED_TYPES):
            return self.class_problem(cls, modules)

        if isinstance(value, (_SCALAR_TYPES, np.generic)):
            return self._subclass_problem(cls, _SCALAR_TYPES, modules)

        if isinstance(value, np.ndarray):
            if value.dtype.hasobject:
                return "numpy array with object dtype"
            return self._subclass_problem(cls, (np.ndarray,), modules)

        if id(value) in seen:
            return None
        seen.add(id(value))

        if isinstance(value, _CONTAINER_TYPES):
            problem = self._subclass_problem(cls, _CONTAINER_TYPES, modules)
            if problem:
                return problem
            if isinstance(value, dict):
                factory = getattr(value, "default_factory", None)
                if factory is not None:
                    problem = self._factory_problem(factory, modules)
                    if problem:
                        return problem
                items = itertools.chain(value.keys(), value.values())
            else:
                items = iter(value)
        elif dataclasses.is_dataclass(value) and not isinstance(value, type):
            problem = self.class_problem(cls, modules)
            if problem:
                return problem
            if hasattr(value, "__dict__"):
                items = iter(vars(value).values())
            else:
                items = (getattr(value, f.name) for f in dataclasses.fields(value))
        else:
            return f"opaque object of type {cls.__module__}.{cls.__qualname__}"

        for item in items:
            problem = self.data_problem(item, seen, modules)
            if problem:
                return problem
        return None

    def _subclass_problem(
        self, cls: type, base_types: Tuple[type, ...], modules: Set[str]
    ) -> Optional[str]:
        if cls in base_types:
            return None
        return self.class_problem(cls, modules)

    def _factory_problem(self, factory: Any, modules: Set[str]) -> Optional[str]:
        if isinstance(factory, type):
            return self.class_problem(factory, modules)
        path = import_path(factory)
        if path and self.is_reference_module(path[0]):
            return None
        return f"defaultdict factory {factory!r} is not importable"
