"""
Function & environment packager for remotefn.

Packages a Python function together with every binding it lexically depends
on into a standalone, relocatable container.
"""

from .scope import Binding, Frame, FrameKind, ScopeChain, resolve
from .symbol_extractor import extract
from .classifier import CapturabilityClassifier, CaptureKind, Classification
from .dependency_graph import DependencyGraph, DependencyGraphBuilder
from .flattener import FlattenedScope, flatten, materialize
from .container import PackageContainer
from .code_packager import CodePackager, PackagingState, package

__all__ = [
    "Binding",
    "Frame",
    "FrameKind",
    "ScopeChain",
    "resolve",
    "extract",
    "CapturabilityClassifier",
    "CaptureKind",
    "Classification",
    "DependencyGraph",
    "DependencyGraphBuilder",
    "FlattenedScope",
    "flatten",
    "materialize",
    "PackageContainer",
    "CodePackager",
    "PackagingState",
    "package",
]
