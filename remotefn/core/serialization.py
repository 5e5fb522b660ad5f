"""
Byte encoding of packaged functions.

A package is stored as a zip archive holding a JSON manifest for diagnostics
and the cloudpickle-serialized flattened scope. Decoding needs no knowledge of
the original function's name or defining module: the flattened scope carries
code objects, copied data and import paths only, and classes from modules the
destination lacks are pickled together with their definitions.

Only decode archives from trusted sources; decoding unpickles the payload.
"""

import contextlib
import io
import json
import logging
import sys
import threading
import zipfile
from typing import Any, Dict, Iterable, Iterator, Optional

import cloudpickle

from .config import PackagingConfig, get_config
from .exceptions import SerializationError
from ..packaging.container import PackageContainer
from ..packaging.flattener import FlattenedScope

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"
PACKAGE_TYPE = "function_package"
MANIFEST_NAME = "manifest.json"
PAYLOAD_NAME = "package.pkl"


def _python_version() -> str:
    return f"{sys.version_info.major}.{sys.version_info.minor}"


# Pickle-by-value registration is process-wide
_registry_lock = threading.Lock()


@contextlib.contextmanager
def _pickled_by_value(module_names: Iterable[str]) -> Iterator[None]:
    """Temporarily make cloudpickle carry ``module_names`` by value."""
    registered = []
    with _registry_lock:
        try:
            already = cloudpickle.list_registry_pickle_by_value()
            for name in module_names:
                module = sys.modules.get(name)
                if module is None or name in already:
                    continue
                cloudpickle.register_pickle_by_value(module)
                registered.append(module)
            yield
        finally:
            for module in registered:
                cloudpickle.unregister_pickle_by_value(module)


def encode(container: PackageContainer, config: Optional[PackagingConfig] = None) -> bytes:
    """
    Encode a package container to archive bytes.

    Args:
        container: Package to encode
        config: Packaging configuration (size limit, compression)

    Returns:
        bytes: zip archive with manifest and payload

    Raises:
        SerializationError: If ``container`` is not a package, or the payload
            cannot be pickled or exceeds the size limit
    """
    if not isinstance(container, PackageContainer):
        raise SerializationError(
            f"Expected PackageContainer, got {type(container).__name__}"
        )

    config = config or get_config()
    name = container.__qualname__

    try:
        with _pickled_by_value(container.scope.value_modules):
            payload = cloudpickle.dumps({
                "scope": container.scope,
                "symbols": list(container.symbols),
            })
    except Exception as e:
        raise SerializationError(
            f"Cannot encode package '{name}': {type(e).__name__}: {e}"
        ) from e

    size_mb = len(payload) / (1024 * 1024)
    if len(payload) > config.max_serialized_size_bytes:
        raise SerializationError(
            f"Package '{name}' payload ({size_mb:.2f} MB) exceeds limit "
            f"({config.max_serialized_size_mb} MB)"
        )

    manifest = dict(container.describe())
    manifest.update({
        "version": FORMAT_VERSION,
        "type": PACKAGE_TYPE,
        "python_version": _python_version(),
        "payload_size": len(payload),
    })

    # Use BytesIO instead of temporary file
    archive_buffer = io.BytesIO()
    compression = zipfile.ZIP_DEFLATED if config.compress else zipfile.ZIP_STORED
    with zipfile.ZipFile(archive_buffer, 'w', compression) as zf:
        zf.writestr(MANIFEST_NAME, json.dumps(manifest, indent=2))
        zf.writestr(PAYLOAD_NAME, payload)

    logger.info(f"Encoded package '{name}': {size_mb:.2f} MB payload")
    return archive_buffer.getvalue()


def _read_manifest(zf: zipfile.ZipFile) -> Dict[str, Any]:
    manifest = json.loads(zf.read(MANIFEST_NAME).decode('utf-8'))

    if manifest.get("type") != PACKAGE_TYPE:
        raise SerializationError(f"Not a function package: type={manifest.get('type')!r}")
    if manifest.get("version") != FORMAT_VERSION:
        raise SerializationError(
            f"Unsupported package format version {manifest.get('version')!r} "
            f"(expected {FORMAT_VERSION})"
        )
    return manifest


def decode(data: bytes) -> PackageContainer:
    """
    Decode archive bytes produced by ``encode``.

    Args:
        data: Archive bytes

    Returns:
        PackageContainer: Ready-to-call package

    Raises:
        SerializationError: If the archive is malformed or the payload cannot be loaded
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data), 'r') as zf:
            manifest = _read_manifest(zf)
            payload = zf.read(PAYLOAD_NAME)

        if manifest.get("python_version") != _python_version():
            logger.warning(
                f"Package '{manifest.get('qualname')}' was encoded with Python "
                f"{manifest.get('python_version')}, decoding with {_python_version()}"
            )

        state = cloudpickle.loads(payload)
        scope = state["scope"]
        if not isinstance(scope, FlattenedScope):
            raise TypeError(f"Payload is not a flattened scope, got {type(scope).__name__}")

        container = PackageContainer(scope, tuple(state["symbols"]))
        logger.debug(f"Decoded package '{container.__qualname__}' from {len(data)} bytes")
        return container

    except SerializationError:
        # Re-raise our custom errors
        raise

    except Exception as e:
        raise SerializationError(
            f"Deserialization failed: {type(e).__name__}: {e}"
        ) from e


def inspect_archive(data: bytes) -> Dict[str, Any]:
    """
    Extract information from a package archive without loading the payload.

    Args:
        data: Archive bytes

    Returns:
        Dictionary with the manifest plus the archive file list
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data), 'r') as zf:
            manifest = _read_manifest(zf)
            manifest["archive_files"] = zf.namelist()
    except SerializationError:
        raise
    except (zipfile.BadZipFile, KeyError, ValueError, TypeError) as e:
        raise SerializationError(f"Cannot read package archive: {e}") from e
    return manifest
