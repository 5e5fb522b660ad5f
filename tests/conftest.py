"""
pytest configuration and fixtures for remotefn tests
"""

import pytest

from remotefn.core import config as config_module
from remotefn.core.config import PackagingConfig
from remotefn.core.serialization import decode, encode
from remotefn.packaging.code_packager import CodePackager


ENV_VARS = [
    "REMOTEFN_REFERENCE_STDLIB",
    "REMOTEFN_REFERENCE_INSTALLED",
    "REMOTEFN_REFERENCE_MODULES",
    "REMOTEFN_REJECT_DYNAMIC_SCOPE",
    "REMOTEFN_MAX_SERIALIZED_SIZE_MB",
    "REMOTEFN_COMPRESS",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """
    Remove remotefn environment overrides and reset the global config.
    """
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "_config", None)
    yield


@pytest.fixture
def config():
    """Default packaging configuration."""
    return PackagingConfig()


@pytest.fixture
def packager(config):
    """A CodePackager using the default configuration."""
    return CodePackager(config)


@pytest.fixture
def round_trip(packager, config):
    """
    Package, encode and decode a function.

    Returns:
        Callable taking a function and returning the decoded PackageContainer
    """
    def _round_trip(func):
        return decode(encode(packager.package(func), config=config))
    return _round_trip


# Markers for test categorization

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: Tests that decode packages in a separate interpreter"
    )
