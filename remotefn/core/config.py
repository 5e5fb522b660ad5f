"""
Configuration management for packaging.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from .exceptions import ConfigurationError


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() == "true"


@dataclass
class PackagingConfig:
    """Configuration for the packaging engine."""

    # Capture policy
    reference_stdlib: bool = True
    reference_installed: bool = True
    reference_modules: List[str] = field(default_factory=list)
    extra_resource_types: List[str] = field(default_factory=list)
    reject_dynamic_scope: bool = True

    # Archive settings
    max_serialized_size_mb: int = 100
    compress: bool = True

    def __post_init__(self):
        """Initialize configuration from environment variables."""
        self.reference_stdlib = _env_flag("REMOTEFN_REFERENCE_STDLIB", self.reference_stdlib)
        self.reference_installed = _env_flag(
            "REMOTEFN_REFERENCE_INSTALLED", self.reference_installed
        )
        self.reject_dynamic_scope = _env_flag(
            "REMOTEFN_REJECT_DYNAMIC_SCOPE", self.reject_dynamic_scope
        )
        self.compress = _env_flag("REMOTEFN_COMPRESS", self.compress)

        modules = os.getenv("REMOTEFN_REFERENCE_MODULES")
        if modules:
            self.reference_modules = [m.strip() for m in modules.split(",") if m.strip()]

        self.max_serialized_size_mb = int(
            os.getenv("REMOTEFN_MAX_SERIALIZED_SIZE_MB", self.max_serialized_size_mb)
        )

    @property
    def max_serialized_size_bytes(self) -> int:
        return self.max_serialized_size_mb * 1024 * 1024

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "reference_stdlib": self.reference_stdlib,
            "reference_installed": self.reference_installed,
            "reference_modules": list(self.reference_modules),
            "extra_resource_types": list(self.extra_resource_types),
            "reject_dynamic_scope": self.reject_dynamic_scope,
            "max_serialized_size_mb": self.max_serialized_size_mb,
            "compress": self.compress,
        }

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "PackagingConfig":
        """Create configuration from dictionary."""
        return cls(**config_dict)

    @classmethod
    def from_file(cls, config_path: str) -> "PackagingConfig":
        """Load configuration from YAML file."""
        import yaml

        with open(config_path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        return cls.from_dict(config_dict)

    def validate(self) -> None:
        """Validate configuration values."""
        if self.max_serialized_size_mb <= 0:
            raise ConfigurationError(
                f"Invalid max_serialized_size_mb: {self.max_serialized_size_mb}"
            )

        for module_name in self.reference_modules:
            if not module_name or module_name.startswith(".") or module_name == "__main__":
                raise ConfigurationError(f"Invalid reference module: {module_name!r}")

        for type_path in self.extra_resource_types:
            if "." not in type_path:
                raise ConfigurationError(
                    f"Resource type must be a dotted path 'module.Type': {type_path!r}"
                )


# Global configuration instance
_config: Optional[PackagingConfig] = None


def get_config() -> PackagingConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = PackagingConfig()
        _config.validate()
    return _config


def set_config(config: PackagingConfig) -> None:
    """Set the global configuration instance."""
    global _config
    config.validate()
    _config = config
