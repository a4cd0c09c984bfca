"""Configuration system for the voice chat services.

This module provides:
- Type-safe configuration classes driven by field definitions
- Environment variable overrides
- Validation with typed errors
"""

from .base import (
    BaseConfig,
    ConfigError,
    FieldDefinition,
    LoggingConfig,
    RequiredFieldError,
    ValidationError,
)
from .loader import load_config_from_env


__all__ = [
    # Base classes
    "BaseConfig",
    "ConfigError",
    "ValidationError",
    "RequiredFieldError",
    "FieldDefinition",
    # Core configurations
    "LoggingConfig",
    # Utilities
    "load_config_from_env",
]
