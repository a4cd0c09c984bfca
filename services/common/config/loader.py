"""Environment variable loading utilities for configuration system."""

from __future__ import annotations

from typing import Any, TypeVar

from services.common.structured_logging import get_logger


T = TypeVar("T")

logger = get_logger(__name__)


def load_config_from_env(config_class: type[T], **overrides: Any) -> T:
    """Instantiate ``config_class`` from the environment.

    Args:
        config_class: Configuration class to instantiate
        **overrides: Values used where no environment variable is set

    Returns:
        Configured instance
    """
    try:
        return config_class(**overrides)
    except Exception as exc:
        logger.error(
            "config.load_failed", config_class=config_class.__name__, error=str(exc)
        )
        raise
