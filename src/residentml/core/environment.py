"""
Environment configuration for the residentml runtime.

The RESIDENTML_ENV environment variable follows the usual pattern
(RAILS_ENV, FLASK_ENV, NODE_ENV):

    - development (default): island failure details are shown in the fallback UI
    - test: details hidden unless the manifest enables them
    - production: details always hidden unless explicitly forced

Usage:
    from residentml.core.environment import get_residentml_env, should_show_error_details

    if should_show_error_details(manifest.hydration.show_error_details):
        ...
"""

from __future__ import annotations

import logging
import os
from enum import StrEnum

logger = logging.getLogger(__name__)


class ResidentEnv(StrEnum):
    """Runtime environment values."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


_DEFAULT_ENV = ResidentEnv.DEVELOPMENT

RESIDENTML_ENV_VAR = "RESIDENTML_ENV"


def get_residentml_env() -> ResidentEnv:
    """Get the current environment from RESIDENTML_ENV.

    Returns:
        ResidentEnv: development, test, or production.
        Defaults to development if RESIDENTML_ENV is not set or invalid.

    Examples:
        >>> import os
        >>> os.environ["RESIDENTML_ENV"] = "production"
        >>> get_residentml_env()
        <ResidentEnv.PRODUCTION: 'production'>
    """
    env_value = os.environ.get(RESIDENTML_ENV_VAR, "").lower().strip()

    if env_value in ("production", "prod"):
        return ResidentEnv.PRODUCTION
    if env_value in ("test", "testing"):
        return ResidentEnv.TEST
    if env_value in ("development", "dev", ""):
        return ResidentEnv.DEVELOPMENT

    logger.warning(
        "Unknown RESIDENTML_ENV value '%s'. "
        "Valid values: development, test, production. Defaulting to development.",
        env_value,
    )
    return _DEFAULT_ENV


def is_production() -> bool:
    """Check if running in production environment."""
    return get_residentml_env() == ResidentEnv.PRODUCTION


def is_development() -> bool:
    """Check if running in development environment."""
    return get_residentml_env() == ResidentEnv.DEVELOPMENT


def should_show_error_details(manifest_override: bool | None = None) -> bool:
    """Determine if island fallbacks should include the underlying error.

    Resolution order:
    1. If manifest_override is explicitly set (True/False), use it
    2. Otherwise only development shows details

    Args:
        manifest_override: Explicit setting from residentml.toml [hydration].
            None means "use environment default".
    """
    if manifest_override is not None:
        return manifest_override
    return is_development()
