"""
wholesale_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration.  Sits beside ``wholesale_kernel`` and below
    ``wholesale_services``.  The kernel never imports from
    ``wholesale_config``; the services layer passes the relevant values
    (order-number prefixes, retention days) down as plain arguments.

Failure modes:
    - ``FileNotFoundError`` -- an explicit override file does not exist.
    - ``ValueError`` -- unknown keys or wrongly typed values.

Audit relevance:
    Every successful ``get_active_config()`` call logs a
    ``wholesale_config_loaded`` entry with the checksum of the effective
    settings and whether the platform integration is configured.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from wholesale_config.loader import (
    DEFAULTS_PATH,
    apply_environment,
    compute_checksum,
    load_yaml_file,
    merge,
    parse_config,
)
from wholesale_config.schema import (
    AppConfig,
    DatabaseSettings,
    LifecycleSettings,
    OrderNumberSettings,
    PlatformSettings,
    ReconciliationSettings,
)
from wholesale_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "WHOLESALE_CONFIG"


def get_active_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """
    The ONLY public configuration entrypoint.

    Precedence (lowest first): packaged defaults, the override file
    (``path`` or ``$WHOLESALE_CONFIG``), environment variables.
    """
    environ = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)

    override_path = path or environ.get(CONFIG_PATH_ENV)
    if override_path:
        data = merge(data, load_yaml_file(Path(override_path)))

    config = parse_config(apply_environment(data, environ))
    _logger.info(
        "wholesale_config_loaded",
        extra={
            "checksum": config.checksum,
            "override_path": str(override_path) if override_path else None,
            "platform_configured": config.platform.is_configured,
            "api_version": config.platform.api_version,
        },
    )
    return config


__all__ = [
    "AppConfig",
    "DatabaseSettings",
    "LifecycleSettings",
    "OrderNumberSettings",
    "PlatformSettings",
    "ReconciliationSettings",
    "compute_checksum",
    "get_active_config",
]
