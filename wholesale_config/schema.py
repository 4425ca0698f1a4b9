"""
Wholesale engine configuration schema.

Every setting the engine reads at runtime is a field on one of these frozen
dataclasses.  The loader builds them from ``defaults.yaml``, an optional
override file and the process environment; nothing else in the repository
reads YAML or environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///wholesale.db"
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False


# ---------------------------------------------------------------------------
# Commerce platform
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlatformSettings:
    """Connection and retry settings for the external commerce platform."""

    store_domain: str = ""
    access_token: str = ""
    api_version: str = "2024-01"
    auth_header: str = "X-Shopify-Access-Token"
    timeout_seconds: float = 30.0
    max_attempts: int = 4  # first call + 3 retries
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.store_domain and self.access_token)

    @property
    def base_url(self) -> str:
        domain = self.store_domain.removeprefix("https://").rstrip("/")
        return f"https://{domain}/admin/api/{self.api_version}"


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconciliationSettings:
    recency_days: int = 90
    batch_limit: int = 50
    order_delay_seconds: float = 0.2
    rate_limit_pause_seconds: float = 2.0


@dataclass(frozen=True)
class OrderNumberSettings:
    immediate_prefix: str = "A"
    pre_order_prefix: str = "P"
    start: int = 10001


@dataclass(frozen=True)
class LifecycleSettings:
    trash_retention_days: int = 30


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AppConfig:
    """Effective configuration for one process."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    platform: PlatformSettings = field(default_factory=PlatformSettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    order_numbers: OrderNumberSettings = field(default_factory=OrderNumberSettings)
    lifecycle: LifecycleSettings = field(default_factory=LifecycleSettings)
    checksum: str = ""
