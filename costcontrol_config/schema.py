"""
Configuration Schema (``costcontrol_config.schema``).

Frozen dataclasses describing the effective configuration.  Every value
has a default, so an empty YAML document is a valid configuration.
Range checks run in ``__post_init__`` and raise ``ValueError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings handed to ``init_engine_from_url``."""

    url: str = "sqlite:///costcontrol.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10
    pool_timeout: int = 30

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must not be empty")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"database.max_overflow must be >= 0, got {self.max_overflow}")


@dataclass(frozen=True)
class ReconciliationSettings:
    """
    Retry, timeout and paging behaviour of ReconciliationService.

    max_attempts counts the first try: 3 means up to two retries after a
    ConcurrencyConflictError.
    """

    max_attempts: int = 3
    timeout_seconds: float = 30.0
    page_size: int = 500
    retry_backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"reconciliation.max_attempts must be >= 1, got {self.max_attempts}")
        if self.timeout_seconds <= 0:
            raise ValueError(
                f"reconciliation.timeout_seconds must be > 0, got {self.timeout_seconds}"
            )
        if self.page_size < 1:
            raise ValueError(f"reconciliation.page_size must be >= 1, got {self.page_size}")
        if self.retry_backoff_seconds < 0:
            raise ValueError(
                "reconciliation.retry_backoff_seconds must be >= 0, "
                f"got {self.retry_backoff_seconds}"
            )


@dataclass(frozen=True)
class PlanningSettings:
    """Budget planning defaults."""

    # Split total_budget evenly across categories when activating a project
    # without explicit allocations.  When False, categories start at 0.
    even_split_on_activation: bool = True


@dataclass(frozen=True)
class CostControlConfig:
    """The effective configuration returned by ``get_active_config()``."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    planning: PlanningSettings = field(default_factory=PlanningSettings)
    source: str = "<defaults>"
    checksum: str = ""
