"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PipelineConfig:
    """Ingestion settings for the core pipeline."""

    min_message_length: int = 3


@dataclass(frozen=True)
class ClassifierConfig:
    """Throttling and timeout settings for the classifier gateway."""

    min_interval_seconds: float = 1.0
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class ConnectionConfig:
    """Timeouts, ceilings and session-clearing policy for the transport."""

    max_reconnect_attempts: int = 3
    session_clear_threshold: int = 3
    auto_clear_session: bool = True
    retry_delay_seconds: float = 3.0
    max_retry_delay_seconds: float = 15.0
    connect_timeout_seconds: float = 180.0
    ready_timeout_seconds: float = 240.0
    destroy_timeout_seconds: float = 10.0
    auth_failure_delay_seconds: float = 2.0
    disconnect_delay_seconds: float = 3.0
    max_session_age_days: int = 30
    max_hours_without_success: int = 24


@dataclass(frozen=True)
class BackfillConfig:
    """Startup scan settings."""

    enabled: bool = True
    max_lookback_days: int = 3
    fetch_limit: int = 50
    max_fetch_rounds: int = 20
    scan_timeout_seconds: float = 60.0
