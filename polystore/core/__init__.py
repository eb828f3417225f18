# ==============================================================================
# CORE PACKAGE INITIALIZATION
# ==============================================================================
# Core utilities: Config, Exceptions, Logging, Metrics
# ==============================================================================

"""
Core Module
===========

- config: File + environment configuration resolution and validation
- exceptions: Structured error taxonomy
- logger: Text/JSON logging setup
- metrics: Counter sink for connection and query events
"""

from polystore.core.config import (
    BackendKind,
    CacheDescriptor,
    Config,
    DatabaseDescriptor,
    LoggerDescriptor,
    MongoDescriptor,
    ServerDescriptor,
    quick_config,
    resolve_config,
    validate_config,
)
from polystore.core.exceptions import (
    ConfigError,
    ConfigErrorKind,
    ConnectionError,
    ConnectionErrorKind,
    DiscoveryError,
    DiscoveryErrorKind,
    MigrationApplyError,
    PolystoreError,
    RetryAborted,
    RetryError,
    RetryExhausted,
)
from polystore.core.logger import get_logger, setup_logging
from polystore.core.metrics import MetricsCollector, MetricsSink, NullMetrics

__all__ = [
    "BackendKind",
    "CacheDescriptor",
    "Config",
    "DatabaseDescriptor",
    "LoggerDescriptor",
    "MongoDescriptor",
    "ServerDescriptor",
    "quick_config",
    "resolve_config",
    "validate_config",
    "ConfigError",
    "ConfigErrorKind",
    "ConnectionError",
    "ConnectionErrorKind",
    "DiscoveryError",
    "DiscoveryErrorKind",
    "MigrationApplyError",
    "PolystoreError",
    "RetryAborted",
    "RetryError",
    "RetryExhausted",
    "get_logger",
    "setup_logging",
    "MetricsCollector",
    "MetricsSink",
    "NullMetrics",
]
