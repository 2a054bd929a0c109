"""
Observability
=============

Logging and metrics for replicas.

Components:
- structured_logger: JSON logging with thread-local context
- metrics: Prometheus-compatible counters and gauges per table

Usage:
    from tablemirror.observability import ReplicationMetrics, configure_logging

    configure_logging(level="DEBUG", json_format=True)
    metrics = ReplicationMetrics()
    replicas = ReplicaSet(engine, settings, metrics=metrics)
"""

from .metrics import ReplicationMetrics, TableMetrics
from .structured_logger import JsonFormatter, configure_logging, log_context

__all__ = ["JsonFormatter", "ReplicationMetrics", "TableMetrics", "configure_logging", "log_context"]
