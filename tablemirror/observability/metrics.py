"""
Replication Metrics
===================

Prometheus-compatible metrics for replicas.

Every metric is labelled by table:
- tablemirror_fetches_total: batch fetches issued
- tablemirror_rows_upserted_total / tablemirror_rows_deleted_total: dispatched records
- tablemirror_errors_total: fetch or dispatch failures
- tablemirror_watermark: current watermark cursor
- tablemirror_replica_rows: rows held in the replica
- tablemirror_fetch_duration_seconds: fetch latency
"""

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)


class ReplicationMetrics:
    """
    Owns the metric families of one replica set.

    Each instance registers into its own CollectorRegistry unless one is
    passed, so several replica sets (or tests) never collide.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "tablemirror"):
        self.registry = registry or CollectorRegistry()
        self.fetches = Counter(
            "fetches", "Batch fetches issued", ["table"],
            namespace=namespace, registry=self.registry
        )
        self.rows_upserted = Counter(
            "rows_upserted", "Records dispatched as upserts", ["table"],
            namespace=namespace, registry=self.registry
        )
        self.rows_deleted = Counter(
            "rows_deleted", "Records dispatched as deletes", ["table"],
            namespace=namespace, registry=self.registry
        )
        self.errors = Counter(
            "errors", "Fetch or dispatch failures", ["table"],
            namespace=namespace, registry=self.registry
        )
        self.watermark = Gauge(
            "watermark", "Current watermark cursor", ["table"],
            namespace=namespace, registry=self.registry
        )
        self.replica_rows = Gauge(
            "replica_rows", "Rows held in the replica", ["table"],
            namespace=namespace, registry=self.registry
        )
        self.fetch_duration = Histogram(
            "fetch_duration_seconds", "Duration of batch fetches", ["table"],
            namespace=namespace, registry=self.registry
        )
        self._tables: Dict[str, "TableMetrics"] = {}

    def for_table(self, table: str) -> "TableMetrics":
        if table not in self._tables:
            self._tables[table] = TableMetrics(self, table)
        return self._tables[table]

    def export(self) -> bytes:
        """Render all metrics in Prometheus text format."""
        return generate_latest(self.registry)


class TableMetrics:
    """Metric children bound to one table label."""

    def __init__(self, metrics: ReplicationMetrics, table: str):
        self.table = table
        self._fetches = metrics.fetches.labels(table=table)
        self._upserted = metrics.rows_upserted.labels(table=table)
        self._deleted = metrics.rows_deleted.labels(table=table)
        self._errors = metrics.errors.labels(table=table)
        self._watermark = metrics.watermark.labels(table=table)
        self._rows = metrics.replica_rows.labels(table=table)
        self._fetch_duration = metrics.fetch_duration.labels(table=table)

    def observe_fetch(self, seconds: float):
        self._fetches.inc()
        self._fetch_duration.observe(seconds)

    def record_batch(self, upserted: int, deleted: int, watermark):
        if upserted:
            self._upserted.inc(upserted)
        if deleted:
            self._deleted.inc(deleted)
        try:
            self._watermark.set(float(watermark))
        except (TypeError, ValueError):
            # non-numeric scalar watermarks are not exported
            pass

    def record_error(self):
        self._errors.inc()

    def set_replica_rows(self, count: int):
        self._rows.set(count)
