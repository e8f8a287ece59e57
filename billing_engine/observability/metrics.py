"""
Billing metrics.

Two modes share one interface: with metrics disabled every recorder is a
no-op, with metrics enabled they feed Prometheus counters held in the
manager's own registry and exposed at ``/metrics``.
"""

import typing as t

from flask import Flask, Response


class MetricsManager:
    """Central manager for billing metrics."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self.registry = None
        self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        if self.enabled:
            from prometheus_client import CollectorRegistry, Counter

            self.registry = CollectorRegistry()
            self.renewals_total = Counter(
                "billing_renewals_total",
                "Renewal attempts by outcome",
                ["outcome"],
                registry=self.registry,
            )
            self.payment_attempts_total = Counter(
                "billing_payment_attempts_total",
                "Gateway charge attempts",
                ["gateway", "status"],
                registry=self.registry,
            )
            self.task_executions_total = Counter(
                "billing_task_executions_total",
                "Background task executions",
                ["task_name", "status"],
                registry=self.registry,
            )
        else:
            self.renewals_total = _DummyMetric()
            self.payment_attempts_total = _DummyMetric()
            self.task_executions_total = _DummyMetric()

    def record_renewal(self, outcome: str) -> None:
        self.renewals_total.labels(outcome=outcome).inc()

    def record_payment_attempt(self, gateway: t.Optional[str], status: str) -> None:
        self.payment_attempts_total.labels(gateway=gateway or "none", status=status).inc()

    def record_task(self, task_name: str, status: str) -> None:
        self.task_executions_total.labels(task_name=task_name, status=status).inc()

    def render(self) -> Response:
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

        return Response(generate_latest(self.registry), mimetype=CONTENT_TYPE_LATEST)


class _DummyMetric:
    """Mimics the Prometheus metric interface and records nothing."""

    def labels(self, **labels: str) -> "_DummyMetric":
        return self

    def inc(self, amount: float = 1) -> None:
        pass


def register_metrics(app: Flask, manager: MetricsManager) -> None:
    """Expose ``/metrics`` when collection is enabled."""
    if not manager.enabled:
        return

    @app.route("/metrics")
    def metrics():
        return manager.render()
