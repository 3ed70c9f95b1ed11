"""
OEE Monitor - Prometheus Metrics

Counters and histograms for the OEE engine, exported on /metrics through the
default registry.
"""

from prometheus_client import Counter, Histogram

oee_calculations_total = Counter(
    "oee_monitor_calculations_total",
    "Total number of OEE calculations",
    ["machine_id"]
)

oee_value = Histogram(
    "oee_monitor_oee_percent",
    "Distribution of computed OEE values",
    buckets=[10, 20, 30, 40, 50, 60, 65, 70, 80, 85, 90, 95, 100]
)

history_write_failures_total = Counter(
    "oee_monitor_history_write_failures_total",
    "Total number of OEE history entries that could not be written",
    ["machine_id"]
)

alerts_emitted_total = Counter(
    "oee_monitor_alerts_emitted_total",
    "Total number of alert events emitted",
    ["kind", "severity"]
)

alert_dispatch_failures_total = Counter(
    "oee_monitor_alert_dispatch_failures_total",
    "Total number of failed alert sink deliveries",
    ["sink"]
)


def record_calculation(machine_id: str, oee: float) -> None:
    oee_calculations_total.labels(machine_id=machine_id).inc()
    oee_value.observe(oee)


def record_history_failure(machine_id: str) -> None:
    history_write_failures_total.labels(machine_id=machine_id).inc()


def record_alerts(events) -> None:
    for event in events:
        alerts_emitted_total.labels(kind=str(event.kind), severity=str(event.severity)).inc()


def record_dispatch_results(results) -> None:
    for sink, delivered in results.items():
        if not delivered:
            alert_dispatch_failures_total.labels(sink=sink).inc()
