"""Metrics exporter for Prometheus.

Counts poll outcomes per method, alerts raised and flush results, and keeps
per-interface throughput gauges. Metrics can be scraped from a local HTTP
endpoint or pushed to a Pushgateway after each alert pass.
"""

from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    push_to_gateway,
    start_http_server,
)

from config import get_logger

logger = get_logger(__name__)


class MetricsExporter:
    """Prometheus metrics for the monitoring core.

    Each exporter owns its registry so several instances (tests, a second
    service in the same process) do not collide.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, job: str = "router_monitor"):
        self.registry = registry or CollectorRegistry()
        self.job = job

        self.polls = Counter(
            "routermon_polls_total", "Device polls by outcome and method",
            ["outcome", "method"], registry=self.registry,
        )
        self.poll_duration = Histogram(
            "routermon_poll_duration_seconds", "Per-device poll duration",
            registry=self.registry,
        )
        self.devices_connected = Gauge(
            "routermon_devices_connected", "Devices with a working protocol",
            registry=self.registry,
        )
        self.devices_reachable = Gauge(
            "routermon_devices_reachable", "Devices answering on a TCP port",
            registry=self.registry,
        )
        self.rx_rate = Gauge(
            "routermon_interface_rx_bytes_per_second", "Latest RX rate",
            ["device", "interface"], registry=self.registry,
        )
        self.tx_rate = Gauge(
            "routermon_interface_tx_bytes_per_second", "Latest TX rate",
            ["device", "interface"], registry=self.registry,
        )
        self.alerts = Counter(
            "routermon_alerts_total", "Alerts created",
            ["kind", "severity"], registry=self.registry,
        )
        self.flushed_samples = Counter(
            "routermon_flushed_samples_total", "Samples written to durable storage",
            registry=self.registry,
        )
        self.flush_failures = Counter(
            "routermon_flush_failures_total", "Per-device flush failures",
            registry=self.registry,
        )
        logger.debug("MetricsExporter initialized")

    # === Recording ===

    def record_poll(self, success: bool, method: str, duration_seconds: float) -> None:
        self.polls.labels(outcome="success" if success else "failure", method=method).inc()
        self.poll_duration.observe(duration_seconds)

    def record_device_counts(self, connected: int, reachable: int) -> None:
        self.devices_connected.set(connected)
        self.devices_reachable.set(reachable)

    def record_rates(self, device_id: str, interface_name: str, rx: float, tx: float) -> None:
        self.rx_rate.labels(device=device_id, interface=interface_name).set(rx)
        self.tx_rate.labels(device=device_id, interface=interface_name).set(tx)

    def record_alert(self, kind: str, severity: str) -> None:
        self.alerts.labels(kind=kind, severity=severity).inc()

    def record_flush(self, written: int, failed: int) -> None:
        if written:
            self.flushed_samples.inc(written)
        if failed:
            self.flush_failures.inc(failed)

    # === Export ===

    def start_http(self, port: int, addr: str = "0.0.0.0") -> None:
        """Serve ``/metrics`` on a background thread."""
        start_http_server(port, addr=addr, registry=self.registry)
        logger.info(f"Prometheus metrics served on {addr}:{port}")

    def push(self, gateway_url: str) -> bool:
        """Push the registry to a Pushgateway.

        Returns:
            True if the push succeeded, False otherwise (errors are logged).
        """
        if not gateway_url:
            return False
        try:
            push_to_gateway(gateway_url, job=self.job, registry=self.registry)
            logger.debug("Metrics pushed to Prometheus Pushgateway")
            return True
        except Exception as e:
            logger.error(f"Prometheus push error: {e}")
            return False
