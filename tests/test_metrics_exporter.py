"""Tests for the Prometheus metrics exporter."""

from unittest.mock import patch

from monitor.metrics_exporter import MetricsExporter


def _value(exporter, name, labels=None):
    return exporter.registry.get_sample_value(name, labels or {})


class TestMetricsExporter:
    """Tests for MetricsExporter."""

    def test_instances_do_not_collide(self):
        MetricsExporter()
        MetricsExporter()

    def test_record_poll(self):
        exporter = MetricsExporter()
        exporter.record_poll(True, "rest", 0.2)
        exporter.record_poll(False, "none", 1.0)

        assert _value(exporter, "routermon_polls_total",
                      {"outcome": "success", "method": "rest"}) == 1
        assert _value(exporter, "routermon_polls_total",
                      {"outcome": "failure", "method": "none"}) == 1
        assert _value(exporter, "routermon_poll_duration_seconds_count") == 2

    def test_device_counts_and_rates(self):
        exporter = MetricsExporter()
        exporter.record_device_counts(connected=2, reachable=3)
        exporter.record_rates("dev-1", "ether1", 1000, 50)

        assert _value(exporter, "routermon_devices_connected") == 2
        assert _value(exporter, "routermon_devices_reachable") == 3
        assert _value(exporter, "routermon_interface_rx_bytes_per_second",
                      {"device": "dev-1", "interface": "ether1"}) == 1000

    def test_alerts_and_flushes(self):
        exporter = MetricsExporter()
        exporter.record_alert("traffic", "warning")
        exporter.record_flush(10, 1)
        exporter.record_flush(0, 0)

        assert _value(exporter, "routermon_alerts_total",
                      {"kind": "traffic", "severity": "warning"}) == 1
        assert _value(exporter, "routermon_flushed_samples_total") == 10
        assert _value(exporter, "routermon_flush_failures_total") == 1

    def test_push_without_gateway(self):
        assert MetricsExporter().push("") is False

    def test_push(self):
        exporter = MetricsExporter()
        with patch("monitor.metrics_exporter.push_to_gateway") as push:
            assert exporter.push("http://gateway:9091") is True
        push.assert_called_once_with("http://gateway:9091", job="router_monitor",
                                     registry=exporter.registry)

    def test_push_error_is_logged(self):
        with patch("monitor.metrics_exporter.push_to_gateway", side_effect=OSError("refused")):
            assert MetricsExporter().push("http://gateway:9091") is False

    def test_start_http(self):
        exporter = MetricsExporter()
        with patch("monitor.metrics_exporter.start_http_server") as serve:
            exporter.start_http(9100)
        serve.assert_called_once_with(9100, addr="0.0.0.0", registry=exporter.registry)
