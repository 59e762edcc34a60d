"""
Expose execution context metrics via Prometheus.

The exporter registers a collector that reads the context's statistics at
scrape time (registered nodes, loaded plugins, executed and failed callbacks,
published messages per topic), so nothing has to push updates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

from prometheus_client import CollectorRegistry, start_http_server
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from ...core.context import ExecutionContext
from ...core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _default_server_factory(
    port: int, addr: str, registry: CollectorRegistry
) -> object:  # pragma: no cover - thin wrapper
    return start_http_server(port=port, addr=addr, registry=registry)


class ExecutionContextCollector(Collector):
    def __init__(self, context: ExecutionContext, *, namespace: str = "dai_ros_py") -> None:
        self._context = context
        self._namespace = namespace

    def _name(self, suffix: str) -> str:
        return f"{self._namespace}_{suffix}"

    def collect(self) -> Iterator[Metric]:
        stats = self._context.stats()
        yield GaugeMetricFamily(
            self._name("nodes"), "Nodes registered with the executor.", value=stats["nodes"]
        )
        yield GaugeMetricFamily(
            self._name("plugins"),
            "Composable nodes loaded from plugin libraries.",
            value=stats["plugins"],
        )
        yield CounterMetricFamily(
            self._name("callbacks_executed"),
            "Callbacks that returned normally.",
            value=stats["callbacks_executed"],
        )
        yield CounterMetricFamily(
            self._name("callbacks_failed"),
            "Callbacks that raised.",
            value=stats["callbacks_failed"],
        )
        published = CounterMetricFamily(
            self._name("published_messages"),
            "Messages published per topic.",
            labels=["topic"],
        )
        try:
            topic_stats = self._context.runtime.graph.stats()
        except ConfigurationError:
            topic_stats = {}
        for topic, count in sorted(topic_stats.items()):
            published.add_metric([topic], count)
        yield published


class PrometheusExporter:
    """Serve the metrics of one execution context over HTTP."""

    def __init__(
        self,
        context: ExecutionContext,
        *,
        registry: CollectorRegistry | None = None,
        server_factory: Callable[[int, str, CollectorRegistry], object] | None = None,
        port: int = 9093,
        addr: str = "127.0.0.1",
        namespace: str = "dai_ros_py",
    ) -> None:
        self._registry = registry or CollectorRegistry()
        self._server_factory = server_factory or _default_server_factory
        self._server: object | None = None
        self._port = port
        self._addr = addr
        self._collector = ExecutionContextCollector(context, namespace=namespace)
        self._registry.register(self._collector)
        self._registered = True

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def start(self) -> None:
        if self._server is None:
            self._server = self._server_factory(self._port, self._addr, self._registry)
            logger.info("Started Prometheus exporter on %s:%d", self._addr, self._port)

    def stop(self) -> None:
        server = self._server
        # Recent prometheus_client releases return (server, thread).
        if isinstance(server, tuple):
            server = server[0]
        shutdown = getattr(server, "shutdown", None)
        if callable(shutdown):
            shutdown()
        self._server = None
        if self._registered:
            self._registry.unregister(self._collector)
            self._registered = False


__all__ = ["ExecutionContextCollector", "PrometheusExporter"]
