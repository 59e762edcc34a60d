"""Status modules reporting on a running execution context."""

from .prometheus_exporter import PrometheusExporter

__all__ = ["PrometheusExporter"]
