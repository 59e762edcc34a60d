"""
Modules layered on top of the core: stream adapters, bundled components and
status exporters.
"""

from .components import Consumer, Producer
from .status import PrometheusExporter
from .streamers import (
    DetectionStreamer,
    ImgStreamer,
    ImuStreamer,
    SpatialDetectionStreamer,
    StreamAdapter,
    TrackedFeaturesStreamer,
)

__all__ = [
    "Consumer",
    "DetectionStreamer",
    "ImgStreamer",
    "ImuStreamer",
    "Producer",
    "PrometheusExporter",
    "SpatialDetectionStreamer",
    "StreamAdapter",
    "TrackedFeaturesStreamer",
]
