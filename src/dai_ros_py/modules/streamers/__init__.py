"""Stream adapters republishing converted device records on a node."""

from .base import Converter, StreamAdapter, TimestampMapper
from .detection import (
    DetectionStreamer,
    ImgDetectionConverter,
    SpatialDetectionConverter,
    SpatialDetectionStreamer,
)
from .image import ImageConverter, ImgStreamer
from .imu import ImuConverter, ImuStreamer
from .tracked_features import TrackedFeaturesConverter, TrackedFeaturesStreamer

__all__ = [
    "Converter",
    "DetectionStreamer",
    "ImageConverter",
    "ImgDetectionConverter",
    "ImgStreamer",
    "ImuConverter",
    "ImuStreamer",
    "SpatialDetectionConverter",
    "SpatialDetectionStreamer",
    "StreamAdapter",
    "TimestampMapper",
    "TrackedFeaturesConverter",
    "TrackedFeaturesStreamer",
]
