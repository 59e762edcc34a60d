"""
Detection streaming: `ImgDetections` -> `Detection2DArray` and
`SpatialImgDetections` -> `Detection3DArray`.

Device detections are normalized to [0, 1]. Unless `normalized` is set the
bounding boxes are scaled to `width` x `height` pixels. Spatial coordinates
arrive in millimetres and are published in metres.
"""

from __future__ import annotations

from ...core.contracts import ImgDetection, ImgDetections, SpatialImgDetections
from ...core.messages import (
    BaseMessage,
    BoundingBox2D,
    BoundingBox3D,
    Detection2D,
    Detection2DArray,
    Detection3D,
    Detection3DArray,
    Header,
    ObjectHypothesis,
    ObjectHypothesisWithPose,
    Point,
    Point2D,
    Pose,
    Vector3,
)
from ...core.node import Node
from .base import QUEUE_DEPTH, StreamAdapter, TimestampMapper

MILLIMETRES_PER_METRE = 1000.0


class _BoxScaler:
    def __init__(self, width: int, height: int, normalized: bool) -> None:
        self.width = width
        self.height = height
        self.normalized = normalized

    def box(self, detection: ImgDetection) -> tuple[float, float, float, float]:
        """Return (center_x, center_y, size_x, size_y)."""
        scale_x, scale_y = (1.0, 1.0) if self.normalized else (self.width, self.height)
        xmin, xmax = detection.xmin * scale_x, detection.xmax * scale_x
        ymin, ymax = detection.ymin * scale_y, detection.ymax * scale_y
        return (xmin + xmax) / 2, (ymin + ymax) / 2, xmax - xmin, ymax - ymin


class ImgDetectionConverter:
    def __init__(
        self,
        frame_name: str,
        width: int,
        height: int,
        normalized: bool = False,
        get_base_device_timestamp: bool = False,
        *,
        timestamps: TimestampMapper | None = None,
    ) -> None:
        self.frame_name = frame_name
        self.scaler = _BoxScaler(width, height, normalized)
        self.get_base_device_timestamp = get_base_device_timestamp
        self.timestamps = timestamps or TimestampMapper()

    def convert(self, record: ImgDetections) -> list[BaseMessage]:
        header = self.timestamps.header(
            self.frame_name, record.stamp_seconds(self.get_base_device_timestamp)
        )
        detections = []
        for detection in record.detections:
            cx, cy, sx, sy = self.scaler.box(detection)
            detections.append(
                Detection2D(
                    header=header,
                    results=[_hypothesis(detection)],
                    bbox=BoundingBox2D(center=Point2D(x=cx, y=cy), size_x=sx, size_y=sy),
                )
            )
        return [Detection2DArray(header=header, detections=detections)]


class SpatialDetectionConverter(ImgDetectionConverter):
    def convert(self, record: SpatialImgDetections) -> list[BaseMessage]:
        header: Header = self.timestamps.header(
            self.frame_name, record.stamp_seconds(self.get_base_device_timestamp)
        )
        detections = []
        for detection in record.detections:
            cx, cy, sx, sy = self.scaler.box(detection)
            coords = detection.spatial_coordinates
            position = Point(
                x=coords.x / MILLIMETRES_PER_METRE,
                y=coords.y / MILLIMETRES_PER_METRE,
                z=coords.z / MILLIMETRES_PER_METRE,
            )
            detections.append(
                Detection3D(
                    header=header,
                    results=[_hypothesis(detection, Pose(position=position))],
                    bbox=BoundingBox3D(
                        center=Pose(position=Point(x=cx, y=cy)),
                        size=Vector3(x=sx, y=sy),
                    ),
                )
            )
        return [Detection3DArray(header=header, detections=detections)]


def _hypothesis(detection: ImgDetection, pose: Pose | None = None) -> ObjectHypothesisWithPose:
    return ObjectHypothesisWithPose(
        hypothesis=ObjectHypothesis(class_id=str(detection.label), score=detection.confidence),
        pose=pose or Pose(),
    )


class DetectionStreamer(StreamAdapter):
    def __init__(
        self,
        node: Node,
        topic_name: str,
        frame_name: str,
        width: int,
        height: int,
        normalized: bool = False,
        get_base_device_timestamp: bool = False,
    ) -> None:
        super().__init__(
            node,
            ImgDetectionConverter(
                frame_name, width, height, normalized, get_base_device_timestamp
            ),
        )
        self.add_channel(
            Detection2DArray, node.create_publisher(Detection2DArray, topic_name, QUEUE_DEPTH)
        )


class SpatialDetectionStreamer(StreamAdapter):
    def __init__(
        self,
        node: Node,
        topic_name: str,
        frame_name: str,
        width: int,
        height: int,
        normalized: bool = False,
        get_base_device_timestamp: bool = False,
    ) -> None:
        super().__init__(
            node,
            SpatialDetectionConverter(
                frame_name, width, height, normalized, get_base_device_timestamp
            ),
        )
        self.add_channel(
            Detection3DArray, node.create_publisher(Detection3DArray, topic_name, QUEUE_DEPTH)
        )


__all__ = [
    "DetectionStreamer",
    "ImgDetectionConverter",
    "SpatialDetectionConverter",
    "SpatialDetectionStreamer",
]
