"""Tracked feature streaming: `TrackedFeaturesData` -> `TrackedFeatures`."""

from __future__ import annotations

from ...core.contracts import TrackedFeaturesData
from ...core.messages import BaseMessage, Point2D, TrackedFeature, TrackedFeatures
from ...core.node import Node
from .base import QUEUE_DEPTH, StreamAdapter, TimestampMapper


class TrackedFeaturesConverter:
    def __init__(
        self,
        frame_name: str,
        get_base_device_timestamp: bool = False,
        *,
        timestamps: TimestampMapper | None = None,
    ) -> None:
        self.frame_name = frame_name
        self.get_base_device_timestamp = get_base_device_timestamp
        self.timestamps = timestamps or TimestampMapper()

    def convert(self, record: TrackedFeaturesData) -> list[BaseMessage]:
        header = self.timestamps.header(
            self.frame_name, record.stamp_seconds(self.get_base_device_timestamp)
        )
        features = [
            TrackedFeature(
                header=header,
                position=Point2D(x=feature.x, y=feature.y),
                id=feature.id,
                age=feature.age,
                harris_score=feature.harris_score,
                tracking_error=feature.tracking_error,
            )
            for feature in record.features
        ]
        return [TrackedFeatures(header=header, features=features)]


class TrackedFeaturesStreamer(StreamAdapter):
    def __init__(
        self,
        node: Node,
        topic_name: str,
        frame_name: str,
        get_base_device_timestamp: bool = False,
    ) -> None:
        super().__init__(node, TrackedFeaturesConverter(frame_name, get_base_device_timestamp))
        self.add_channel(
            TrackedFeatures, node.create_publisher(TrackedFeatures, topic_name, QUEUE_DEPTH)
        )


__all__ = ["TrackedFeaturesConverter", "TrackedFeaturesStreamer"]
