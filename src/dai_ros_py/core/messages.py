"""
Wire message schemas published by nodes and streamers.

The field layout follows the ROS 2 interface definitions (`std_msgs`,
`sensor_msgs`, `vision_msgs`, `depthai_ros_msgs`) so downstream consumers can
map them one-to-one. Messages are frozen; use `model_copy(update=...)` to
derive a variant.
"""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field


def _identity3() -> list[float]:
    return [1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0]


def _zeros(count: int) -> list[float]:
    return [0.0] * count


class BaseMessage(BaseModel):
    """Base class for all wire messages."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class Time(BaseMessage):
    sec: int = 0
    nanosec: int = Field(default=0, ge=0, lt=1_000_000_000)

    @classmethod
    def from_seconds(cls, seconds: float) -> Time:
        frac, whole = math.modf(seconds)
        nanosec = int(round(frac * 1e9))
        sec = int(whole)
        if nanosec < 0:
            sec -= 1
            nanosec += 1_000_000_000
        if nanosec >= 1_000_000_000:
            sec += 1
            nanosec -= 1_000_000_000
        return cls(sec=sec, nanosec=nanosec)

    def to_seconds(self) -> float:
        return self.sec + self.nanosec / 1e9


class Header(BaseMessage):
    stamp: Time = Field(default_factory=Time)
    frame_id: str = ""


class String(BaseMessage):
    data: str = ""


class Point(BaseMessage):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class Point2D(BaseMessage):
    x: float = 0.0
    y: float = 0.0


class Vector3(BaseMessage):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class Quaternion(BaseMessage):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0


class Pose(BaseMessage):
    position: Point = Field(default_factory=Point)
    orientation: Quaternion = Field(default_factory=Quaternion)


class Image(BaseMessage):
    """Uncompressed image (`sensor_msgs/Image`)."""

    header: Header = Field(default_factory=Header)
    height: int = 0
    width: int = 0
    encoding: str = ""
    is_bigendian: int = 0
    step: int = Field(default=0, description="Full row length in bytes.")
    data: bytes = b""


class CompressedImage(BaseMessage):
    """Compressed image (`sensor_msgs/CompressedImage`)."""

    header: Header = Field(default_factory=Header)
    format: str = "jpeg"
    data: bytes = b""


class CameraInfo(BaseMessage):
    """Camera calibration (`sensor_msgs/CameraInfo`)."""

    header: Header = Field(default_factory=Header)
    height: int = 0
    width: int = 0
    distortion_model: str = "plumb_bob"
    d: list[float] = Field(default_factory=list)
    k: list[float] = Field(default_factory=lambda: _zeros(9))
    r: list[float] = Field(default_factory=_identity3)
    p: list[float] = Field(default_factory=lambda: _zeros(12))


class Imu(BaseMessage):
    """Inertial measurement (`sensor_msgs/Imu`).

    `orientation_covariance[0] == -1` marks the orientation as unavailable.
    """

    header: Header = Field(default_factory=Header)
    orientation: Quaternion = Field(default_factory=Quaternion)
    orientation_covariance: list[float] = Field(default_factory=lambda: _zeros(9))
    angular_velocity: Vector3 = Field(default_factory=Vector3)
    angular_velocity_covariance: list[float] = Field(default_factory=lambda: _zeros(9))
    linear_acceleration: Vector3 = Field(default_factory=Vector3)
    linear_acceleration_covariance: list[float] = Field(default_factory=lambda: _zeros(9))


class MagneticField(BaseMessage):
    header: Header = Field(default_factory=Header)
    magnetic_field: Vector3 = Field(default_factory=Vector3)
    magnetic_field_covariance: list[float] = Field(default_factory=lambda: _zeros(9))


class ObjectHypothesis(BaseMessage):
    class_id: str = ""
    score: float = 0.0


class ObjectHypothesisWithPose(BaseMessage):
    hypothesis: ObjectHypothesis = Field(default_factory=ObjectHypothesis)
    pose: Pose = Field(default_factory=Pose)


class BoundingBox2D(BaseMessage):
    center: Point2D = Field(default_factory=Point2D)
    size_x: float = 0.0
    size_y: float = 0.0


class BoundingBox3D(BaseMessage):
    center: Pose = Field(default_factory=Pose)
    size: Vector3 = Field(default_factory=Vector3)


class Detection2D(BaseMessage):
    header: Header = Field(default_factory=Header)
    results: list[ObjectHypothesisWithPose] = Field(default_factory=list)
    bbox: BoundingBox2D = Field(default_factory=BoundingBox2D)
    id: str = ""


class Detection2DArray(BaseMessage):
    header: Header = Field(default_factory=Header)
    detections: list[Detection2D] = Field(default_factory=list)


class Detection3D(BaseMessage):
    header: Header = Field(default_factory=Header)
    results: list[ObjectHypothesisWithPose] = Field(default_factory=list)
    bbox: BoundingBox3D = Field(default_factory=BoundingBox3D)
    id: str = ""


class Detection3DArray(BaseMessage):
    header: Header = Field(default_factory=Header)
    detections: list[Detection3D] = Field(default_factory=list)


class TrackedFeature(BaseMessage):
    header: Header = Field(default_factory=Header)
    position: Point2D = Field(default_factory=Point2D)
    id: int = 0
    age: int = 0
    harris_score: float = 0.0
    tracking_error: float = 0.0


class TrackedFeatures(BaseMessage):
    header: Header = Field(default_factory=Header)
    features: list[TrackedFeature] = Field(default_factory=list)


__all__ = [
    "BaseMessage",
    "BoundingBox2D",
    "BoundingBox3D",
    "CameraInfo",
    "CompressedImage",
    "Detection2D",
    "Detection2DArray",
    "Detection3D",
    "Detection3DArray",
    "Header",
    "Image",
    "Imu",
    "MagneticField",
    "ObjectHypothesis",
    "ObjectHypothesisWithPose",
    "Point",
    "Point2D",
    "Pose",
    "Quaternion",
    "String",
    "Time",
    "TrackedFeature",
    "TrackedFeatures",
    "Vector3",
]
