"""
Contracts shared between nodes, converters and the execution context.

`NodeOptions` mirrors the node option bundle of the middleware; the record
types describe the raw sensor data handed to the streamers by the camera
pipeline. Records are validated once at construction and treated as
immutable afterwards.
"""

from __future__ import annotations

import enum
import time
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .messages import Point


class NodeOptions(BaseModel):
    """Construction options for a node (name/namespace remaps, params, IPC)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    node_name: str = Field(default="", description="Overrides the node name when set.")
    ns: str = Field(default="", description="Overrides the node namespace when set.")
    param_file: str = Field(default="", description="YAML parameter file to load.")
    remappings: dict[str, str] = Field(
        default_factory=dict, description="Topic remapping rules, `from -> to`."
    )
    use_intra_process_comms: bool = Field(default=False)
    parameter_overrides: dict[str, Any] = Field(default_factory=dict)
    extra_arguments: list[str] = Field(
        default_factory=list, description="Additional raw node arguments."
    )

    def arguments(self) -> list[str]:
        """Return the node-local argument list encoding these options."""
        args: list[str] = []
        if self.param_file:
            args += ["--ros-args", "--params-file", self.param_file]
        if self.node_name:
            args += ["--ros-args", "--remap", f"__node:={self.node_name}"]
        if self.ns:
            args += ["--ros-args", "--remap", f"__ns:={self.ns}"]
        if self.remappings:
            if "--ros-args" not in args:
                args.append("--ros-args")
            for source, target in self.remappings.items():
                args += ["--remap", f"{source}:={target}"]
        args += self.extra_arguments
        return args


class RawImgFrameType(str, enum.Enum):
    """Pixel layout of an `ImgFrame` payload."""

    BGR888i = "BGR888i"
    RGB888i = "RGB888i"
    BGR888p = "BGR888p"
    RGB888p = "RGB888p"
    GRAY8 = "GRAY8"
    RAW8 = "RAW8"
    RAW16 = "RAW16"
    BITSTREAM = "BITSTREAM"


class CameraBoardSocket(str, enum.Enum):
    CAM_A = "CAM_A"
    CAM_B = "CAM_B"
    CAM_C = "CAM_C"
    CAM_D = "CAM_D"


class ImuSyncMethod(str, enum.Enum):
    """How accelerometer and gyroscope samples are paired into one message."""

    COPY = "COPY"
    LINEAR_INTERPOLATE_ACCEL = "LINEAR_INTERPOLATE_ACCEL"
    LINEAR_INTERPOLATE_GYRO = "LINEAR_INTERPOLATE_GYRO"


class SensorRecord(BaseModel):
    """Common timing metadata carried by every device record.

    Timestamps are seconds on the host monotonic clock; `timestamp_device`
    is the same instant as seen by the device clock.
    """

    model_config = ConfigDict(extra="allow", frozen=True, arbitrary_types_allowed=True)

    sequence_num: int = Field(default=0, ge=0)
    timestamp: float = Field(default_factory=time.monotonic)
    timestamp_device: float = Field(default_factory=time.monotonic)

    def stamp_seconds(self, use_device_timestamp: bool) -> float:
        return self.timestamp_device if use_device_timestamp else self.timestamp


class ImgFrame(SensorRecord):
    """Image frame. Raw frames carry an ndarray, bitstream frames carry bytes."""

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    type: RawImgFrameType = RawImgFrameType.BGR888i
    data: np.ndarray | bytes

    @field_validator("data")
    @classmethod
    def _check_payload(cls, value: np.ndarray | bytes) -> np.ndarray | bytes:
        if isinstance(value, np.ndarray) and value.size == 0:
            raise ValueError("frame data must not be empty")
        if isinstance(value, bytes) and not value:
            raise ValueError("frame data must not be empty")
        return value

    def raw_bytes(self) -> bytes:
        if isinstance(self.data, bytes):
            return self.data
        return self.data.tobytes()


class IMUReport(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    timestamp: float = Field(default_factory=time.monotonic)
    timestamp_device: float = Field(default_factory=time.monotonic)

    def stamp_seconds(self, use_device_timestamp: bool) -> float:
        return self.timestamp_device if use_device_timestamp else self.timestamp


class IMURotationReport(IMUReport):
    """Rotation vector as a unit quaternion (`x, y, z` are i, j, k)."""

    real: float = 1.0
    accuracy: float = 0.0


class IMUPacket(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    accelerometer: IMUReport | None = None
    gyroscope: IMUReport | None = None
    rotation_vector: IMURotationReport | None = None
    magnetic_field: IMUReport | None = None


class IMUData(SensorRecord):
    packets: list[IMUPacket] = Field(default_factory=list)


class ImgDetection(BaseModel):
    """2D detection with coordinates normalized to [0, 1]."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    label: int = 0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    xmin: float = 0.0
    ymin: float = 0.0
    xmax: float = 0.0
    ymax: float = 0.0


class SpatialImgDetection(ImgDetection):
    spatial_coordinates: Point = Field(
        default_factory=Point, description="Object position in millimetres."
    )


class ImgDetections(SensorRecord):
    detections: list[ImgDetection] = Field(default_factory=list)


class SpatialImgDetections(SensorRecord):
    detections: list[SpatialImgDetection] = Field(default_factory=list)


class TrackedFeatureRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: int = 0
    age: int = 0
    harris_score: float = 0.0
    tracking_error: float = 0.0
    x: float = 0.0
    y: float = 0.0


class TrackedFeaturesData(SensorRecord):
    features: list[TrackedFeatureRecord] = Field(default_factory=list)


class SocketCalibration(BaseModel):
    """Intrinsics of one camera sensor at its native resolution."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    intrinsics: list[list[float]] = Field(description="3x3 camera matrix.")
    distortion: list[float] = Field(default_factory=list)

    @field_validator("intrinsics")
    @classmethod
    def _check_matrix(cls, value: list[list[float]]) -> list[list[float]]:
        if len(value) != 3 or any(len(row) != 3 for row in value):
            raise ValueError("intrinsics must be a 3x3 matrix")
        return value


class CalibrationHandler(BaseModel):
    """Device calibration keyed by board socket."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    cameras: dict[CameraBoardSocket, SocketCalibration] = Field(default_factory=dict)

    def camera_data(self, socket: CameraBoardSocket) -> SocketCalibration:
        try:
            return self.cameras[socket]
        except KeyError as exc:
            raise ValueError(f"No calibration stored for socket {socket.value}") from exc


__all__ = [
    "CalibrationHandler",
    "CameraBoardSocket",
    "IMUData",
    "IMUPacket",
    "IMUReport",
    "IMURotationReport",
    "ImgDetection",
    "ImgDetections",
    "ImgFrame",
    "ImuSyncMethod",
    "NodeOptions",
    "RawImgFrameType",
    "SensorRecord",
    "SocketCalibration",
    "SpatialImgDetection",
    "SpatialImgDetections",
    "TrackedFeatureRecord",
    "TrackedFeaturesData",
]
