"""
IMU streaming: one `IMUData` batch -> zero or more `Imu` messages.

Accelerometer and gyroscope run at different rates on the device, so the
converter pairs them according to `ImuSyncMethod`:

* `COPY` pairs the samples found in the same packet.
* `LINEAR_INTERPOLATE_ACCEL` emits one message per gyroscope sample with the
  acceleration linearly interpolated at its timestamp.
* `LINEAR_INTERPOLATE_GYRO` does the opposite.

Interpolation only uses samples of the current batch; base samples outside
the span of the interpolated sensor are dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ...core.contracts import IMUData, IMUPacket, IMUReport, ImuSyncMethod
from ...core.messages import BaseMessage, Imu, MagneticField, Quaternion, Vector3
from ...core.node import Node
from .base import QUEUE_DEPTH, StreamAdapter, TimestampMapper

logger = logging.getLogger(__name__)

MICROTESLA_TO_TESLA = 1e-6


def _diagonal(value: float) -> list[float]:
    return [value, 0.0, 0.0, 0.0, value, 0.0, 0.0, 0.0, value]


@dataclass(frozen=True)
class _Sample:
    stamp: float
    xyz: tuple[float, float, float]
    packet: IMUPacket


class ImuConverter:
    def __init__(
        self,
        frame_name: str,
        sync_mode: ImuSyncMethod = ImuSyncMethod.LINEAR_INTERPOLATE_ACCEL,
        linear_accel_cov: float = 0.0,
        angular_velocity_cov: float = 0.0,
        rotation_cov: float = 0.0,
        magnetic_field_cov: float = 0.0,
        enable_rotation: bool = False,
        enable_magn: bool = False,
        get_base_device_timestamp: bool = False,
        *,
        timestamps: TimestampMapper | None = None,
    ) -> None:
        self.frame_name = frame_name
        self.sync_mode = ImuSyncMethod(sync_mode)
        self.linear_accel_cov = linear_accel_cov
        self.angular_velocity_cov = angular_velocity_cov
        self.rotation_cov = rotation_cov
        self.magnetic_field_cov = magnetic_field_cov
        self.enable_rotation = enable_rotation
        self.enable_magn = enable_magn
        self.get_base_device_timestamp = get_base_device_timestamp
        self.timestamps = timestamps or TimestampMapper()

    def convert(self, data: IMUData) -> list[BaseMessage]:
        messages: list[BaseMessage] = list(self._imu_messages(data.packets))
        if self.enable_magn:
            messages.extend(self._magnetic_messages(data.packets))
        return messages

    def _samples(self, packets: list[IMUPacket], attr: str) -> list[_Sample]:
        samples = []
        for packet in packets:
            report: IMUReport | None = getattr(packet, attr)
            if report is None:
                continue
            samples.append(
                _Sample(
                    stamp=report.stamp_seconds(self.get_base_device_timestamp),
                    xyz=(report.x, report.y, report.z),
                    packet=packet,
                )
            )
        samples.sort(key=lambda sample: sample.stamp)
        return samples

    def _imu_messages(self, packets: list[IMUPacket]) -> list[Imu]:
        accel = self._samples(packets, "accelerometer")
        gyro = self._samples(packets, "gyroscope")
        if self.sync_mode is ImuSyncMethod.COPY:
            messages = []
            for packet in packets:
                if packet.accelerometer is None or packet.gyroscope is None:
                    continue
                stamp = packet.accelerometer.stamp_seconds(self.get_base_device_timestamp)
                messages.append(
                    self._build(
                        stamp,
                        (packet.accelerometer.x, packet.accelerometer.y, packet.accelerometer.z),
                        (packet.gyroscope.x, packet.gyroscope.y, packet.gyroscope.z),
                        packet,
                    )
                )
            return messages
        if self.sync_mode is ImuSyncMethod.LINEAR_INTERPOLATE_ACCEL:
            return [
                self._build(sample.stamp, values, sample.xyz, sample.packet)
                for sample, values in self._interpolate(base=gyro, source=accel)
            ]
        return [
            self._build(sample.stamp, sample.xyz, values, sample.packet)
            for sample, values in self._interpolate(base=accel, source=gyro)
        ]

    @staticmethod
    def _interpolate(
        *, base: list[_Sample], source: list[_Sample]
    ) -> list[tuple[_Sample, tuple[float, float, float]]]:
        """Values of `source` linearly interpolated at the stamps of `base`."""
        if not base or not source:
            return []
        stamps = np.array([sample.stamp for sample in source])
        values = np.array([sample.xyz for sample in source])
        pairs = []
        for sample in base:
            if sample.stamp < stamps[0] or sample.stamp > stamps[-1]:
                continue
            interpolated = tuple(
                float(np.interp(sample.stamp, stamps, values[:, axis])) for axis in range(3)
            )
            pairs.append((sample, interpolated))
        return pairs

    def _build(
        self,
        stamp: float,
        accel: tuple[float, float, float],
        gyro: tuple[float, float, float],
        packet: IMUPacket,
    ) -> Imu:
        orientation = Quaternion()
        orientation_cov = _diagonal(self.rotation_cov)
        rotation = packet.rotation_vector
        if self.enable_rotation and rotation is not None:
            orientation = Quaternion(x=rotation.x, y=rotation.y, z=rotation.z, w=rotation.real)
        else:
            orientation_cov = [-1.0] + [0.0] * 8
        return Imu(
            header=self.timestamps.header(self.frame_name, stamp),
            orientation=orientation,
            orientation_covariance=orientation_cov,
            angular_velocity=Vector3(x=gyro[0], y=gyro[1], z=gyro[2]),
            angular_velocity_covariance=_diagonal(self.angular_velocity_cov),
            linear_acceleration=Vector3(x=accel[0], y=accel[1], z=accel[2]),
            linear_acceleration_covariance=_diagonal(self.linear_accel_cov),
        )

    def _magnetic_messages(self, packets: list[IMUPacket]) -> list[MagneticField]:
        messages = []
        for sample in self._samples(packets, "magnetic_field"):
            x, y, z = (value * MICROTESLA_TO_TESLA for value in sample.xyz)
            messages.append(
                MagneticField(
                    header=self.timestamps.header(self.frame_name, sample.stamp),
                    magnetic_field=Vector3(x=x, y=y, z=z),
                    magnetic_field_covariance=_diagonal(self.magnetic_field_cov),
                )
            )
        return messages


class ImuStreamer(StreamAdapter):
    """Publishes `Imu` on `topic_name` and, with `enable_magn`, `MagneticField` on `<topic>/mag`."""

    def __init__(
        self,
        node: Node,
        topic_name: str,
        frame_name: str,
        sync_mode: ImuSyncMethod = ImuSyncMethod.LINEAR_INTERPOLATE_ACCEL,
        linear_accel_cov: float = 0.0,
        angular_velocity_cov: float = 0.0,
        rotation_cov: float = 0.0,
        magnetic_field_cov: float = 0.0,
        enable_rotation: bool = False,
        enable_magn: bool = False,
        get_base_device_timestamp: bool = False,
    ) -> None:
        converter = ImuConverter(
            frame_name,
            sync_mode,
            linear_accel_cov,
            angular_velocity_cov,
            rotation_cov,
            magnetic_field_cov,
            enable_rotation,
            enable_magn,
            get_base_device_timestamp,
            timestamps=TimestampMapper(update_base_time_on_msg=True),
        )
        super().__init__(node, converter)
        publisher = node.create_publisher(Imu, topic_name, QUEUE_DEPTH)
        self.add_channel(Imu, publisher)
        if enable_magn:
            self.add_channel(
                MagneticField,
                node.create_publisher(MagneticField, f"{publisher.topic}/mag", QUEUE_DEPTH),
            )


__all__ = ["ImuConverter", "ImuStreamer"]
