"""
Image streaming: `ImgFrame` -> `Image` (+ `CompressedImage`) + `CameraInfo`.

With intra-process comms enabled the streamer owns three plain publishers
(`<topic>`, `<topic>/compressed`, `<topic>/camera_info`) and a reentrant
callback group; otherwise it uses a camera publisher (image on `<topic>`,
calibration on the sibling `camera_info` topic). Every message produced for
one frame shares the image header.
"""

from __future__ import annotations

import logging

import imageio.v3 as iio
import numpy as np

from ...core.contracts import CalibrationHandler, CameraBoardSocket, ImgFrame, RawImgFrameType
from ...core.errors import ConfigurationError
from ...core.executor import CallbackGroupType
from ...core.messages import BaseMessage, CameraInfo, CompressedImage, Header, Image
from ...core.node import Node
from .base import QUEUE_DEPTH, StreamAdapter, TimestampMapper

logger = logging.getLogger(__name__)

_ENCODINGS = {
    RawImgFrameType.BGR888i: "bgr8",
    RawImgFrameType.BGR888p: "bgr8",
    RawImgFrameType.RGB888i: "rgb8",
    RawImgFrameType.RGB888p: "rgb8",
    RawImgFrameType.GRAY8: "mono8",
    RawImgFrameType.RAW8: "mono8",
    RawImgFrameType.RAW16: "16UC1",
}
_PLANAR = {RawImgFrameType.BGR888p, RawImgFrameType.RGB888p}
_COLOR = {
    RawImgFrameType.BGR888i,
    RawImgFrameType.BGR888p,
    RawImgFrameType.RGB888i,
    RawImgFrameType.RGB888p,
}
RATIONAL_POLYNOMIAL_MIN_COEFFS = 6


class ImageConverter:
    """Convert raw or bitstream frames into uncompressed images."""

    def __init__(
        self,
        frame_name: str,
        interleaved: bool = False,
        get_base_device_timestamp: bool = False,
        *,
        timestamps: TimestampMapper | None = None,
    ) -> None:
        self.frame_name = frame_name
        self.interleaved = interleaved
        self.get_base_device_timestamp = get_base_device_timestamp
        self.timestamps = timestamps or TimestampMapper()
        self.bitstream_target: RawImgFrameType | None = None

    def convert_from_bitstream(self, frame_type: RawImgFrameType) -> None:
        """Decode bitstream frames into `frame_type` before publishing."""
        frame_type = RawImgFrameType(frame_type)
        if frame_type is RawImgFrameType.BITSTREAM:
            raise ConfigurationError("Bitstream frames cannot be decoded into BITSTREAM")
        self.bitstream_target = frame_type

    def header_for(self, frame: ImgFrame) -> Header:
        return self.timestamps.header(
            self.frame_name, frame.stamp_seconds(self.get_base_device_timestamp)
        )

    def convert(self, frame: ImgFrame) -> list[BaseMessage]:
        return [self.to_image(frame)]

    def to_image(self, frame: ImgFrame, header: Header | None = None) -> Image:
        header = header or self.header_for(frame)
        frame_type = frame.type
        if frame_type is RawImgFrameType.BITSTREAM:
            if self.bitstream_target is None:
                raise ConfigurationError(
                    "Received a bitstream frame; call convert_from_bitstream() first"
                )
            pixels = self._decode(frame, self.bitstream_target)
            frame_type = self.bitstream_target
        else:
            pixels = self._raw_pixels(frame)
        height, width = pixels.shape[:2]
        return Image(
            header=header,
            height=height,
            width=width,
            encoding=_ENCODINGS[frame_type],
            is_bigendian=0,
            step=width * (pixels.itemsize * (pixels.shape[2] if pixels.ndim == 3 else 1)),
            data=np.ascontiguousarray(pixels).tobytes(),
        )

    def to_compressed(self, frame: ImgFrame, header: Header) -> CompressedImage:
        return CompressedImage(header=header, format="jpeg", data=frame.raw_bytes())

    def _raw_pixels(self, frame: ImgFrame) -> np.ndarray:
        data = frame.data
        if isinstance(data, bytes):
            dtype = np.uint16 if frame.type is RawImgFrameType.RAW16 else np.uint8
            data = np.frombuffer(data, dtype=dtype)
        h, w = frame.height, frame.width
        if frame.type in _COLOR:
            if frame.type in _PLANAR and not self.interleaved:
                return data.reshape(3, h, w).transpose(1, 2, 0)
            return data.reshape(h, w, 3)
        return data.reshape(h, w)

    @staticmethod
    def _decode(frame: ImgFrame, target: RawImgFrameType) -> np.ndarray:
        decoded = np.asarray(iio.imread(frame.raw_bytes()))
        if target in _COLOR:
            if decoded.ndim == 2:
                decoded = np.stack([decoded] * 3, axis=-1)
            decoded = decoded[..., :3]
            # Decoders return RGB.
            if target in (RawImgFrameType.BGR888i, RawImgFrameType.BGR888p):
                decoded = decoded[..., ::-1]
            return decoded.astype(np.uint8)
        if decoded.ndim == 3:
            weights = np.array([0.299, 0.587, 0.114])
            decoded = decoded[..., :3] @ weights
        if target is RawImgFrameType.RAW16:
            return decoded.astype(np.uint16)
        return decoded.astype(np.uint8)

    @staticmethod
    def calibration_to_camera_info(
        calib_handler: CalibrationHandler,
        socket: CameraBoardSocket,
        width: int = -1,
        height: int = -1,
    ) -> CameraInfo:
        """Camera info at `width` x `height`, scaling the native intrinsics."""
        calibration = calib_handler.camera_data(socket)
        width = calibration.width if width <= 0 else width
        height = calibration.height if height <= 0 else height
        scale_x = width / calibration.width
        scale_y = height / calibration.height
        intrinsics = np.array(calibration.intrinsics, dtype=float)
        intrinsics[0, :] *= scale_x
        intrinsics[1, :] *= scale_y
        projection = np.zeros((3, 4))
        projection[:, :3] = intrinsics
        distortion = list(calibration.distortion)
        model = (
            "rational_polynomial"
            if len(distortion) >= RATIONAL_POLYNOMIAL_MIN_COEFFS
            else "plumb_bob"
        )
        return CameraInfo(
            height=height,
            width=width,
            distortion_model=model,
            d=distortion,
            k=intrinsics.flatten().tolist(),
            p=projection.flatten().tolist(),
        )


class _ImageOutputs:
    """Converter for one frame: optional compressed, the image, then calibration."""

    def __init__(self, streamer: ImgStreamer) -> None:
        self._streamer = streamer

    def convert(self, frame: ImgFrame) -> list[BaseMessage]:
        streamer = self._streamer
        converter = streamer.image_converter
        header = converter.header_for(frame)
        messages: list[BaseMessage] = []
        if streamer.publish_compressed:
            messages.append(converter.to_compressed(frame, header))
        image = converter.to_image(frame, header)
        messages.append(image)
        messages.append(streamer.camera_info.model_copy(update={"header": image.header}))
        return messages


class ImgStreamer(StreamAdapter):
    """Publishes device frames together with their calibration."""

    def __init__(
        self,
        node: Node,
        calib_handler: CalibrationHandler,
        socket: CameraBoardSocket,
        topic_name: str,
        frame_name: str,
        width: int = -1,
        height: int = -1,
        interleaved: bool = False,
        get_base_device_timestamp: bool = False,
    ) -> None:
        super().__init__(node, _ImageOutputs(self))
        self.image_converter = ImageConverter(
            frame_name,
            interleaved,
            get_base_device_timestamp,
            timestamps=TimestampMapper(update_base_time_on_msg=True),
        )
        self.publish_compressed = False
        node.get_logger().info("Creating publisher for '%s'", topic_name)
        if self.intra_process:
            self.callback_group = node.create_callback_group(CallbackGroupType.REENTRANT)
            image = node.create_publisher(
                Image, topic_name, QUEUE_DEPTH, callback_group=self.callback_group
            )
            self.add_channel(Image, image)
            self.add_channel(
                CompressedImage,
                node.create_publisher(
                    CompressedImage,
                    f"{image.topic}/compressed",
                    QUEUE_DEPTH,
                    callback_group=self.callback_group,
                ),
            )
            self.add_channel(
                CameraInfo,
                node.create_publisher(
                    CameraInfo,
                    f"{image.topic}/camera_info",
                    QUEUE_DEPTH,
                    callback_group=self.callback_group,
                ),
            )
            self.camera_publisher = None
        else:
            self.callback_group = None
            self.camera_publisher = node.create_camera_publisher(
                topic_name, QUEUE_DEPTH, compressed=True
            )
            self.add_channel(Image, self.camera_publisher.image)
            self.add_channel(CameraInfo, self.camera_publisher.info)
            self.add_channel(CompressedImage, self.camera_publisher.compressed)
        self.camera_info = self.image_converter.calibration_to_camera_info(
            calib_handler, socket, width, height
        )

    def convert_from_bitstream(self, frame_type: RawImgFrameType) -> None:
        """Decode bitstream frames and also republish the raw bitstream as compressed."""
        self.image_converter.convert_from_bitstream(frame_type)
        self.publish_compressed = True
        logger.info("Decoding bitstream frames as %s", RawImgFrameType(frame_type).value)


__all__ = ["ImageConverter", "ImgStreamer"]
