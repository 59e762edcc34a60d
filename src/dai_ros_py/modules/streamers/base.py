"""
Stream adapters: bind one converter to the output channels of a node.

A converter turns one device record into an ordered list of wire messages.
The adapter publishes each message, in order, to every channel registered
for the message's type. Nothing is buffered between calls and transport
failures propagate to the caller.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from ...core.errors import TransportError
from ...core.messages import BaseMessage, Header, Time
from ...core.node import Node
from ...core.transport import DEFAULT_QOS_DEPTH

logger = logging.getLogger(__name__)

QUEUE_DEPTH = DEFAULT_QOS_DEPTH


@runtime_checkable
class Converter(Protocol):
    def convert(self, record: Any) -> Sequence[BaseMessage]: ...


class Channel(Protocol):
    topic: str

    def publish(self, msg: BaseMessage) -> None: ...


class TimestampMapper:
    """
    Map host-monotonic record timestamps onto wall-clock ROS time.

    The offset between the wall clock and the monotonic clock is captured at
    construction and, when `update_base_time_on_msg` is set, refreshed
    before every message so long-running streams follow clock adjustments.
    """

    def __init__(
        self,
        *,
        update_base_time_on_msg: bool = True,
        wall_clock: Callable[[], float] = time.time,
        steady_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.update_base_time_on_msg = update_base_time_on_msg
        self._wall_clock = wall_clock
        self._steady_clock = steady_clock
        self._lock = threading.Lock()
        self._offset = 0.0
        self.update_base_time()

    def update_base_time(self) -> None:
        offset = self._wall_clock() - self._steady_clock()
        with self._lock:
            self._offset = offset

    @property
    def offset(self) -> float:
        with self._lock:
            return self._offset

    def to_ros_time(self, steady_seconds: float) -> Time:
        if self.update_base_time_on_msg:
            self.update_base_time()
        return Time.from_seconds(steady_seconds + self.offset)

    def header(self, frame_id: str, steady_seconds: float) -> Header:
        return Header(stamp=self.to_ros_time(steady_seconds), frame_id=frame_id)


class StreamAdapter:
    """Publish every message a converter yields to the channels of its type."""

    def __init__(self, node: Node, converter: Converter) -> None:
        self.node = node
        self.converter = converter
        self.intra_process = node.use_intra_process_comms
        self._channels: dict[type[BaseMessage], list[Channel]] = {}

    def add_channel(self, msg_type: type[BaseMessage], channel: Channel) -> None:
        self._channels.setdefault(msg_type, []).append(channel)

    def channels_for(self, msg_type: type[BaseMessage]) -> list[Channel]:
        return list(self._channels.get(msg_type, ()))

    @property
    def channels(self) -> dict[type[BaseMessage], list[Channel]]:
        return {msg_type: list(channels) for msg_type, channels in self._channels.items()}

    def publish(self, record: Any) -> None:
        """Convert `record` and publish the resulting messages in order."""
        messages = self.converter.convert(record)
        for msg in messages:
            channels = self._channels.get(type(msg))
            if not channels:
                raise TransportError(
                    f"{type(self).__name__} has no channel for {type(msg).__name__}"
                )
            for channel in channels:
                channel.publish(msg)
        logger.debug("%s published %d messages", type(self).__name__, len(messages))


__all__ = ["Channel", "Converter", "QUEUE_DEPTH", "StreamAdapter", "TimestampMapper"]
