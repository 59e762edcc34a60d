"""
In-process topic transport.

Publishers hand messages straight to the bounded queues of matching
subscriptions and wake whoever is spinning the subscribing node. Publishers
created with intra-process communication pass the message object itself;
all others pass a deep copy, which stands in for the serialization
boundary of a networked transport.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .errors import TransportError
from .messages import BaseMessage, CameraInfo, CompressedImage, Image

if TYPE_CHECKING:
    from .executor import CallbackGroup
    from .runtime import RuntimeContext

logger = logging.getLogger(__name__)

DEFAULT_QOS_DEPTH = 10


class Subscription:
    """Bounded message queue plus the callback that consumes it."""

    def __init__(
        self,
        *,
        topic: str,
        msg_type: type[BaseMessage],
        callback: Callable[[Any], None],
        qos_depth: int,
        callback_group: CallbackGroup,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        if qos_depth <= 0:
            raise ValueError("qos_depth must be positive")
        self.topic = topic
        self.msg_type = msg_type
        self.callback = callback
        self.callback_group = callback_group
        self._queue: deque[Any] = deque(maxlen=qos_depth)
        self._lock = threading.Lock()
        self._on_ready = on_ready
        self.dropped = 0

    def deliver(self, msg: Any) -> None:
        with self._lock:
            if len(self._queue) == self._queue.maxlen:
                self.dropped += 1
            self._queue.append(msg)
        if self._on_ready is not None:
            self._on_ready()

    def take(self) -> Any | None:
        with self._lock:
            if not self._queue:
                return None
            return self._queue.popleft()

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._queue)


class TopicGraph:
    """Registry of live subscriptions and per-topic publish counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._publishers: Counter[str] = Counter()
        self._published: Counter[str] = Counter()

    def add_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.setdefault(subscription.topic, []).append(subscription)

    def remove_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.topic, None)

    def subscriptions_for(self, topic: str) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions.get(topic, ()))

    def add_publisher(self, topic: str) -> None:
        with self._lock:
            self._publishers[topic] += 1

    def remove_publisher(self, topic: str) -> None:
        with self._lock:
            self._publishers[topic] -= 1
            if self._publishers[topic] <= 0:
                del self._publishers[topic]

    def record_publish(self, topic: str) -> None:
        with self._lock:
            self._published[topic] += 1

    def topic_names(self) -> list[str]:
        with self._lock:
            return sorted(set(self._subscriptions) | set(self._publishers))

    def stats(self) -> dict[str, int]:
        """Messages published per topic since the graph was created."""
        with self._lock:
            return dict(self._published)


class Publisher:
    """Typed publisher bound to one topic of a runtime context."""

    def __init__(
        self,
        *,
        runtime: RuntimeContext,
        topic: str,
        msg_type: type[BaseMessage],
        qos_depth: int = DEFAULT_QOS_DEPTH,
        intra_process: bool = False,
        callback_group: CallbackGroup | None = None,
    ) -> None:
        if qos_depth <= 0:
            raise ValueError("qos_depth must be positive")
        self._runtime = runtime
        self._graph = runtime.graph
        self.topic = topic
        self.msg_type = msg_type
        self.qos_depth = qos_depth
        self.intra_process = intra_process
        self.callback_group = callback_group
        self.published_count = 0
        self._destroyed = False
        self._graph.add_publisher(topic)

    @property
    def subscription_count(self) -> int:
        return len(self._graph.subscriptions_for(self.topic))

    def publish(self, msg: BaseMessage) -> None:
        if self._destroyed:
            raise TransportError(f"Publisher on '{self.topic}' has been destroyed")
        if not self._runtime.ok():
            raise TransportError(f"Cannot publish on '{self.topic}': runtime is shut down")
        if not isinstance(msg, self.msg_type):
            raise TransportError(
                f"Publisher on '{self.topic}' expects {self.msg_type.__name__}, "
                f"got {type(msg).__name__}"
            )
        for subscription in self._graph.subscriptions_for(self.topic):
            if not issubclass(self.msg_type, subscription.msg_type):
                logger.debug(
                    "Skipping subscription on %s expecting %s",
                    self.topic,
                    subscription.msg_type.__name__,
                )
                continue
            delivered = msg if self.intra_process else msg.model_copy(deep=True)
            subscription.deliver(delivered)
        self.published_count += 1
        self._graph.record_publish(self.topic)

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._graph.remove_publisher(self.topic)


def camera_info_topic(image_topic: str) -> str:
    """Sibling `camera_info` topic of an image topic (`/cam/image_raw` -> `/cam/camera_info`)."""
    base, sep, _ = image_topic.rpartition("/")
    if not sep:
        return "camera_info"
    return f"{base}/camera_info"


class CameraPublisher:
    """Image + camera info publisher pair following the image_transport naming scheme."""

    def __init__(
        self,
        image: Publisher,
        info: Publisher,
        compressed: Publisher | None = None,
    ) -> None:
        self.image = image
        self.info = info
        self.compressed = compressed

    @property
    def topic(self) -> str:
        return self.image.topic

    def publish(self, image: Image, info: CameraInfo) -> None:
        self.image.publish(image)
        self.info.publish(info.model_copy(update={"header": image.header}))

    def publish_compressed(self, msg: CompressedImage) -> None:
        if self.compressed is None:
            raise TransportError(f"No compressed publisher on '{self.topic}'")
        self.compressed.publish(msg)

    def destroy(self) -> None:
        for publisher in (self.image, self.info, self.compressed):
            if publisher is not None:
                publisher.destroy()


__all__ = [
    "DEFAULT_QOS_DEPTH",
    "CameraPublisher",
    "Publisher",
    "Subscription",
    "TopicGraph",
    "camera_info_topic",
]
