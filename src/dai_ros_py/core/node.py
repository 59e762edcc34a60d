"""
Nodes: named owners of publishers, subscriptions, timers and parameters.

A node resolves its name, namespace, topic remappings and parameters from the
runtime's global arguments combined with the node-local arguments encoded by
its `NodeOptions`. Executors read `timers` and `subscriptions` to find ready
work and register a wake listener so deliveries interrupt their wait.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from .arguments import load_parameter_file, parse_arguments
from .contracts import NodeOptions
from .errors import ConfigurationError
from .executor import (
    CallbackGroup,
    CallbackGroupType,
    MutuallyExclusiveCallbackGroup,
    create_callback_group,
)
from .messages import BaseMessage, CameraInfo, CompressedImage, Image
from .runtime import NODE_LOGGER_PREFIX, RuntimeContext, get_default_context
from .transport import (
    DEFAULT_QOS_DEPTH,
    CameraPublisher,
    Publisher,
    Subscription,
    camera_info_topic,
)


class Timer:
    """Periodic callback; the executor decides when it actually runs."""

    def __init__(
        self,
        period_sec: float,
        callback: Callable[[], object],
        callback_group: CallbackGroup,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if period_sec <= 0:
            raise ValueError("Timer period must be positive")
        self.period = float(period_sec)
        self.callback = callback
        self.callback_group = callback_group
        self._clock = clock
        self.next_call = clock() + self.period
        self.cancelled = False

    def is_ready(self, now: float) -> bool:
        return not self.cancelled and now >= self.next_call

    def mark_called(self, now: float) -> None:
        self.next_call += self.period
        if self.next_call <= now:
            # Skip missed periods instead of bursting to catch up.
            self.next_call = now + self.period

    def reset(self) -> None:
        self.cancelled = False
        self.next_call = self._clock() + self.period

    def cancel(self) -> None:
        self.cancelled = True


def _normalize_namespace(namespace: str) -> str:
    if not namespace or namespace == "/":
        return "/"
    namespace = namespace.rstrip("/")
    return namespace if namespace.startswith("/") else f"/{namespace}"


class Node:
    """A schedulable unit owning publishers, subscriptions and timers."""

    def __init__(
        self,
        node_name: str,
        options: NodeOptions | None = None,
        *,
        namespace: str = "",
        context: RuntimeContext | None = None,
    ) -> None:
        self._context = context or get_default_context()
        if not self._context.ok():
            raise ConfigurationError(
                f"Cannot create node '{node_name}': runtime context is not initialized"
            )
        self._options = options or NodeOptions()
        local_arguments = parse_arguments(self._options.arguments())
        arguments = self._context.global_arguments.merged_with(local_arguments)

        name, ns = node_name, namespace
        topic_rules = []
        for rule in arguments.remappings:
            if not rule.applies_to(node_name):
                continue
            if rule.source == "__node":
                if name == node_name:
                    name = rule.target
            elif rule.source == "__ns":
                if ns == namespace:
                    ns = rule.target
            else:
                topic_rules.append(rule)
        if not name or "/" in name:
            raise ConfigurationError(f"Invalid node name '{name}'")
        self.name = name
        self.namespace = _normalize_namespace(ns)
        self._remap_rules = topic_rules

        self._parameters: dict[str, Any] = {}
        for param_file in arguments.param_files:
            self._parameters.update(
                load_parameter_file(param_file, self.name, self.fully_qualified_name)
            )
        self._parameters.update(arguments.parameters)
        self._parameters.update(self._options.parameter_overrides)

        self._lock = threading.Lock()
        self._default_group = MutuallyExclusiveCallbackGroup()
        self._callback_groups: list[CallbackGroup] = [self._default_group]
        self._publishers: list[Publisher] = []
        self._subscriptions: list[Subscription] = []
        self._timers: list[Timer] = []
        self._wake_listeners: list[Callable[[], None]] = []
        self._destroyed = False
        logger_suffix = self.fully_qualified_name.strip("/").replace("/", ".")
        self._logger = logging.getLogger(f"{NODE_LOGGER_PREFIX}.{logger_suffix}")

    # ---- identity -----------------------------------------------------
    @property
    def fully_qualified_name(self) -> str:
        if self.namespace == "/":
            return f"/{self.name}"
        return f"{self.namespace}/{self.name}"

    @property
    def options(self) -> NodeOptions:
        return self._options

    @property
    def context(self) -> RuntimeContext:
        return self._context

    @property
    def use_intra_process_comms(self) -> bool:
        return self._options.use_intra_process_comms

    def get_logger(self) -> logging.Logger:
        return self._logger

    def log(self, message: str) -> None:
        self._logger.info(message)

    # ---- parameters ---------------------------------------------------
    def get_parameter(self, name: str, default: Any = None) -> Any:
        return self._parameters.get(name, default)

    def has_parameter(self, name: str) -> bool:
        return name in self._parameters

    def set_parameter(self, name: str, value: Any) -> None:
        self._parameters[name] = value

    @property
    def parameters(self) -> dict[str, Any]:
        return dict(self._parameters)

    # ---- names --------------------------------------------------------
    def _expand_topic_name(self, topic: str) -> str:
        if not topic:
            raise ValueError("Topic name must not be empty")
        if topic.startswith("~"):
            return f"{self.fully_qualified_name}{topic[1:]}"
        if topic.startswith("/"):
            return topic
        if self.namespace == "/":
            return f"/{topic}"
        return f"{self.namespace}/{topic}"

    def resolve_topic_name(self, topic: str) -> str:
        """Expand a topic name relative to this node and apply remap rules."""
        expanded = self._expand_topic_name(topic)
        for rule in self._remap_rules:
            if self._expand_topic_name(rule.source) == expanded:
                return self._expand_topic_name(rule.target)
        return expanded

    # ---- entities -----------------------------------------------------
    def create_callback_group(
        self, group_type: CallbackGroupType | str = CallbackGroupType.MUTUALLY_EXCLUSIVE
    ) -> CallbackGroup:
        group = create_callback_group(group_type)
        with self._lock:
            self._callback_groups.append(group)
        return group

    def create_publisher(
        self,
        msg_type: type[BaseMessage],
        topic: str,
        qos_depth: int = DEFAULT_QOS_DEPTH,
        *,
        callback_group: CallbackGroup | None = None,
    ) -> Publisher:
        return self._publisher_on(
            msg_type, self.resolve_topic_name(topic), qos_depth, callback_group
        )

    def _publisher_on(
        self,
        msg_type: type[BaseMessage],
        resolved_topic: str,
        qos_depth: int,
        callback_group: CallbackGroup | None = None,
    ) -> Publisher:
        self._check_alive()
        publisher = Publisher(
            runtime=self._context,
            topic=resolved_topic,
            msg_type=msg_type,
            qos_depth=qos_depth,
            intra_process=self.use_intra_process_comms,
            callback_group=callback_group,
        )
        with self._lock:
            self._publishers.append(publisher)
        self._logger.debug("Created publisher on %s", publisher.topic)
        return publisher

    def create_camera_publisher(
        self, topic: str, qos_depth: int = DEFAULT_QOS_DEPTH, *, compressed: bool = False
    ) -> CameraPublisher:
        """Publish images on `topic` and calibration on the sibling `camera_info` topic."""
        image_topic = self.resolve_topic_name(topic)
        image = self._publisher_on(Image, image_topic, qos_depth)
        info = self._publisher_on(CameraInfo, camera_info_topic(image_topic), qos_depth)
        compressed_pub = None
        if compressed:
            compressed_pub = self._publisher_on(
                CompressedImage, f"{image_topic}/compressed", qos_depth
            )
        return CameraPublisher(image, info, compressed_pub)

    def create_subscription(
        self,
        msg_type: type[BaseMessage],
        topic: str,
        callback: Callable[[Any], None],
        qos_depth: int = DEFAULT_QOS_DEPTH,
        *,
        callback_group: CallbackGroup | None = None,
    ) -> Subscription:
        self._check_alive()
        subscription = Subscription(
            topic=self.resolve_topic_name(topic),
            msg_type=msg_type,
            callback=callback,
            qos_depth=qos_depth,
            callback_group=callback_group or self._default_group,
            on_ready=self._notify,
        )
        with self._lock:
            self._subscriptions.append(subscription)
        self._context.graph.add_subscription(subscription)
        self._logger.debug("Created subscription on %s", subscription.topic)
        return subscription

    def create_timer(
        self,
        period_sec: float,
        callback: Callable[[], object],
        *,
        callback_group: CallbackGroup | None = None,
    ) -> Timer:
        self._check_alive()
        timer = Timer(period_sec, callback, callback_group or self._default_group)
        with self._lock:
            self._timers.append(timer)
        self._notify()
        return timer

    @property
    def timers(self) -> list[Timer]:
        with self._lock:
            return list(self._timers)

    @property
    def subscriptions(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    @property
    def publishers(self) -> list[Publisher]:
        with self._lock:
            return list(self._publishers)

    # ---- executor hooks -----------------------------------------------
    def add_wake_listener(self, listener: Callable[[], None]) -> None:
        with self._lock:
            self._wake_listeners.append(listener)

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._wake_listeners)
        for listener in listeners:
            listener()

    # ---- teardown -----------------------------------------------------
    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Release every entity owned by the node; safe to call twice."""
        if self._destroyed:
            return
        self._destroyed = True
        with self._lock:
            publishers = list(self._publishers)
            subscriptions = list(self._subscriptions)
            timers = list(self._timers)
            self._publishers.clear()
            self._subscriptions.clear()
            self._timers.clear()
        for publisher in publishers:
            publisher.destroy()
        for subscription in subscriptions:
            self._context.graph.remove_subscription(subscription)
        for timer in timers:
            timer.cancel()
        self._logger.debug("Destroyed node %s", self.fully_qualified_name)

    def _check_alive(self) -> None:
        if self._destroyed:
            raise ConfigurationError(f"Node '{self.fully_qualified_name}' has been destroyed")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.fully_qualified_name!r})"


__all__ = ["Node", "Timer"]
