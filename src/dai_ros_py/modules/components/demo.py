"""
Chatter demo components.

`Producer` publishes `String` "Hello N" on a timer, `Consumer` logs what it
receives. Both are exported as composable nodes (`dai_ros_py::Producer`,
`dai_ros_py::Consumer`) and are handy for smoke-testing a launch.
"""

from __future__ import annotations

import threading

from ...core.contracts import NodeOptions
from ...core.messages import String
from ...core.node import Node
from ...core.plugins import register_node
from ...core.runtime import RuntimeContext

DEFAULT_PERIOD_SECONDS = 0.5


@register_node(name="dai_ros_py::Producer")
class Producer(Node):
    def __init__(
        self,
        options: NodeOptions | None = None,
        name: str = "producer",
        output: str = "chatter",
        *,
        context: RuntimeContext | None = None,
    ) -> None:
        super().__init__(name, options, context=context)
        self.count = 0
        self.publisher = self.create_publisher(String, output)
        period = float(self.get_parameter("period", DEFAULT_PERIOD_SECONDS))
        self.timer = self.create_timer(period, self._on_timer)

    def _on_timer(self) -> None:
        msg = String(data=f"Hello {self.count}")
        self.count += 1
        self.publisher.publish(msg)
        self.get_logger().debug("Published '%s'", msg.data)


@register_node(name="dai_ros_py::Consumer")
class Consumer(Node):
    def __init__(
        self,
        options: NodeOptions | None = None,
        name: str = "consumer",
        input: str = "chatter",
        *,
        context: RuntimeContext | None = None,
    ) -> None:
        super().__init__(name, options, context=context)
        self._received_lock = threading.Lock()
        self._received: list[String] = []
        self.subscription = self.create_subscription(String, input, self._on_message)

    def _on_message(self, msg: String) -> None:
        with self._received_lock:
            self._received.append(msg)
        self.get_logger().info("Received '%s'", msg.data)

    @property
    def received(self) -> list[String]:
        with self._received_lock:
            return list(self._received)


__all__ = ["Consumer", "Producer"]
