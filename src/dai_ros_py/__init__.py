"""
dai_ros_py - publish DepthAI sensor data into a ROS-style node graph

Hosts statically constructed and dynamically loaded (composable) nodes under
one executor spinning on a background thread, and converts device records
(images, IMU, detections, tracked features) into ROS messages.
"""

__version__ = "0.1.0"

from dai_ros_py.core import (
    ConfigurationError,
    DaiRosError,
    ExecutionContext,
    ExecutionState,
    ExecutorKind,
    LoadError,
    Node,
    NodeOptions,
    ParseError,
    ResourceNotFoundError,
    TransportError,
)
from dai_ros_py.core.runtime import init, ok, shutdown

ros_ok = ok

__all__ = [
    "ConfigurationError",
    "DaiRosError",
    "ExecutionContext",
    "ExecutionState",
    "ExecutorKind",
    "LoadError",
    "Node",
    "NodeOptions",
    "ParseError",
    "ResourceNotFoundError",
    "TransportError",
    "init",
    "ok",
    "ros_ok",
    "shutdown",
]
