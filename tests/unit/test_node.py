"""Tests for node naming, parameters and entity creation."""

from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest

from dai_ros_py.core.contracts import NodeOptions
from dai_ros_py.core.errors import ConfigurationError, TransportError
from dai_ros_py.core.executor import CallbackGroupType, ReentrantCallbackGroup
from dai_ros_py.core.messages import String
from dai_ros_py.core.node import Node, Timer
from dai_ros_py.core.runtime import RuntimeContext


def test_node_requires_initialized_runtime() -> None:
    with pytest.raises(ConfigurationError, match="not initialized"):
        Node("orphan", context=RuntimeContext())


def test_node_options_rename_and_namespace(runtime: RuntimeContext) -> None:
    node = Node("camera", NodeOptions(node_name="front", ns="robot"))

    assert node.name == "front"
    assert node.namespace == "/robot"
    assert node.fully_qualified_name == "/robot/front"
    assert node.get_logger().name == "dai_ros_py.nodes.robot.front"


def test_global_remaps_are_scoped_by_node_name() -> None:
    runtime = RuntimeContext()
    runtime.init(["--ros-args", "-r", "talker:__node:=speaker", "-r", "chatter:=/news"])

    talker = Node("talker", context=runtime)
    listener = Node("listener", context=runtime)

    assert talker.name == "speaker"
    assert listener.name == "listener"
    assert listener.resolve_topic_name("chatter") == "/news"
    runtime.shutdown()


def test_topic_name_resolution(runtime: RuntimeContext) -> None:
    node = Node("cam", NodeOptions(ns="/robot", remappings={"raw": "image_raw"}))

    assert node.resolve_topic_name("image") == "/robot/image"
    assert node.resolve_topic_name("/tf") == "/tf"
    assert node.resolve_topic_name("~/status") == "/robot/cam/status"
    assert node.resolve_topic_name("raw") == "/robot/image_raw"
    with pytest.raises(ValueError):
        node.resolve_topic_name("")


def test_camera_publisher_applies_remaps_once(runtime: RuntimeContext) -> None:
    node = Node("cam", NodeOptions(remappings={"image": "/rgb/image_raw", "/rgb/image_raw": "/x"}))

    camera = node.create_camera_publisher("image", compressed=True)

    assert camera.topic == "/rgb/image_raw"
    assert camera.info.topic == "/rgb/camera_info"
    assert camera.compressed.topic == "/rgb/image_raw/compressed"


def test_parameter_precedence(runtime: RuntimeContext, tmp_path: Path) -> None:
    params = tmp_path / "params.yaml"
    params.write_text(
        textwrap.dedent(
            """
            cam:
              ros__parameters:
                fps: 15
                width: 640
                height: 480
            """
        ),
        encoding="utf-8",
    )
    options = NodeOptions(
        param_file=str(params),
        extra_arguments=["--ros-args", "-p", "width:=1280"],
        parameter_overrides={"height": 720},
    )

    node = Node("cam", options)

    assert node.get_parameter("fps") == 15
    assert node.get_parameter("width") == 1280
    assert node.get_parameter("height") == 720
    assert node.get_parameter("missing", "fallback") == "fallback"
    node.set_parameter("fps", 30)
    assert node.has_parameter("fps") and node.parameters["fps"] == 30


def test_log_level_argument_targets_node_logger() -> None:
    runtime = RuntimeContext()
    runtime.init(["--ros-args", "--log-level", "quiet:=error"])

    node = Node("quiet", context=runtime)

    assert node.get_logger().getEffectiveLevel() == logging.ERROR
    runtime.shutdown()
    logging.getLogger("dai_ros_py.nodes.quiet").setLevel(logging.NOTSET)


def test_node_log_writes_info(runtime: RuntimeContext, caplog: pytest.LogCaptureFixture) -> None:
    node = Node("chatty")

    with caplog.at_level(logging.INFO, logger="dai_ros_py.nodes"):
        node.log("hello from python")

    assert "hello from python" in caplog.text


def test_publish_subscribe_through_graph(runtime: RuntimeContext) -> None:
    talker = Node("talker")
    listener = Node("listener")
    wakeups: list[str] = []
    listener.add_wake_listener(lambda: wakeups.append("wake"))
    received: list[String] = []
    subscription = listener.create_subscription(String, "chatter", received.append)
    publisher = talker.create_publisher(String, "chatter")

    publisher.publish(String(data="hi"))

    assert wakeups
    assert subscription.take() == String(data="hi")
    assert publisher.subscription_count == 1
    assert runtime.graph.stats() == {"/chatter": 1}


def test_callback_groups_and_timers(runtime: RuntimeContext) -> None:
    node = Node("worker")
    group = node.create_callback_group(CallbackGroupType.REENTRANT)
    timer = node.create_timer(0.5, lambda: None, callback_group=group)

    assert isinstance(group, ReentrantCallbackGroup)
    assert isinstance(timer, Timer)
    assert node.timers == [timer]
    assert timer.callback_group is group


def test_timer_skips_missed_periods() -> None:
    now = [100.0]
    timer = Timer(1.0, lambda: None, ReentrantCallbackGroup(), clock=lambda: now[0])

    assert not timer.is_ready(100.5)
    assert timer.is_ready(101.0)
    timer.mark_called(105.2)
    assert timer.next_call == pytest.approx(106.2)
    timer.cancel()
    assert not timer.is_ready(1000.0)
    with pytest.raises(ValueError):
        Timer(0, lambda: None, ReentrantCallbackGroup())


def test_destroy_releases_entities(runtime: RuntimeContext) -> None:
    node = Node("short_lived")
    publisher = node.create_publisher(String, "out")
    node.create_subscription(String, "in", lambda msg: None)
    timer = node.create_timer(1.0, lambda: None)

    node.destroy()
    node.destroy()

    assert node.destroyed
    assert timer.cancelled
    assert runtime.graph.subscriptions_for("/in") == []
    with pytest.raises(TransportError, match="destroyed"):
        publisher.publish(String(data="late"))
    with pytest.raises(ConfigurationError, match="destroyed"):
        node.create_publisher(String, "out")
