from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from dai_ros_py.core.config import ConfigService
from dai_ros_py.core.plugins import RESOURCE_INDEX_SUBFOLDER
from dai_ros_py.core.runtime import RuntimeContext, get_default_context

DEMO_LIBRARY = """
from dai_ros_py.core.messages import String
from dai_ros_py.core.node import Node
from dai_ros_py.core.plugins import register_node


@register_node(name="demo_pkg::Talker", module=__name__)
class Talker(Node):
    def __init__(self, options):
        super().__init__("talker", options)
        self.publisher = self.create_publisher(String, "chatter")
        self.ticks = 0
        self.timer = self.create_timer(0.01, self._tick)

    def _tick(self):
        self.ticks += 1
        self.publisher.publish(String(data=f"tick {self.ticks}"))


@register_node(module=__name__)
class Listener(Node):
    def __init__(self, options):
        super().__init__("listener", options)
        self.received = []
        self.create_subscription(String, "chatter", self.received.append)
"""

BROKEN_LIBRARY = """
raise ImportError("missing native dependency")
"""


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


def write_resource(prefix: Path, package: str, content: str) -> Path:
    """Write an `rclcpp_components` resource for `package` under `prefix`."""
    resource_dir = prefix / RESOURCE_INDEX_SUBFOLDER / "rclcpp_components"
    resource_dir.mkdir(parents=True, exist_ok=True)
    path = resource_dir / package
    path.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")
    return path


@pytest.fixture
def resource_writer():
    """Expose `write_resource` to tests that lay out their own prefixes."""

    return write_resource


@pytest.fixture(autouse=True)
def _reset_default_runtime():
    """Every test starts and ends with the process-wide runtime shut down."""

    get_default_context().shutdown()
    yield
    get_default_context().shutdown()


@pytest.fixture
def runtime() -> RuntimeContext:
    """The default runtime context, initialized without arguments."""

    context = get_default_context()
    context.init([])
    return context


@pytest.fixture
def ament_prefix(tmp_path: Path) -> Path:
    """
    Provide an install prefix advertising `demo_pkg` (two working components)
    and `broken_pkg` (a library that fails to import).
    """

    prefix = tmp_path / "install"
    lib_dir = prefix / "lib"
    lib_dir.mkdir(parents=True)
    (lib_dir / "demo_components.py").write_text(
        textwrap.dedent(DEMO_LIBRARY).lstrip(), encoding="utf-8"
    )
    (lib_dir / "broken_components.py").write_text(
        textwrap.dedent(BROKEN_LIBRARY).lstrip(), encoding="utf-8"
    )
    write_resource(
        prefix,
        "demo_pkg",
        """
        demo_pkg::Talker;lib/demo_components.py
        Listener;lib/demo_components.py
        demo_pkg::Ghost;lib/demo_components.py
        """,
    )
    write_resource(prefix, "broken_pkg", "broken_pkg::Broken;lib/broken_components.py\n")
    return prefix


@pytest.fixture
def sample_config_dir(tmp_path: Path, ament_prefix: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_yaml = f"""
    context:
      mode: multi_threaded
      num_threads: 2
      args: ["--ros-args", "-p", "use_sim_time:=true"]

    resource_index:
      prefixes: ["{ament_prefix.as_posix()}"]

    components:
      - package: demo_pkg
        plugin: demo_pkg::Talker
        options:
          node_name: talker_1
          remappings:
            chatter: /demo/chatter
      - package: demo_pkg
        plugin: Listener

    logging:
      level: debug
      max_mb: 2

    metrics:
      enabled: true
      port: 9191
    """
    secrets_yaml = """
    metrics:
      addr: "127.0.0.1"
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    _write_yaml(config_dir / "secrets.yaml", secrets_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir)
