from __future__ import annotations

import logging
import logging.handlers
import threading
import time
from pathlib import Path

import pytest

from dai_ros_py import launcher
from dai_ros_py.core.config import (
    ComponentSettings,
    ConfigError,
    ConfigService,
    LaunchSnapshot,
    ResourceIndexSettings,
)
from dai_ros_py.core.context import ExecutionContext, ExecutionState
from dai_ros_py.core.contracts import NodeOptions
from dai_ros_py.core.executor import ExecutorKind
from dai_ros_py.core.runtime import get_default_context
from dai_ros_py.modules.components import BUILTIN_PREFIX


class FakeExporter:
    def __init__(self) -> None:
        self.events: list[str] = []

    def start(self) -> None:
        self.events.append("start")

    def stop(self) -> None:
        self.events.append("stop")


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_cli_overrides_fold_into_snapshot(sample_config_service: ConfigService) -> None:
    args = launcher.parse_args(
        [
            "--mode",
            "single_threaded",
            "--num-threads",
            "3",
            "--arg=--log-level",
            "--arg=warn",
            "--component",
            "dai_ros_py:dai_ros_py::Producer",
            "--log-level",
            "warning",
            "--no-metrics",
        ]
    )

    snapshot = launcher.apply_cli_overrides(sample_config_service.snapshot, args)

    assert snapshot.context.mode is ExecutorKind.SINGLE_THREADED
    assert snapshot.context.num_threads == 3
    assert snapshot.context.args == [
        "--ros-args",
        "-p",
        "use_sim_time:=true",
        "--log-level",
        "warn",
    ]
    assert [c.plugin for c in snapshot.components] == [
        "demo_pkg::Talker",
        "Listener",
        "dai_ros_py::Producer",
    ]
    assert snapshot.logging.level == "WARNING"
    assert snapshot.metrics.enabled is False


def test_no_overrides_keep_snapshot(sample_config_service: ConfigService) -> None:
    snapshot = sample_config_service.snapshot

    assert launcher.apply_cli_overrides(snapshot, launcher.parse_args([])) is snapshot


def test_resource_prefixes_append_builtin_components(
    sample_config_service: ConfigService, ament_prefix: Path
) -> None:
    assert launcher.resource_prefixes(sample_config_service.snapshot) == [
        ament_prefix,
        BUILTIN_PREFIX,
    ]


def test_resource_prefixes_fall_back_to_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("AMENT_PREFIX_PATH", str(tmp_path))

    assert launcher.resource_prefixes(LaunchSnapshot()) == [tmp_path, BUILTIN_PREFIX]


def test_load_components_skips_failures(
    ament_prefix: Path, caplog: pytest.LogCaptureFixture
) -> None:
    snapshot = LaunchSnapshot.model_validate(
        {"resource_index": {"prefixes": [str(ament_prefix)]}}
    )
    context = launcher.build_context(snapshot)
    components = [
        ComponentSettings(package="demo_pkg", plugin="demo_pkg::Ghost"),
        ComponentSettings(package="missing_pkg", plugin="Anything"),
        ComponentSettings(package="demo_pkg", plugin="Listener"),
    ]

    with caplog.at_level(logging.WARNING, logger="dai_ros_py.launcher"):
        added = launcher.load_components(context, components)

    assert added == 1
    assert [node.name for node in context.nodes] == ["listener"]
    assert caplog.text.count("Skipping component") == 2
    context.shutdown()


def test_run_launches_configured_components(sample_config_service: ConfigService) -> None:
    exporter = FakeExporter()
    stop_event = threading.Event()
    stop_event.set()

    context = launcher.run(
        sample_config_service.snapshot,
        stop_event=stop_event,
        exporter_factory=lambda _context, _snapshot: exporter,
        install_signal_handlers=False,
    )

    assert isinstance(context, ExecutionContext)
    assert context.mode is ExecutorKind.MULTI_THREADED
    assert [node.name for node in context.nodes] == ["talker_1", "listener"]
    assert context.nodes[0].resolve_topic_name("chatter") == "/demo/chatter"
    assert context.nodes[0].get_parameter("use_sim_time") is True
    assert exporter.events == ["start", "stop"]
    assert context.state is ExecutionState.STOPPED
    assert not get_default_context().ok()


def test_run_without_components_fails_and_cleans_up(tmp_path: Path) -> None:
    snapshot = LaunchSnapshot.model_validate(
        {
            "resource_index": {"prefixes": [str(tmp_path)]},
            "components": [{"package": "ghost_pkg", "plugin": "Ghost"}],
        }
    )

    with pytest.raises(RuntimeError, match="No components"):
        launcher.run(snapshot, stop_event=threading.Event(), install_signal_handlers=False)

    assert not get_default_context().ok()


def test_builtin_components_chat() -> None:
    fast = NodeOptions(parameter_overrides={"period": 0.01})
    snapshot = LaunchSnapshot(
        resource_index=ResourceIndexSettings(prefixes=[]),
        components=[
            ComponentSettings(package="dai_ros_py", plugin="dai_ros_py::Producer", options=fast),
            ComponentSettings.from_cli("dai_ros_py:dai_ros_py::Consumer"),
        ],
    )
    context = launcher.build_context(snapshot)

    assert launcher.load_components(context, snapshot.components) == 2
    producer, consumer = context.nodes
    context.start()
    try:
        assert _wait_for(lambda: len(consumer.received) >= 2)
    finally:
        context.shutdown()

    assert consumer.received[0].data == "Hello 0"
    assert producer.count >= 2


def test_rotating_file_handler_is_attached_once(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "dai_ros_py.log"
    root_logger = logging.getLogger()
    before = list(root_logger.handlers)
    try:
        launcher._ensure_rotating_file_handler(log_file, max_mb=1, backup_count=2)
        launcher._ensure_rotating_file_handler(log_file, max_mb=1, backup_count=2)
        added = [handler for handler in root_logger.handlers if handler not in before]
        assert len(added) == 1
        assert isinstance(added[0], logging.handlers.RotatingFileHandler)
        assert added[0].maxBytes == 1024 * 1024
        assert log_file.parent.is_dir()
    finally:
        for handler in root_logger.handlers[:]:
            if handler not in before:
                root_logger.removeHandler(handler)
                handler.close()


def test_main_rejects_malformed_component(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    assert launcher.main(["--component", "no-separator"]) == 2


def test_main_reports_missing_config_dir(tmp_path: Path) -> None:
    assert launcher.main(["--config-dir", str(tmp_path / "absent")]) == 2


def test_invalid_log_level_override_is_rejected(sample_config_service: ConfigService) -> None:
    args = launcher.parse_args(["--log-level", "chatty"])

    with pytest.raises(ConfigError, match="--log-level"):
        launcher.apply_cli_overrides(sample_config_service.snapshot, args)


def test_main_reports_invalid_log_level(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    assert launcher.main(["--log-level", "chatty"]) == 2
