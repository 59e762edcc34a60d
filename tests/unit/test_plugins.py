"""Tests for the resource index, record parsing and the Python module loader."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from dai_ros_py.core.contracts import NodeOptions
from dai_ros_py.core.errors import LoadError, ParseError, ResourceNotFoundError
from dai_ros_py.core.plugins import (
    ComponentRecord,
    NodeFactoryTemplate,
    PythonModuleLoader,
    ResourceIndex,
    match_factory_class,
    parse_component_records,
    resolve_library_path,
)
from dai_ros_py.core.runtime import RuntimeContext


def test_resource_index_finds_first_prefix(tmp_path: Path, resource_writer) -> None:
    first = tmp_path / "first"
    second = tmp_path / "second"
    resource_writer(second, "pkg", "a;lib/a.py\n")
    resource_writer(first, "pkg", "b;lib/b.py\n")

    entry = ResourceIndex([first, second]).get_resource("rclcpp_components", "pkg")

    assert entry.base_path == first
    assert entry.content == "b;lib/b.py\n"


def test_resource_index_reads_env_var_each_call(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, resource_writer
) -> None:
    resource_writer(tmp_path, "pkg", "a;lib/a.py\n")
    index = ResourceIndex()

    monkeypatch.setenv("AMENT_PREFIX_PATH", "")
    with pytest.raises(ResourceNotFoundError, match="pkg"):
        index.get_resource("rclcpp_components", "pkg")

    monkeypatch.setenv("AMENT_PREFIX_PATH", str(tmp_path))
    assert index.get_resource("rclcpp_components", "pkg").base_path == tmp_path


@pytest.mark.parametrize("line", ["no_separator", "a;b;c", ";lib.so", "plugin;"])
def test_malformed_records_raise_parse_error(line: str) -> None:
    with pytest.raises(ParseError, match="line 2"):
        parse_component_records(f"ok;libok.so\n{line}\n")


def test_blank_lines_and_crlf_are_tolerated() -> None:
    records = parse_component_records("cam;libcam.so\r\n\r\nimu;libimu.so\r\n")

    assert records == [
        ComponentRecord("cam", "libcam.so"),
        ComponentRecord("imu", "libimu.so"),
    ]


def test_resolve_library_path_matches_plugin_exactly(tmp_path: Path) -> None:
    records = parse_component_records("cam;libcam.so\nimu;libimu.so\n")

    assert resolve_library_path(records, "imu", tmp_path) == tmp_path / "libimu.so"
    assert resolve_library_path(
        [ComponentRecord("abs", "/opt/lib/libabs.so")], "abs", tmp_path
    ) == Path("/opt/lib/libabs.so")
    with pytest.raises(ResourceNotFoundError, match="not found"):
        resolve_library_path(records, "lidar", tmp_path)


def test_match_factory_class_accepts_bare_and_template_names() -> None:
    classes = ["NodeFactoryTemplate<pkg::Cam>", "Imu"]

    assert match_factory_class(classes, "pkg::Cam") == "NodeFactoryTemplate<pkg::Cam>"
    assert match_factory_class(classes, "Imu") == "Imu"
    assert match_factory_class(classes, "Lidar") is None


def test_loader_exports_registered_factories(ament_prefix: Path, runtime: RuntimeContext) -> None:
    loader = PythonModuleLoader()
    handle = loader.load(ament_prefix / "lib" / "demo_components.py")

    classes = loader.list_classes(handle)
    factory = loader.instantiate(handle, "NodeFactoryTemplate<demo_pkg::Talker>")
    node = factory.create_node_instance(NodeOptions(node_name="talker_a"))

    assert classes == ["NodeFactoryTemplate<Listener>", "NodeFactoryTemplate<demo_pkg::Talker>"]
    assert isinstance(factory, NodeFactoryTemplate)
    assert node.name == "talker_a"
    with pytest.raises(ResourceNotFoundError):
        loader.instantiate(handle, "NodeFactoryTemplate<Nope>")

    module_name = handle.module_name
    loader.unload(handle)
    assert module_name not in sys.modules


def test_loader_refcounts_shared_libraries(ament_prefix: Path) -> None:
    loader = PythonModuleLoader()
    path = ament_prefix / "lib" / "demo_components.py"
    first = loader.load(path)
    second = loader.load(path)
    module_name = first.module_name

    assert first.module is second.module
    loader.unload(first)
    assert module_name in sys.modules
    loader.unload(second)
    assert module_name not in sys.modules


def test_loader_wraps_import_failures(ament_prefix: Path, tmp_path: Path) -> None:
    loader = PythonModuleLoader()

    with pytest.raises(LoadError) as excinfo:
        loader.load(ament_prefix / "lib" / "broken_components.py")
    assert "missing native dependency" in excinfo.value.reason

    with pytest.raises(LoadError, match="no such file"):
        loader.load(tmp_path / "absent.py")
    (tmp_path / "not_a_package").mkdir()
    with pytest.raises(LoadError, match="not a Python package"):
        loader.load(tmp_path / "not_a_package")
