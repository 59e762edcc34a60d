"""Tests for runtime argument parsing and node option encoding."""

from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest

from dai_ros_py.core.arguments import (
    ParsedArguments,
    RemapRule,
    load_parameter_file,
    parse_arguments,
)
from dai_ros_py.core.contracts import NodeOptions
from dai_ros_py.core.errors import ConfigurationError


def test_parse_arguments_reads_ros_args_section() -> None:
    parsed = parse_arguments(
        [
            "app.py",
            "--ros-args",
            "-r",
            "chatter:=/news",
            "--remap",
            "talker:__ns:=/robot",
            "-p",
            "rate:=15",
            "--param",
            "names:=[a, b]",
            "--params-file",
            "params.yaml",
            "--log-level",
            "debug",
            "--",
            "--verbose",
        ]
    )

    assert parsed.unparsed == ["app.py", "--verbose"]
    assert parsed.remappings == [
        RemapRule("chatter", "/news"),
        RemapRule("__ns", "/robot", node="talker"),
    ]
    assert parsed.parameters == {"rate": 15, "names": ["a", "b"]}
    assert parsed.param_files == ["params.yaml"]
    assert parsed.log_levels == {"": logging.DEBUG}


def test_parse_arguments_rejects_unknown_flags_inside_ros_args() -> None:
    with pytest.raises(ConfigurationError, match="Unknown ROS argument"):
        parse_arguments(["--ros-args", "--enclave", "/foo"])


def test_parse_arguments_requires_assignment_syntax() -> None:
    with pytest.raises(ConfigurationError):
        parse_arguments(["--ros-args", "-r", "chatter"])
    with pytest.raises(ConfigurationError):
        parse_arguments(["--ros-args", "-p"])


def test_named_log_level_and_unknown_level() -> None:
    parsed = parse_arguments(["--ros-args", "--log-level", "talker:=warn"])
    assert parsed.log_levels == {"talker": logging.WARNING}

    with pytest.raises(ConfigurationError, match="Unknown log level"):
        parse_arguments(["--ros-args", "--log-level", "chatty"])


def test_merged_arguments_prefer_local_values() -> None:
    global_args = parse_arguments(["--ros-args", "-p", "rate:=1", "-r", "a:=b"])
    local_args = parse_arguments(["--ros-args", "-p", "rate:=2", "-r", "a:=c"])

    merged = global_args.merged_with(local_args)

    assert merged.parameters == {"rate": 2}
    assert merged.remappings[0] == RemapRule("a", "c")
    assert isinstance(merged, ParsedArguments)


def test_node_options_arguments_follow_argument_layout() -> None:
    options = NodeOptions(
        node_name="cam",
        ns="/robot",
        param_file="/tmp/params.yaml",
        remappings={"image": "/robot/image_raw"},
    )

    assert options.arguments() == [
        "--ros-args",
        "--params-file",
        "/tmp/params.yaml",
        "--ros-args",
        "--remap",
        "__node:=cam",
        "--ros-args",
        "--remap",
        "__ns:=/robot",
        "--remap",
        "image:=/robot/image_raw",
    ]


def test_node_options_remappings_alone_still_parse() -> None:
    options = NodeOptions(remappings={"image": "/camera/image"})

    parsed = parse_arguments(options.arguments())

    assert options.arguments()[0] == "--ros-args"
    assert parsed.remappings == [RemapRule("image", "/camera/image")]
    assert parsed.unparsed == []


def test_load_parameter_file_applies_wildcard_then_node_section(tmp_path: Path) -> None:
    params = tmp_path / "params.yaml"
    params.write_text(
        textwrap.dedent(
            """
            /**:
              ros__parameters:
                rate: 5
                camera:
                  fps: 30
            talker:
              ros__parameters:
                rate: 10
            other:
              ros__parameters:
                rate: 99
            """
        ),
        encoding="utf-8",
    )

    values = load_parameter_file(params, "talker", "/talker")

    assert values == {"rate": 10, "camera.fps": 30}


def test_load_parameter_file_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Cannot read parameter file"):
        load_parameter_file(tmp_path / "missing.yaml", "talker", "/talker")
