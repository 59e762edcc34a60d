"""
Parsing of middleware-style command line arguments.

Only the tokens enclosed by `--ros-args` (until `--` or the end of the list)
are interpreted; everything else is handed back untouched in `unparsed` so a
host application can keep its own flags on the same command line.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


@dataclass(frozen=True)
class RemapRule:
    """`source:=target`, optionally restricted to one node (`node:source:=target`)."""

    source: str
    target: str
    node: str | None = None

    def applies_to(self, node_name: str) -> bool:
        return self.node is None or self.node == node_name


@dataclass
class ParsedArguments:
    remappings: list[RemapRule] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)
    param_files: list[str] = field(default_factory=list)
    log_levels: dict[str, int] = field(default_factory=dict)
    unparsed: list[str] = field(default_factory=list)

    def merged_with(self, local: ParsedArguments) -> ParsedArguments:
        """Combine global arguments with node-local ones; local rules win."""
        return ParsedArguments(
            remappings=[*local.remappings, *self.remappings],
            parameters={**self.parameters, **local.parameters},
            param_files=[*self.param_files, *local.param_files],
            log_levels={**self.log_levels, **local.log_levels},
            unparsed=[*self.unparsed, *local.unparsed],
        )


def _split_assignment(value: str, flag: str) -> tuple[str, str]:
    lhs, sep, rhs = value.partition(":=")
    if not sep or not lhs or not rhs:
        raise ConfigurationError(f"Expected 'name:=value' after {flag}, got '{value}'")
    return lhs, rhs


def _parse_remap(value: str) -> RemapRule:
    lhs, rhs = _split_assignment(value, "--remap")
    node: str | None = None
    if ":" in lhs:
        node, _, lhs = lhs.partition(":")
        if not node or not lhs:
            raise ConfigurationError(f"Malformed node-specific remap '{value}'")
    return RemapRule(source=lhs, target=rhs, node=node)


def _parse_log_level(value: str) -> tuple[str, int]:
    name = ""
    level = value
    if ":=" in value:
        name, level = _split_assignment(value, "--log-level")
    try:
        return name, LOG_LEVELS[level.lower()]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown log level '{level}'") from exc


def parse_arguments(args: Sequence[str]) -> ParsedArguments:
    """Parse an argument vector into remappings, parameters and log levels."""
    parsed = ParsedArguments()
    tokens = [str(token) for token in args]
    in_ros_args = False
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if token == "--ros-args":
            in_ros_args = True
            continue
        if not in_ros_args:
            parsed.unparsed.append(token)
            continue
        if token == "--":
            in_ros_args = False
            continue
        if token not in ("-r", "--remap", "-p", "--param", "--params-file", "--log-level"):
            raise ConfigurationError(f"Unknown ROS argument '{token}'")
        if index >= len(tokens):
            raise ConfigurationError(f"Argument {token} expects a value")
        value = tokens[index]
        index += 1
        if token in ("-r", "--remap"):
            parsed.remappings.append(_parse_remap(value))
        elif token in ("-p", "--param"):
            name, raw = _split_assignment(value, token)
            parsed.parameters[name] = yaml.safe_load(raw)
        elif token == "--params-file":
            parsed.param_files.append(value)
        else:
            logger_name, level = _parse_log_level(value)
            parsed.log_levels[logger_name] = level
    return parsed


def _flatten(prefix: str, values: dict[str, Any], out: dict[str, Any]) -> None:
    for key, value in values.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            _flatten(name, value, out)
        else:
            out[name] = value


def load_parameter_file(path: str | Path, node_name: str, fully_qualified_name: str) -> dict[str, Any]:
    """
    Read the `ros__parameters` sections of a YAML file that apply to a node.

    Sections are keyed by node name, fully qualified name or the `/**`
    wildcard; wildcard values are applied first so explicit sections win.
    """
    file_path = Path(path)
    try:
        raw = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read parameter file {file_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid parameter file {file_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Parameter file {file_path} must contain a mapping")

    result: dict[str, Any] = {}
    ordered_keys = ("/**", "**", node_name, fully_qualified_name.lstrip("/"), fully_qualified_name)
    for key in ordered_keys:
        section = raw.get(key)
        if not isinstance(section, dict):
            continue
        params = section.get("ros__parameters")
        if isinstance(params, dict):
            _flatten("", params, result)
    logger.debug("Loaded %d parameters for %s from %s", len(result), fully_qualified_name, file_path)
    return result


__all__ = [
    "LOG_LEVELS",
    "ParsedArguments",
    "RemapRule",
    "load_parameter_file",
    "parse_arguments",
]
