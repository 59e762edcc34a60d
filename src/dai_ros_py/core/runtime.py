"""
Process-level middleware context: init / ok / shutdown.

A `RuntimeContext` owns the topic graph and the global arguments every node
created against it inherits. The module-level helpers operate on a shared
default instance, matching the global init of the middleware.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence

from .arguments import ParsedArguments, parse_arguments
from .errors import ConfigurationError
from .transport import TopicGraph

logger = logging.getLogger(__name__)

ROOT_LOGGER_NAME = "dai_ros_py"
NODE_LOGGER_PREFIX = "dai_ros_py.nodes"


class RuntimeContext:
    """Lifecycle of one middleware instance."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ok = False
        self._graph: TopicGraph | None = None
        self._arguments = ParsedArguments()
        self._shutdown_callbacks: list[Callable[[], None]] = []

    def init(self, args: Sequence[str] | None = None) -> None:
        """Parse the argument vector and bring the context up."""
        with self._lock:
            if self._ok:
                raise ConfigurationError("Runtime context is already initialized")
            self._arguments = parse_arguments(list(args or ()))
            self._graph = TopicGraph()
            self._ok = True
        self._apply_log_levels()
        logger.info(
            "Runtime initialized (%d remap rules, %d parameters)",
            len(self._arguments.remappings),
            len(self._arguments.parameters),
        )

    def ok(self) -> bool:
        return self._ok

    def shutdown(self) -> None:
        with self._lock:
            if not self._ok:
                return
            self._ok = False
            callbacks = list(self._shutdown_callbacks)
            self._shutdown_callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Shutdown callback %s failed", callback)
        logger.info("Runtime shut down")

    def on_shutdown(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._shutdown_callbacks.append(callback)

    @property
    def graph(self) -> TopicGraph:
        if self._graph is None:
            raise ConfigurationError("Runtime context has not been initialized")
        return self._graph

    @property
    def global_arguments(self) -> ParsedArguments:
        return self._arguments

    def _apply_log_levels(self) -> None:
        for name, level in self._arguments.log_levels.items():
            if not name:
                logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)
            elif name.startswith(ROOT_LOGGER_NAME):
                logging.getLogger(name).setLevel(level)
            else:
                logging.getLogger(f"{NODE_LOGGER_PREFIX}.{name}").setLevel(level)


_default_context = RuntimeContext()


def get_default_context() -> RuntimeContext:
    return _default_context


def init(args: Sequence[str] | None = None) -> None:
    _default_context.init(args)


def ok() -> bool:
    return _default_context.ok()


def shutdown() -> None:
    _default_context.shutdown()


__all__ = [
    "NODE_LOGGER_PREFIX",
    "ROOT_LOGGER_NAME",
    "RuntimeContext",
    "get_default_context",
    "init",
    "ok",
    "shutdown",
]
