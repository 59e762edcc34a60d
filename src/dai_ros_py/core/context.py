"""
Execution context: one executor, its nodes, its plugins and its spin thread.

The context is the caller-facing lifecycle manager. It initializes the
runtime, builds the executor chosen at `initialize`, registers nodes
(directly constructed or loaded from a component library) and spins the
executor on a background daemon thread. The thread receives a cancellation
token by value; the context keeps only the token, so `cancel()` is a signal
and never a join.

State machine::

    UNINITIALIZED --initialize--> INITIALIZED --start--> RUNNING
                                       |                    |
                                       +------cancel--------+--> STOPPED
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass

from .contracts import NodeOptions
from .errors import ConfigurationError, DaiRosError, ResourceNotFoundError
from .executor import Executor, ExecutorKind, create_executor
from .node import Node
from .plugins import (
    DEFAULT_RESOURCE_TYPE,
    LibraryHandle,
    LoaderPort,
    PythonModuleLoader,
    ResourceIndex,
    match_factory_class,
    parse_component_records,
    resolve_library_path,
)
from .runtime import RuntimeContext, get_default_context

logger = logging.getLogger(__name__)

SHUTDOWN_WAIT_SECONDS = 2.0


class ExecutionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class LoadedPlugin:
    """A plugin node paired with the library its code lives in."""

    owner: LibraryHandle
    node: Node
    package_name: str
    plugin_name: str
    class_name: str


class ExecutionContext:
    """Own and drive static and dynamically loaded nodes under one executor."""

    def __init__(
        self,
        *,
        runtime: RuntimeContext | None = None,
        loader: LoaderPort | None = None,
        resource_index: ResourceIndex | None = None,
        resource_type: str = DEFAULT_RESOURCE_TYPE,
    ) -> None:
        self._runtime = runtime or get_default_context()
        self._loader = loader or PythonModuleLoader()
        self._resource_index = resource_index or ResourceIndex()
        self._resource_type = resource_type
        self._lock = threading.RLock()
        self._state = ExecutionState.UNINITIALIZED
        self._mode: ExecutorKind | None = None
        self._executor: Executor | None = None
        self._nodes: list[Node] = []
        self._plugins: list[LoadedPlugin] = []
        self._cancel_token: threading.Event | None = None
        self._spin_finished = threading.Event()
        self._closed = False

    # ---- views --------------------------------------------------------
    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def mode(self) -> ExecutorKind | None:
        return self._mode

    @property
    def runtime(self) -> RuntimeContext:
        return self._runtime

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            raise ConfigurationError("ExecutionContext.initialize() must be called first")
        return self._executor

    @property
    def nodes(self) -> list[Node]:
        """Every registered node, plugin nodes included, in registration order."""
        with self._lock:
            return list(self._nodes)

    @property
    def plugins(self) -> list[LoadedPlugin]:
        with self._lock:
            return list(self._plugins)

    # ---- lifecycle ----------------------------------------------------
    def initialize(
        self,
        args: Sequence[str] | None = None,
        mode: ExecutorKind | str = ExecutorKind.SINGLE_THREADED,
        *,
        num_threads: int | None = None,
    ) -> None:
        """Initialize the runtime with `args` and build the executor for `mode`."""
        with self._lock:
            if self._state is not ExecutionState.UNINITIALIZED:
                raise ConfigurationError(f"ExecutionContext already {self._state.value}")
            try:
                kind = ExecutorKind(mode)
            except ValueError as exc:
                logger.error("Unknown executor type %r", mode)
                raise ConfigurationError(f"Unknown executor type {mode!r}") from exc
            if not self._runtime.ok():
                self._runtime.init(args)
            elif args:
                logger.warning("Runtime already initialized; ignoring %d arguments", len(args))
            self._executor = create_executor(
                kind, runtime=self._runtime, num_threads=num_threads
            )
            self._mode = kind
            self._state = ExecutionState.INITIALIZED
        logger.info("Execution context initialized with %s executor", kind.value)

    def add_node(self, node: Node) -> None:
        """Register an already constructed node with the executor."""
        with self._lock:
            executor = self._require_executor("add_node")
            executor.add_node(node)
            self._nodes.append(node)
        logger.info("Registered node %s", node.fully_qualified_name)

    def add_composable_node(
        self,
        package_name: str,
        plugin_name: str,
        options: NodeOptions | None = None,
    ) -> Node:
        """
        Load `plugin_name` from the component library advertised by `package_name`.

        Failures are logged here and raised to the caller; nothing is
        registered unless every step succeeds.
        """
        with self._lock:
            executor = self._require_executor("add_composable_node")
            options = options or NodeOptions()
            try:
                entry = self._resource_index.get_resource(self._resource_type, package_name)
                records = parse_component_records(entry.content)
                library_path = resolve_library_path(records, plugin_name, entry.base_path)
            except DaiRosError as exc:
                logger.error(
                    "Cannot resolve plugin '%s' in package '%s': %s", plugin_name, package_name, exc
                )
                raise

            logger.info("Loading library '%s'", library_path)
            try:
                handle = self._loader.load(library_path)
            except DaiRosError as exc:
                logger.error("Failed to load library '%s'. Reason: %s", library_path, exc)
                raise

            try:
                classes = self._loader.list_classes(handle)
                for exported in classes:
                    logger.debug("Found class: %s", exported)
                class_name = match_factory_class(classes, plugin_name)
                if class_name is None:
                    logger.error(
                        "Failed to find class '%s' in library '%s'", plugin_name, library_path
                    )
                    raise ResourceNotFoundError(
                        f"Class '{plugin_name}' not found in library '{library_path}'"
                    )
                factory = self._loader.instantiate(handle, class_name)
                node = factory.create_node_instance(options)
                logger.info("Loaded class '%s' from library '%s'", plugin_name, library_path)
            except Exception:
                self._loader.unload(handle)
                raise

            try:
                executor.add_node(node)
            except Exception:
                node.destroy()
                self._loader.unload(handle)
                raise
            self._nodes.append(node)
            self._plugins.append(
                LoadedPlugin(
                    owner=handle,
                    node=node,
                    package_name=package_name,
                    plugin_name=plugin_name,
                    class_name=class_name,
                )
            )
        logger.info("Registered component %s from %s", node.fully_qualified_name, package_name)
        return node

    def start(self) -> None:
        """Spin the executor on a background daemon thread and return immediately."""
        with self._lock:
            executor = self._require_executor("start")
            if self._state is ExecutionState.RUNNING:
                raise ConfigurationError("ExecutionContext already started")
            if self._state is ExecutionState.STOPPED:
                raise ConfigurationError("ExecutionContext was cancelled and cannot restart")
            token = threading.Event()
            self._cancel_token = token
            self._spin_finished.clear()
            thread = threading.Thread(
                target=self._spin,
                args=(executor, token),
                name=f"dai-ros-py-{executor.kind.value}",
                daemon=True,
            )
            thread.start()
            self._state = ExecutionState.RUNNING
        logger.info("Execution context started (%d nodes)", len(self._nodes))

    def _spin(self, executor: Executor, token: threading.Event) -> None:
        try:
            executor.spin(token)
        except Exception:
            logger.exception("Executor spin loop crashed")
            with self._lock:
                self._state = ExecutionState.STOPPED
        finally:
            self._spin_finished.set()

    def cancel(self) -> None:
        """Request the spin loop to stop; calling it again is a no-op."""
        with self._lock:
            if self._state is ExecutionState.UNINITIALIZED:
                raise ConfigurationError("ExecutionContext.initialize() must be called first")
            if self._state is ExecutionState.STOPPED:
                return
            if self._cancel_token is not None:
                self._cancel_token.set()
            if self._executor is not None:
                self._executor.wake()
            self._state = ExecutionState.STOPPED
        logger.info("Execution context cancelled")

    def wait_until_stopped(self, timeout: float | None = None) -> bool:
        """Block until the spin loop has returned; True when it has."""
        if self._cancel_token is None:
            return True
        return self._spin_finished.wait(timeout)

    def shutdown(self) -> None:
        """Cancel, destroy plugin nodes before their libraries, then stop the runtime."""
        with self._lock:
            if self._closed:
                return
            if self._state is not ExecutionState.UNINITIALIZED:
                self.cancel()
            self._closed = True
        if not self.wait_until_stopped(SHUTDOWN_WAIT_SECONDS):
            logger.warning(
                "Spin loop still busy after %.1fs; continuing shutdown", SHUTDOWN_WAIT_SECONDS
            )
        with self._lock:
            plugins = list(reversed(self._plugins))
            self._plugins.clear()
        for plugin in plugins:
            plugin.node.destroy()
            self._loader.unload(plugin.owner)
        self._runtime.shutdown()
        logger.info("Execution context shut down")

    def _require_executor(self, operation: str) -> Executor:
        if self._closed:
            raise ConfigurationError(f"Cannot {operation}: ExecutionContext has been shut down")
        if self._executor is None:
            raise ConfigurationError(
                f"Cannot {operation}: ExecutionContext.initialize() must be called first"
            )
        return self._executor

    def stats(self) -> dict[str, int]:
        executor = self._executor
        return {
            "nodes": len(self.nodes),
            "plugins": len(self.plugins),
            "callbacks_executed": executor.callbacks_executed if executor else 0,
            "callbacks_failed": executor.callbacks_failed if executor else 0,
        }


__all__ = ["ExecutionContext", "ExecutionState", "LoadedPlugin"]
