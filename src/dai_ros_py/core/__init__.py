"""
Core infrastructure: runtime context, nodes, executors, plugin loading and
the execution context that ties them together.
"""

from .config import ConfigError, ConfigService, LaunchSnapshot
from .context import ExecutionContext, ExecutionState, LoadedPlugin
from .contracts import NodeOptions
from .errors import (
    ConfigurationError,
    DaiRosError,
    LoadError,
    ParseError,
    ResourceNotFoundError,
    TransportError,
)
from .executor import (
    CallbackGroupType,
    ExecutorKind,
    MultiThreadedExecutor,
    SingleThreadedExecutor,
    create_executor,
)
from .node import Node, Timer
from .plugins import (
    LoaderPort,
    NodeFactory,
    NodeFactoryTemplate,
    PythonModuleLoader,
    ResourceIndex,
    register_factory,
    register_node,
)
from .runtime import RuntimeContext, get_default_context

__all__ = [
    "CallbackGroupType",
    "ConfigError",
    "ConfigService",
    "ConfigurationError",
    "DaiRosError",
    "ExecutionContext",
    "ExecutionState",
    "ExecutorKind",
    "LaunchSnapshot",
    "LoadError",
    "LoadedPlugin",
    "LoaderPort",
    "MultiThreadedExecutor",
    "Node",
    "NodeFactory",
    "NodeFactoryTemplate",
    "NodeOptions",
    "ParseError",
    "PythonModuleLoader",
    "ResourceIndex",
    "ResourceNotFoundError",
    "RuntimeContext",
    "SingleThreadedExecutor",
    "Timer",
    "TransportError",
    "create_executor",
    "get_default_context",
    "register_factory",
    "register_node",
]
