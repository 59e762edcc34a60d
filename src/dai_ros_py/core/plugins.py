"""
Composable node discovery and loading.

Packages advertise their components in an ament-style resource index: the
file `<prefix>/share/ament_index/resource_index/<resource_type>/<package>`
holds one `plugin_name;library_path` record per line, with relative library
paths resolved against `<prefix>`. A "library" is a Python module (a `.py`
file or a package directory); it exposes node factories by decorating node
classes with `register_node` or by calling `register_factory`.

The loader is reached only through `LoaderPort`, so the execution context
can be driven by any implementation (tests use in-memory fakes).
"""

from __future__ import annotations

import abc
import hashlib
import importlib.util
import logging
import os
import sys
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

from .errors import LoadError, ParseError, ResourceNotFoundError

if TYPE_CHECKING:
    from .contracts import NodeOptions
    from .node import Node

logger = logging.getLogger(__name__)

DEFAULT_RESOURCE_TYPE = "rclcpp_components"
PREFIX_ENV_VAR = "AMENT_PREFIX_PATH"
RESOURCE_INDEX_SUBFOLDER = Path("share") / "ament_index" / "resource_index"
FACTORY_TEMPLATE = "NodeFactoryTemplate<{}>"


# ----------------------------------------------------------------------
# Resource index
@dataclass(frozen=True)
class ResourceEntry:
    content: str
    base_path: Path


@dataclass(frozen=True)
class ComponentRecord:
    plugin_name: str
    library_path: str


class ResourceIndex:
    """Read-only view over one or more install prefixes."""

    def __init__(
        self,
        prefixes: Sequence[str | Path] | None = None,
        *,
        env_var: str = PREFIX_ENV_VAR,
    ) -> None:
        self._prefixes = [Path(prefix) for prefix in prefixes] if prefixes is not None else None
        self._env_var = env_var

    @property
    def prefixes(self) -> list[Path]:
        if self._prefixes is not None:
            return list(self._prefixes)
        raw = os.environ.get(self._env_var, "")
        return [Path(item) for item in raw.split(os.pathsep) if item]

    def get_resource(self, resource_type: str, package_name: str) -> ResourceEntry:
        """Return the first matching resource; the index is read on every call."""
        if not package_name:
            raise ResourceNotFoundError("Package name must not be empty")
        for prefix in self.prefixes:
            path = prefix / RESOURCE_INDEX_SUBFOLDER / resource_type / package_name
            if path.is_file():
                logger.debug("Found %s resource for %s in %s", resource_type, package_name, prefix)
                return ResourceEntry(content=path.read_text(encoding="utf-8"), base_path=prefix)
        raise ResourceNotFoundError(
            f"Package '{package_name}' has no '{resource_type}' resource "
            f"(searched {len(self.prefixes)} prefixes)"
        )


def parse_component_records(content: str) -> list[ComponentRecord]:
    """
    Parse `plugin_name;library_path` records.

    Blank lines are skipped. Any other line that does not split into exactly
    two non-empty fields invalidates the whole resource.
    """
    records: list[ComponentRecord] = []
    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        parts = line.split(";")
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise ParseError(f"Invalid resource record on line {line_number}: {raw_line!r}")
        records.append(ComponentRecord(parts[0].strip(), parts[1].strip()))
    return records


def resolve_library_path(
    records: Sequence[ComponentRecord], plugin_name: str, base_path: str | Path
) -> Path:
    """Library of the first record naming `plugin_name`, anchored at `base_path`."""
    for record in records:
        if record.plugin_name != plugin_name:
            continue
        library = Path(record.library_path)
        if not library.is_absolute():
            library = Path(base_path) / library
        return library
    raise ResourceNotFoundError(
        f"Plugin '{plugin_name}' not found (available: {[r.plugin_name for r in records]})"
    )


# ----------------------------------------------------------------------
# Factories
class NodeFactory(abc.ABC):
    """Creates node instances of one component class."""

    @abc.abstractmethod
    def create_node_instance(self, options: NodeOptions) -> Node: ...


class NodeFactoryTemplate(NodeFactory):
    """Factory for node classes constructible as `cls(options)`."""

    def __init__(self, node_cls: type[Node]) -> None:
        self.node_cls = node_cls

    def create_node_instance(self, options: NodeOptions) -> Node:
        return self.node_cls(options)


_registry_lock = threading.Lock()
_FACTORIES: dict[str, dict[str, Callable[[], NodeFactory]]] = {}

NodeT = TypeVar("NodeT", bound="type[Node]")


def register_factory(
    class_name: str, factory: Callable[[], NodeFactory], *, module: str
) -> None:
    """Export `factory` from `module` under `class_name`."""
    with _registry_lock:
        exported = _FACTORIES.setdefault(module, {})
        if class_name in exported:
            logger.warning("Factory %s registered twice in %s; replacing", class_name, module)
        exported[class_name] = factory


def register_node(
    node_cls: NodeT | None = None, *, name: str | None = None, module: str | None = None
) -> NodeT | Callable[[NodeT], NodeT]:
    """
    Class decorator exporting a node class as `NodeFactoryTemplate<name>`.

    `name` defaults to the class name; use `@register_node(name="pkg::Cls")`
    to match the plugin names written in the resource index. `module`
    defaults to the defining module; a plugin library re-exporting classes
    defined elsewhere passes its own `__name__`.
    """

    def _decorate(cls: NodeT) -> NodeT:
        plugin_name = name or cls.__name__
        register_factory(
            FACTORY_TEMPLATE.format(plugin_name),
            lambda: NodeFactoryTemplate(cls),
            module=module or cls.__module__,
        )
        return cls

    if node_cls is not None:
        return _decorate(node_cls)
    return _decorate


def exported_factories(module_name: str) -> dict[str, Callable[[], NodeFactory]]:
    with _registry_lock:
        return dict(_FACTORIES.get(module_name, {}))


# ----------------------------------------------------------------------
# Loader port
@dataclass
class LibraryHandle:
    """A loaded plugin library; keep it alive as long as its nodes."""

    path: Path
    module: ModuleType | None = None

    @property
    def module_name(self) -> str:
        return self.module.__name__ if self.module is not None else ""


@runtime_checkable
class LoaderPort(Protocol):
    def load(self, path: Path) -> LibraryHandle: ...

    def list_classes(self, handle: LibraryHandle) -> list[str]: ...

    def instantiate(self, handle: LibraryHandle, class_name: str) -> NodeFactory: ...

    def unload(self, handle: LibraryHandle) -> None: ...


def _module_name_for(path: Path) -> str:
    digest = hashlib.sha1(str(path.resolve()).encode("utf-8")).hexdigest()[:10]
    stem = "".join(ch if ch.isalnum() else "_" for ch in path.stem)
    return f"_dai_ros_py_plugin_{stem}_{digest}"


class PythonModuleLoader:
    """`LoaderPort` backed by importlib; each path is imported once under a private name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._refcounts: dict[str, int] = {}

    def load(self, path: Path) -> LibraryHandle:
        path = Path(path)
        module_name = _module_name_for(path)
        with self._lock:
            module = sys.modules.get(module_name)
            if module is None:
                module = self._import(path, module_name)
            self._refcounts[module_name] = self._refcounts.get(module_name, 0) + 1
        return LibraryHandle(path=path, module=module)

    def _import(self, path: Path, module_name: str) -> ModuleType:
        if path.is_dir():
            init_file = path / "__init__.py"
            if not init_file.is_file():
                raise LoadError(str(path), "directory is not a Python package")
            spec = importlib.util.spec_from_file_location(
                module_name, init_file, submodule_search_locations=[str(path)]
            )
        elif path.is_file():
            spec = importlib.util.spec_from_file_location(module_name, path)
        else:
            raise LoadError(str(path), "no such file or directory")
        if spec is None or spec.loader is None:
            raise LoadError(str(path), "not an importable Python module")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            sys.modules.pop(module_name, None)
            with _registry_lock:
                _FACTORIES.pop(module_name, None)
            raise LoadError(str(path), f"{type(exc).__name__}: {exc}") from exc
        logger.debug("Imported plugin library %s as %s", path, module_name)
        return module

    def list_classes(self, handle: LibraryHandle) -> list[str]:
        return sorted(exported_factories(handle.module_name))

    def instantiate(self, handle: LibraryHandle, class_name: str) -> NodeFactory:
        factories = exported_factories(handle.module_name)
        try:
            return factories[class_name]()
        except KeyError as exc:
            raise ResourceNotFoundError(
                f"Class '{class_name}' is not exported by '{handle.path}'"
            ) from exc

    def unload(self, handle: LibraryHandle) -> None:
        module_name = handle.module_name
        if not module_name:
            return
        with self._lock:
            remaining = self._refcounts.get(module_name, 0) - 1
            if remaining > 0:
                self._refcounts[module_name] = remaining
                return
            self._refcounts.pop(module_name, None)
            sys.modules.pop(module_name, None)
            with _registry_lock:
                _FACTORIES.pop(module_name, None)
        handle.module = None
        logger.debug("Unloaded plugin library %s", handle.path)


def match_factory_class(classes: Sequence[str], plugin_name: str) -> str | None:
    """Return the exported class matching the bare or template-qualified plugin name."""
    qualified = FACTORY_TEMPLATE.format(plugin_name)
    for class_name in classes:
        if class_name in (plugin_name, qualified):
            return class_name
    return None


__all__ = [
    "DEFAULT_RESOURCE_TYPE",
    "FACTORY_TEMPLATE",
    "ComponentRecord",
    "LibraryHandle",
    "LoaderPort",
    "NodeFactory",
    "NodeFactoryTemplate",
    "PythonModuleLoader",
    "ResourceEntry",
    "ResourceIndex",
    "exported_factories",
    "match_factory_class",
    "parse_component_records",
    "register_factory",
    "register_node",
    "resolve_library_path",
]
