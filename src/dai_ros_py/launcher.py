"""
CLI entrypoint that launches composable nodes under one execution context.

The launcher loads the Dynaconf configuration (optional when every component
is given on the command line), initializes the context with the configured
executor, loads each component from the resource index, optionally exposes
Prometheus metrics and spins until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import signal
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from pydantic import ValidationError

from .core.config import (
    CONFIG_FILENAMES,
    DEFAULT_CONFIG_DIR,
    ComponentSettings,
    ConfigError,
    ConfigService,
    LaunchSnapshot,
    LoggingSettings,
)
from .core.context import ExecutionContext
from .core.errors import DaiRosError
from .core.executor import ExecutorKind
from .core.plugins import LoaderPort, ResourceIndex
from .core.runtime import RuntimeContext
from .modules.components import BUILTIN_PREFIX
from .modules.status import PrometheusExporter

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

ExporterFactory = Callable[[ExecutionContext, LaunchSnapshot], PrometheusExporter]


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 5,
    backup_count: int = 5,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing).resolve() == log_file.resolve():
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def configure_logging(settings: LoggingSettings) -> None:
    logging.basicConfig(level=getattr(logging, settings.level, logging.INFO), format=LOG_FORMAT)
    if settings.file is not None:
        _ensure_rotating_file_handler(
            settings.file, max_mb=settings.max_mb, backup_count=settings.backup_count
        )


def load_snapshot(config_dir: Path | None) -> LaunchSnapshot:
    """Validated configuration; built-in defaults when no config dir exists."""
    if config_dir is None and not any(
        (DEFAULT_CONFIG_DIR / name).exists() for name in CONFIG_FILENAMES
    ):
        LOGGER.debug("No configuration in %s; using defaults", DEFAULT_CONFIG_DIR)
        return LaunchSnapshot()
    return ConfigService(config_dir=config_dir).snapshot


def apply_cli_overrides(snapshot: LaunchSnapshot, args: argparse.Namespace) -> LaunchSnapshot:
    """Fold command line flags into the configuration snapshot."""
    context = snapshot.context
    context_updates: dict[str, object] = {}
    if args.mode:
        context_updates["mode"] = ExecutorKind(args.mode)
    if args.num_threads is not None:
        context_updates["num_threads"] = args.num_threads
    if args.ros_args:
        context_updates["args"] = [*context.args, *args.ros_args]
    updates: dict[str, object] = {}
    if context_updates:
        updates["context"] = context.model_copy(update=context_updates)
    if args.components:
        updates["components"] = [
            *snapshot.components,
            *(ComponentSettings.from_cli(spec) for spec in args.components),
        ]
    if args.log_level:
        try:
            updates["logging"] = LoggingSettings.model_validate(
                {**snapshot.logging.model_dump(), "level": args.log_level}
            )
        except ValidationError as exc:
            raise ConfigError(f"Invalid --log-level {args.log_level!r}: {exc}") from exc
    if args.no_metrics:
        updates["metrics"] = snapshot.metrics.model_copy(update={"enabled": False})
    return snapshot.model_copy(update=updates) if updates else snapshot


def resource_prefixes(snapshot: LaunchSnapshot) -> list[Path]:
    """Configured prefixes (or AMENT_PREFIX_PATH), then the bundled components."""
    configured = snapshot.resource_index.prefixes
    prefixes = list(configured) if configured is not None else ResourceIndex().prefixes
    if BUILTIN_PREFIX not in prefixes:
        prefixes.append(BUILTIN_PREFIX)
    return prefixes


def build_context(
    snapshot: LaunchSnapshot,
    *,
    runtime: RuntimeContext | None = None,
    loader: LoaderPort | None = None,
) -> ExecutionContext:
    context = ExecutionContext(
        runtime=runtime,
        loader=loader,
        resource_index=ResourceIndex(resource_prefixes(snapshot)),
        resource_type=snapshot.resource_index.resource_type,
    )
    context.initialize(
        snapshot.context.args,
        snapshot.context.mode,
        num_threads=snapshot.context.num_threads,
    )
    return context


def load_components(context: ExecutionContext, components: Sequence[ComponentSettings]) -> int:
    """Register every component; failures are logged and skipped."""
    added = 0
    for component in components:
        try:
            node = context.add_composable_node(
                component.package, component.plugin, component.options
            )
        except DaiRosError as exc:
            LOGGER.warning(
                "Skipping component %s:%s: %s", component.package, component.plugin, exc
            )
            continue
        added += 1
        LOGGER.info(
            "Registered component %s:%s as %s",
            component.package,
            component.plugin,
            node.fully_qualified_name,
        )
    return added


def _default_exporter_factory(
    context: ExecutionContext, snapshot: LaunchSnapshot
) -> PrometheusExporter:
    metrics = snapshot.metrics
    return PrometheusExporter(
        context, port=metrics.port, addr=metrics.addr, namespace=metrics.namespace
    )


def run(
    snapshot: LaunchSnapshot,
    *,
    stop_event: threading.Event | None = None,
    runtime: RuntimeContext | None = None,
    loader: LoaderPort | None = None,
    exporter_factory: ExporterFactory | None = None,
    install_signal_handlers: bool = True,
) -> ExecutionContext:
    """Launch the configured components and block until `stop_event` is set."""

    context = build_context(snapshot, runtime=runtime, loader=loader)
    exporter: PrometheusExporter | None = None
    try:
        added = load_components(context, snapshot.components)
        if added == 0:
            raise RuntimeError("No components were registered; nothing to run.")

        if snapshot.metrics.enabled:
            exporter = (exporter_factory or _default_exporter_factory)(context, snapshot)
            exporter.start()

        stop_event = stop_event or threading.Event()
        if install_signal_handlers:
            _install_signal_handlers(stop_event)

        context.start()
        LOGGER.info(
            "dai_ros_py running %d components on the %s executor. Press Ctrl+C to stop.",
            added,
            snapshot.context.mode.value,
        )
        stop_event.wait()
    finally:
        if exporter is not None:
            exporter.stop()
        context.shutdown()
    return context


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _request_shutdown(signum: int, _frame: object) -> None:
        if not stop_event.is_set():
            LOGGER.info("Received %s - beginning graceful shutdown.", signal.Signals(signum).name)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _request_shutdown)


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Launch composable nodes with dai_ros_py.")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: ./config).",
    )
    parser.add_argument(
        "--mode",
        choices=[kind.value for kind in ExecutorKind],
        default=None,
        help="Executor strategy (overrides context.mode).",
    )
    parser.add_argument(
        "--num-threads",
        type=int,
        default=None,
        help="Worker threads of the multi-threaded executor.",
    )
    parser.add_argument(
        "--component",
        dest="components",
        action="append",
        default=[],
        metavar="PACKAGE:PLUGIN",
        help="Component to load, e.g. dai_ros_py:dai_ros_py::Producer (repeatable).",
    )
    parser.add_argument(
        "--arg",
        dest="ros_args",
        action="append",
        default=[],
        metavar="ARG",
        help="Global runtime argument, e.g. --arg=--ros-args (repeatable).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Python logging level (default: logging.level from config, else INFO).",
    )
    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Do not start the Prometheus exporter.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        snapshot = apply_cli_overrides(load_snapshot(args.config_dir), args)
        configure_logging(snapshot.logging)
        run(snapshot)
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except ConfigError as exc:
        logging.basicConfig(format=LOG_FORMAT)
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    except DaiRosError as exc:
        LOGGER.error("Launch failed: %s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("dai_ros_py launcher crashed.")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = [
    "apply_cli_overrides",
    "build_context",
    "load_components",
    "load_snapshot",
    "main",
    "parse_args",
    "resource_prefixes",
    "run",
]
