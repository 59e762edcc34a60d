"""
Executors that drive node callbacks.

Two strategies are available, selected once through `ExecutorKind`:

* `SingleThreadedExecutor` runs every ready callback inline on the spinning
  thread, so callbacks never overlap.
* `MultiThreadedExecutor` hands ready callbacks to a thread pool. Callback
  groups decide what may overlap: members of a mutually exclusive group run
  one at a time, members of a reentrant group run concurrently.

`spin()` blocks until its cancellation token is set (or the runtime shuts
down). Cancellation is checked between callbacks only; a running callback is
never interrupted.
"""

from __future__ import annotations

import abc
import enum
import functools
import logging
import os
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .node import Node
    from .runtime import RuntimeContext

logger = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 0.1


class ExecutorKind(str, enum.Enum):
    SINGLE_THREADED = "single_threaded"
    MULTI_THREADED = "multi_threaded"


class CallbackGroupType(str, enum.Enum):
    MUTUALLY_EXCLUSIVE = "mutually_exclusive"
    REENTRANT = "reentrant"


class CallbackGroup(abc.ABC):
    """Admission control for the callbacks that belong to the group."""

    type: CallbackGroupType

    @abc.abstractmethod
    def try_acquire(self) -> bool:
        """Reserve the right to run one callback; never blocks."""

    @abc.abstractmethod
    def release(self) -> None:
        """Return a reservation obtained through `try_acquire`."""

    @property
    def busy(self) -> bool:
        """True while no further callback of the group can be admitted."""
        return False


class MutuallyExclusiveCallbackGroup(CallbackGroup):
    type = CallbackGroupType.MUTUALLY_EXCLUSIVE

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


class ReentrantCallbackGroup(CallbackGroup):
    type = CallbackGroupType.REENTRANT

    def try_acquire(self) -> bool:
        return True

    def release(self) -> None:
        return None


def create_callback_group(group_type: CallbackGroupType | str) -> CallbackGroup:
    if CallbackGroupType(group_type) is CallbackGroupType.REENTRANT:
        return ReentrantCallbackGroup()
    return MutuallyExclusiveCallbackGroup()


@dataclass(frozen=True)
class WorkItem:
    """A callback that has been admitted by its group and is ready to run."""

    callback: Callable[[], object]
    group: CallbackGroup
    label: str


class Executor(abc.ABC):
    """Common node bookkeeping and work selection for both strategies."""

    kind: ExecutorKind

    def __init__(self, *, runtime: RuntimeContext | None = None) -> None:
        self._runtime = runtime
        self._nodes: list[Node] = []
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._cancel_token: threading.Event | None = None
        self._cursor = 0
        self._stats_lock = threading.Lock()
        self.callbacks_executed = 0
        self.callbacks_failed = 0
        if runtime is not None:
            runtime.on_shutdown(self.wake)

    @property
    def nodes(self) -> list[Node]:
        with self._lock:
            return list(self._nodes)

    def add_node(self, node: Node) -> None:
        """Register a node; nodes stay attached for the executor's lifetime."""
        with self._lock:
            if node in self._nodes:
                raise ConfigurationError(
                    f"Node '{node.fully_qualified_name}' has already been added to this executor"
                )
            self._nodes.append(node)
        node.add_wake_listener(self.wake)
        logger.debug("Added node %s to %s executor", node.fully_qualified_name, self.kind.value)
        self.wake()

    def wake(self) -> None:
        self._wake.set()

    def cancel(self) -> None:
        """Ask the active spin loop to return; safe to call repeatedly."""
        token = self._cancel_token
        if token is not None:
            token.set()
        self.wake()

    def spin(self, cancel_token: threading.Event | None = None) -> None:
        """Process callbacks until `cancel_token` is set or the runtime shuts down."""
        token = cancel_token or threading.Event()
        self._cancel_token = token
        logger.info("%s executor spinning %d nodes", self.kind.value, len(self.nodes))
        try:
            self._spin(token)
        finally:
            logger.info("%s executor stopped", self.kind.value)

    def spin_once(self, timeout: float | None = None) -> bool:
        """Run at most one ready callback on the calling thread."""
        self._wake.clear()
        item = self._next_work(time.monotonic())
        if item is None:
            self._wake.wait(timeout)
            item = self._next_work(time.monotonic())
        if item is None:
            return False
        self._execute(item)
        return True

    @abc.abstractmethod
    def _spin(self, token: threading.Event) -> None: ...

    def _should_run(self, token: threading.Event) -> bool:
        if token.is_set():
            return False
        return self._runtime is None or self._runtime.ok()

    def _next_work(self, now: float) -> WorkItem | None:
        nodes = self.nodes
        if not nodes:
            return None
        start = self._cursor % len(nodes)
        self._cursor += 1
        for node in nodes[start:] + nodes[:start]:
            for timer in node.timers:
                if not timer.is_ready(now):
                    continue
                if not timer.callback_group.try_acquire():
                    continue
                timer.mark_called(now)
                return WorkItem(timer.callback, timer.callback_group, f"timer@{node.name}")
            for subscription in node.subscriptions:
                if not subscription.has_pending:
                    continue
                if not subscription.callback_group.try_acquire():
                    continue
                msg = subscription.take()
                if msg is None:
                    subscription.callback_group.release()
                    continue
                return WorkItem(
                    functools.partial(subscription.callback, msg),
                    subscription.callback_group,
                    f"subscription {subscription.topic}@{node.name}",
                )
        return None

    def _time_until_next_timer(self, now: float) -> float:
        # Timers held back by a busy group are woken by the release in `_execute`.
        delay = MAX_WAIT_SECONDS
        for node in self.nodes:
            for timer in node.timers:
                if timer.cancelled or timer.callback_group.busy:
                    continue
                delay = min(delay, max(0.0, timer.next_call - now))
        return delay

    def _wait_for_work(self) -> None:
        self._wake.wait(self._time_until_next_timer(time.monotonic()))

    def _execute(self, item: WorkItem) -> None:
        try:
            item.callback()
        except Exception:
            with self._stats_lock:
                self.callbacks_failed += 1
            logger.exception("Callback %s raised", item.label)
        else:
            with self._stats_lock:
                self.callbacks_executed += 1
        finally:
            item.group.release()
            self.wake()


class SingleThreadedExecutor(Executor):
    kind = ExecutorKind.SINGLE_THREADED

    def _spin(self, token: threading.Event) -> None:
        while self._should_run(token):
            self._wake.clear()
            item = self._next_work(time.monotonic())
            if item is None:
                self._wait_for_work()
                continue
            self._execute(item)


class MultiThreadedExecutor(Executor):
    kind = ExecutorKind.MULTI_THREADED

    def __init__(
        self, *, runtime: RuntimeContext | None = None, num_threads: int | None = None
    ) -> None:
        super().__init__(runtime=runtime)
        if num_threads is not None and num_threads <= 0:
            raise ConfigurationError("num_threads must be positive")
        self.num_threads = num_threads or os.cpu_count() or 2

    def _spin(self, token: threading.Event) -> None:
        slots = threading.BoundedSemaphore(self.num_threads)

        def _on_done(_future: Future[None]) -> None:
            slots.release()
            self.wake()

        with ThreadPoolExecutor(
            max_workers=self.num_threads, thread_name_prefix="dai-ros-py-worker"
        ) as pool:
            while self._should_run(token):
                self._wake.clear()
                if not slots.acquire(blocking=False):
                    # `_on_done` wakes the loop once a worker frees its slot.
                    self._wake.wait(MAX_WAIT_SECONDS)
                    continue
                item = self._next_work(time.monotonic())
                if item is None:
                    slots.release()
                    self._wait_for_work()
                    continue
                future = pool.submit(self._execute, item)
                future.add_done_callback(_on_done)


def create_executor(
    kind: ExecutorKind | str,
    *,
    runtime: RuntimeContext | None = None,
    num_threads: int | None = None,
) -> Executor:
    """Build the executor for `kind`; unknown kinds raise `ConfigurationError`."""
    try:
        resolved = ExecutorKind(kind)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown executor type {kind!r}") from exc
    if resolved is ExecutorKind.SINGLE_THREADED:
        if num_threads not in (None, 1):
            logger.warning("num_threads=%s ignored by the single-threaded executor", num_threads)
        return SingleThreadedExecutor(runtime=runtime)
    return MultiThreadedExecutor(runtime=runtime, num_threads=num_threads)


__all__ = [
    "CallbackGroup",
    "CallbackGroupType",
    "Executor",
    "ExecutorKind",
    "MultiThreadedExecutor",
    "MutuallyExclusiveCallbackGroup",
    "ReentrantCallbackGroup",
    "SingleThreadedExecutor",
    "WorkItem",
    "create_callback_group",
    "create_executor",
]
