"""Watch the filesystem and trigger builds when relevant files change."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import inspect
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from wasmbuildkit.ws import State

log = logging.getLogger(__name__)

BLACKLIST = frozenset({".git", ".DS_Store"})
"""Path segments that are never watched."""

DEBOUNCE_DURATION = 0.025
"""Seconds of quiet before collected filesystem events are delivered."""

WATCHER_COOLDOWN = 1.0
"""Seconds after a build during which change events are ignored.

Copying files, among other operations, reports modifications even though the
content did not change; without a cooldown a build could trigger itself forever.
"""


class ChangeKind(enum.Enum):
    """The kind of change a filesystem event reports."""

    ANY = "any"
    ACCESS = "access"
    CREATE = "create"
    REMOVE = "remove"
    MODIFY_ANY = "modify-any"
    MODIFY_DATA = "modify-data"
    MODIFY_METADATA = "modify-metadata"
    MODIFY_WRITE_TIME = "modify-write-time"
    MODIFY_NAME = "modify-name"
    OTHER = "other"


_RELEVANT_KINDS = frozenset(
    {
        ChangeKind.MODIFY_NAME,
        ChangeKind.MODIFY_DATA,
        ChangeKind.MODIFY_WRITE_TIME,
        ChangeKind.MODIFY_ANY,
        ChangeKind.CREATE,
        ChangeKind.REMOVE,
    }
)


@dataclass(frozen=True)
class FsEvent:
    """A debounced filesystem event: what happened and to which paths."""

    kind: ChangeKind
    paths: tuple[Path, ...]


def _convert(event: FileSystemEvent) -> FsEvent | None:
    paths = [Path(os.fsdecode(event.src_path))]
    match event.event_type:
        case "created":
            kind = ChangeKind.CREATE
        case "deleted":
            kind = ChangeKind.REMOVE
        case "moved":
            kind = ChangeKind.MODIFY_NAME
            dest = getattr(event, "dest_path", None)
            if dest:
                paths.append(Path(os.fsdecode(dest)))
        case "modified":
            kind = ChangeKind.MODIFY_ANY if event.is_directory else ChangeKind.MODIFY_DATA
        case "opened" | "closed" | "closed_no_write":
            kind = ChangeKind.ACCESS
        case _:
            kind = ChangeKind.OTHER
    return FsEvent(kind, tuple(paths))


class _Debouncer(FileSystemEventHandler):
    """Collects events and delivers them once no new event arrived for a while."""

    def __init__(self, deliver: Callable[[FsEvent], None], delay: float) -> None:
        super().__init__()
        self._deliver = deliver
        self._delay = delay
        self._lock = threading.Lock()
        self._pending: list[FsEvent] = []
        self._timer: threading.Timer | None = None

    def on_any_event(self, event: FileSystemEvent) -> None:
        converted = _convert(event)
        if converted is None:
            return
        with self._lock:
            if converted not in self._pending:
                self._pending.append(converted)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._flush)
            self._timer.daemon = True
            self._timer.start()

    def _flush(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, []
            self._timer = None
        for event in pending:
            self._deliver(event)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()


def _seconds(value: float | timedelta) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


def _error_source(error: BaseException) -> BaseException | None:
    if error.__cause__ is not None:
        return error.__cause__
    if error.__suppress_context__:
        return None
    return error.__context__


def build_error_reason(error: BaseException) -> str:
    """Describe a build error together with the chain of errors that caused it."""
    lines = [f"{error}\n\n"]
    current = _error_source(error)
    index = 0
    while current is not None:
        if index == 0:
            lines.append("Caused by:\n")
        lines.append(f"\t{index}: {current}\n")
        index += 1
        current = _error_source(current)
    return "".join(lines)


BuildFn = Callable[[], Awaitable[None] | None]


class WatchSystem:
    """Runs builds in response to filesystem changes below the watched paths."""

    def __init__(
        self,
        paths: Iterable[str | os.PathLike[str]],
        build: BuildFn,
        ignored_paths: Iterable[str | os.PathLike[str]] = (),
        poll: float | timedelta | None = None,
        enable_cooldown: bool = True,
        no_error_reporting: bool = False,
        ws_state: Callable[[State], Any] | None = None,
    ) -> None:
        self._build_fn = build
        self._build_lock = asyncio.Lock()
        self.ignored_paths: list[Path] = [Path(p) for p in ignored_paths]
        self.watcher_cooldown = WATCHER_COOLDOWN if enable_cooldown else None
        self.no_error_reporting = no_error_reporting
        self.ws_state = ws_state
        log.debug("Build cooldown: %s", self.watcher_cooldown)

        self._watch_queue: asyncio.Queue[FsEvent] = asyncio.Queue()
        self._build_queue: asyncio.Queue[BaseException | None] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[None]] = set()

        now = time.monotonic()
        self.last_build_started = now
        self.last_build_finished = now
        self.last_change = now

        self._debouncer = _Debouncer(self._deliver, DEBOUNCE_DURATION)
        if poll is None:
            self._observer = Observer()
        else:
            interval = _seconds(poll)
            log.info("Running in polling mode: %ss", interval)
            self._observer = PollingObserver(timeout=interval)
        for raw in paths:
            path = Path(raw)
            if not path.exists():
                raise FileNotFoundError(
                    f"failed to watch {str(path)!r} for file system changes"
                )
            self._observer.schedule(self._debouncer, str(path), recursive=True)

    def _deliver(self, event: FsEvent) -> None:
        loop = self._loop
        if loop is None:
            return
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(self._watch_queue.put_nowait, event)

    async def build(self) -> None:
        """Run one build, raising whatever the build raises."""
        async with self._build_lock:
            result = self._build_fn()
            if inspect.isawaitable(result):
                await result

    async def run(self, shutdown: asyncio.Event) -> None:
        """Respond to changes and build completions until ``shutdown`` is set."""
        self._loop = asyncio.get_running_loop()
        self._observer.start()
        shutdown_task = asyncio.ensure_future(shutdown.wait())
        watch_task = asyncio.ensure_future(self._watch_queue.get())
        build_task = asyncio.ensure_future(self._build_queue.get())
        try:
            while True:
                done, _ = await asyncio.wait(
                    {shutdown_task, watch_task, build_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if shutdown_task in done:
                    break
                if watch_task in done:
                    await self.handle_watch_event(watch_task.result())
                    watch_task = asyncio.ensure_future(self._watch_queue.get())
                if build_task in done:
                    await self.build_complete(build_task.result())
                    build_task = asyncio.ensure_future(self._build_queue.get())
        finally:
            for task in (shutdown_task, watch_task, build_task):
                if not task.done():
                    task.cancel()
            self._loop = None
            self._debouncer.cancel()
            self._observer.stop()
            self._observer.join(timeout=5)
            log.debug("watcher system has shut down")

    async def build_complete(self, error: BaseException | None) -> None:
        """Record the end of a build, report it, and start another if needed."""
        log.debug("Build reported completion")
        self.last_build_finished = time.monotonic()
        if self.ws_state is not None:
            if error is None:
                self.ws_state(State.ok())
            elif not self.no_error_reporting:
                self.ws_state(State.failed(build_error_reason(error)))
        self._check_spawn_build()

    def is_build_active(self) -> bool:
        """True while a started build has not reported completion."""
        return self.last_build_started > self.last_build_finished

    def _spawn_build(self) -> None:
        self.last_build_started = time.monotonic()

        async def run_build() -> None:
            result: BaseException | None = None
            try:
                await self.build()
            except Exception as err:
                result = err
            self._build_queue.put_nowait(result)

        task = asyncio.ensure_future(run_build())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _check_spawn_build(self) -> None:
        if self.last_change <= self.last_build_started:
            log.debug("No changes since the last build was started")
            return
        log.debug("Changes since the last build was started, checking cooldown")
        if self.watcher_cooldown is not None:
            since_build = max(0.0, self.last_change - self.last_build_finished)
            if since_build < self.watcher_cooldown:
                log.debug(
                    "Cooldown is still active: %.3fs remaining",
                    self.watcher_cooldown - since_build,
                )
                return
        self._spawn_build()

    async def handle_watch_event(self, event: FsEvent) -> None:
        """Note a relevant change and start a build unless one is running."""
        log.debug("change detected in %s of type %s", event.paths, event.kind)
        if not self.is_event_relevant(event):
            log.debug("Event not relevant, skipping")
            return
        self.last_change = time.monotonic()
        if self.is_build_active():
            log.debug("Build is active, postponing start")
            return
        self._check_spawn_build()

    def is_event_relevant(self, event: FsEvent) -> bool:
        """True if the event changes an existing path that is neither ignored nor blacklisted."""
        if event.kind not in _RELEVANT_KINDS:
            return False
        for raw in event.paths:
            try:
                path = Path(raw).resolve(strict=True)
            except OSError:
                # Removed resources, such as staging entries, cannot be resolved.
                continue
            if any(
                ancestor in self.ignored_paths for ancestor in (path, *path.parents)
            ):
                continue
            if any(part in BLACKLIST for part in path.parts):
                continue
            log.debug("accepted change in %s of type %s", path, event.kind)
            return True
        return False

    def update_ignore_list(self, path: str | os.PathLike[str]) -> None:
        """Ignore changes below ``path`` from now on."""
        candidate = Path(path)
        try:
            candidate = candidate.resolve(strict=True)
        except OSError:
            pass
        if candidate not in self.ignored_paths:
            self.ignored_paths.append(candidate)