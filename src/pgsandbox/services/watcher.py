"""Change watching and serialized migration execution for pgsandbox."""

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from pgsandbox.models import ChangeEvent


class MigrationWorker:
    """Owns a migration manager and runs every call on one dedicated thread.

    ``apply`` from start-up and ``update`` from hot-reload events are queued
    on the same thread, so two migrations never run against the schema at
    the same time. Work already started finishes even if the caller gives up
    waiting. Only paths the manager ``accepts`` trigger an update.
    """

    def __init__(self, manager, logger):
        self.manager = manager
        self.logger = logger
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pgsandbox-migrations")

    def submit(self, fn: Callable, *args) -> Future:
        return self._executor.submit(fn, *args)

    def init(self, configurations):
        self.submit(self.manager.init, configurations).result()

    def apply(self):
        self.submit(self.manager.apply).result()

    def handle_change(self, event: ChangeEvent) -> Optional[Future]:
        """Queues a re-apply when the changed file is a migration of this backend."""
        if not self.manager.accepts(event.path):
            self.logger.debug("Ignoring change to %s", event.path)
            return None

        future = self.submit(self.manager.update, event.path)
        future.add_done_callback(lambda done: self._report(event, done))
        return future

    def _report(self, event: ChangeEvent, future: Future):
        exc = future.exception()
        if exc is not None:
            self.logger.warning("Cannot apply migration %s: %s", os.path.basename(event.path), exc)
        else:
            self.logger.info("Migration %s re-applied", os.path.basename(event.path))

    def close(self, wait: bool = True):
        self._executor.shutdown(wait=wait)


class _DebouncedHandler(FileSystemEventHandler):
    def __init__(self, watcher: "ChangeWatcher"):
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory or event.event_type not in ("created", "modified", "moved"):
            return
        path = getattr(event, "dest_path", None) or event.src_path
        self.watcher.schedule(os.fsdecode(path))


class ChangeWatcher:
    """Watches directories recursively and delivers debounced ``ChangeEvent`` objects."""

    def __init__(self, logger, *directories: str, debounce_seconds: float = 0.5, observer_factory=Observer):
        self.logger = logger
        self.directories = list(directories)
        self.debounce_seconds = debounce_seconds
        self.observer_factory = observer_factory

        self.handlers: List[Callable[[ChangeEvent], object]] = []
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._observer = None

    def register(self, handler: Callable[[ChangeEvent], object]):
        self.handlers.append(handler)

    def start(self):
        observer = self.observer_factory()
        handler = _DebouncedHandler(self)
        for directory in self.directories:
            observer.schedule(handler, directory, recursive=True)
        observer.start()
        self._observer = observer
        self.logger.info("Watching %s for migration changes", ", ".join(self.directories))

    def schedule(self, path: str):
        with self._lock:
            previous = self._timers.pop(path, None)
            if previous is not None:
                previous.cancel()
            timer = threading.Timer(self.debounce_seconds, self._fire, args=(path,))
            timer.daemon = True
            self._timers[path] = timer
            timer.start()

    def _fire(self, path: str):
        with self._lock:
            self._timers.pop(path, None)
        self.dispatch(ChangeEvent(path=path))

    def dispatch(self, event: ChangeEvent):
        for handler in self.handlers:
            try:
                handler(event)
            except Exception:
                self.logger.exception("Change handler failed for %s", event.path)

    def stop(self):
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
