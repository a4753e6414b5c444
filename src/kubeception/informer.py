"""Watch-backed local caches.

An informer lists a resource type once, then follows a watch stream to
keep a thread-safe local copy up to date and tells registered handlers
about every change. Listers give the reconcile code read-only access to
that copy.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from icecream import ic
from kubernetes import watch
from kubernetes.client.exceptions import ApiException
from rich.markup import escape
from urllib3.exceptions import HTTPError

from kubeception import console
from kubeception.exceptions import NotFoundError
from kubeception.models import meta_namespace_key

_HTTP_GONE = 410
_WATCH_TIMEOUT_SECONDS = 60
_RETRY_DELAY_SECONDS = 5.0


def _resource_version(obj: Any) -> str:
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get("resourceVersion") or ""
    metadata = getattr(obj, "metadata", None)
    return getattr(metadata, "resource_version", None) or ""


def _items(response: Any) -> list[Any]:
    if isinstance(response, dict):
        return list(response.get("items") or [])
    return list(response.items or [])


class Indexer:
    """Thread-safe store of objects keyed by ``namespace/name``."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}
        self._lock = threading.RLock()

    def add(self, obj: Any) -> Any | None:
        """Insert or replace *obj*, returning the previous object if any."""
        key = meta_namespace_key(obj)
        with self._lock:
            old = self._items.get(key)
            self._items[key] = obj
            return old

    def delete(self, obj: Any) -> Any | None:
        key = meta_namespace_key(obj)
        with self._lock:
            return self._items.pop(key, None)

    def replace(self, objects: list[Any]) -> dict[str, Any]:
        """Replace the whole content, returning the objects that were dropped."""
        fresh = {meta_namespace_key(obj): obj for obj in objects}
        with self._lock:
            dropped = {key: obj for key, obj in self._items.items() if key not in fresh}
            self._items = fresh
            return dropped

    def get_by_key(self, key: str) -> Any | None:
        with self._lock:
            return self._items.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    # Defined after every annotation that uses the builtin list
    def list(self) -> list[Any]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class Lister:
    """Read-only view of an indexer for one resource kind."""

    def __init__(self, indexer: Indexer, kind: str) -> None:
        self.indexer = indexer
        self.kind = kind

    def get(self, name: str, namespace: str = "") -> Any:
        """Return the cached object.

        Raises:
            NotFoundError: If the object is not in the cache.

        """
        key = f"{namespace}/{name}" if namespace else name
        obj = self.indexer.get_by_key(key)
        if obj is None:
            raise NotFoundError(self.kind, name, namespace)
        return obj

    def list(self) -> list[Any]:
        return self.indexer.list()

    def __repr__(self) -> str:
        return f"Lister(kind={self.kind!r}, len={len(self.indexer)})"


@dataclass(frozen=True, slots=True)
class EventHandler:
    """Callbacks invoked by an informer.

    Attributes:
        on_add: Called with the new object.
        on_update: Called with the old and the new object.
        on_delete: Called with the last known object.

    """

    on_add: Callable[[Any], None] | None = None
    on_update: Callable[[Any, Any], None] | None = None
    on_delete: Callable[[Any], None] | None = None


class Informer:
    """List and watch one resource type into an :class:`Indexer`.

    Attributes:
        kind: Resource kind, used for lister errors and log output.
        indexer: The local cache.
        resync_period: Seconds between handler resyncs, 0 disables them.

    """

    def __init__(self, list_func: Callable[..., Any], kind: str, resync_period: float = 0.0) -> None:
        self._list_func = list_func
        self.kind = kind
        self.resync_period = resync_period
        self.indexer = Indexer()
        self._handlers: list[EventHandler] = []
        self._synced = threading.Event()
        self._resource_version = ""
        self._watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()
        self._threads: list[threading.Thread] = []

    def add_event_handler(self, handler: EventHandler) -> None:
        """Register *handler*; it also receives every object already cached."""
        self._handlers.append(handler)
        if handler.on_add is not None:
            for obj in self.indexer.list():
                handler.on_add(obj)

    def lister(self) -> Lister:
        return Lister(self.indexer, self.kind)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        return self._synced.wait(timeout)

    def _dispatch_add(self, obj: Any) -> None:
        for handler in self._handlers:
            if handler.on_add is not None:
                handler.on_add(obj)

    def _dispatch_update(self, old: Any, new: Any) -> None:
        for handler in self._handlers:
            if handler.on_update is not None:
                handler.on_update(old, new)

    def _dispatch_delete(self, obj: Any) -> None:
        for handler in self._handlers:
            if handler.on_delete is not None:
                handler.on_delete(obj)

    def relist(self) -> None:
        """List all objects and replace the cache, notifying handlers of the differences."""
        response = self._list_func()
        objects = _items(response)
        self._resource_version = _resource_version(response)

        previous = {key: self.indexer.get_by_key(key) for key in self.indexer.keys()}
        dropped = self.indexer.replace(objects)
        for obj in objects:
            old = previous.get(meta_namespace_key(obj))
            if old is None:
                self._dispatch_add(obj)
            else:
                self._dispatch_update(old, obj)
        for obj in dropped.values():
            self._dispatch_delete(obj)

        self._synced.set()
        ic(self.kind, len(objects), self._resource_version)

    def handle_event(self, event_type: str, obj: Any) -> bool:
        """Apply one watch event to the cache.

        Returns:
            False if the watch has expired and a relist is needed.

        """
        match event_type:
            case "ADDED" | "MODIFIED":
                old = self.indexer.add(obj)
                if old is None:
                    self._dispatch_add(obj)
                else:
                    self._dispatch_update(old, obj)
            case "DELETED":
                old = self.indexer.delete(obj)
                self._dispatch_delete(old if old is not None else obj)
            case "ERROR":
                code = obj.get("code") if isinstance(obj, dict) else getattr(obj, "code", None)
                if code == _HTTP_GONE:
                    return False
                console.warning(f"Watch error on {self.kind}: {escape(str(obj))}")
                return True
            case _:
                # BOOKMARK and unknown events only move the resource version
                pass

        version = _resource_version(obj)
        if version:
            self._resource_version = version
        return True

    def resync(self) -> None:
        """Replay every cached object to the handlers as an update."""
        for obj in self.indexer.list():
            self._dispatch_update(obj, obj)

    def _watch(self, stop_event: threading.Event) -> None:
        watcher = watch.Watch()
        with self._watcher_lock:
            self._watcher = watcher
        try:
            for event in watcher.stream(
                self._list_func,
                resource_version=self._resource_version,
                timeout_seconds=_WATCH_TIMEOUT_SECONDS,
            ):
                if stop_event.is_set():
                    return
                if not self.handle_event(event["type"], event["object"]):
                    self._resource_version = ""
                    return
        finally:
            with self._watcher_lock:
                self._watcher = None

    def run(self, stop_event: threading.Event) -> None:
        """List and watch until *stop_event* is set."""
        while not stop_event.is_set():
            try:
                if not self._resource_version:
                    self.relist()
                self._watch(stop_event)
            except ApiException as err:
                if err.status == _HTTP_GONE:
                    self._resource_version = ""
                    continue
                console.warning(f"Failed to list/watch {self.kind}: {err.status} {escape(str(err.reason))}")
                stop_event.wait(_RETRY_DELAY_SECONDS)
            except HTTPError as err:
                console.warning(f"Failed to list/watch {self.kind}: {escape(str(err))}")
                stop_event.wait(_RETRY_DELAY_SECONDS)

    def _run_resync(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.resync_period):
            self.resync()

    def start(self, stop_event: threading.Event) -> None:
        """Start the watch thread, and the resync thread if a period is set."""
        thread = threading.Thread(target=self.run, args=(stop_event,), name=f"informer-{self.kind}", daemon=True)
        thread.start()
        self._threads.append(thread)
        if self.resync_period > 0:
            resync = threading.Thread(
                target=self._run_resync, args=(stop_event,), name=f"resync-{self.kind}", daemon=True
            )
            resync.start()
            self._threads.append(resync)

    def stop(self) -> None:
        """Interrupt the active watch stream, if any."""
        with self._watcher_lock:
            if self._watcher is not None:
                self._watcher.stop()

    def __repr__(self) -> str:
        return f"Informer(kind={self.kind!r}, synced={self.has_synced()}, len={len(self.indexer)})"


class InformerSet:
    """A group of informers started and synced together."""

    def __init__(self, **informers: Informer) -> None:
        self.informers = informers

    def __getitem__(self, name: str) -> Informer:
        return self.informers[name]

    def start(self, stop_event: threading.Event) -> None:
        for informer in self.informers.values():
            informer.start(stop_event)

    def wait_for_cache_sync(self, timeout: float | None = None) -> bool:
        """Wait until every informer has completed its first list."""
        return all(informer.wait_for_sync(timeout) for informer in self.informers.values())

    def stop(self) -> None:
        for informer in self.informers.values():
            informer.stop()
