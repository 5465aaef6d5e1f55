"""
Realtime backend interface and the in-memory implementation.

A backend is a path-addressable publish/subscribe tree: ``set`` replaces the
value at a path, ``update`` writes several child keys at once, ``subscribe``
delivers the full value under a path after every change beneath it, and
``monitor_connection`` reports connectivity changes.

Keys inside an ``update`` may be nested with "/" or "." separators, so
``{"registry.entities": [...]}`` written at ``schools/abc`` lands at
``schools/abc/registry/entities``.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Callable, Optional

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Dict[str, Any]], None]
ConnectivityCallback = Callable[[bool], None]
Unsubscribe = Callable[[], None]


def split_path(path: str) -> List[str]:
    """Split a slash- or dot-separated path into its segments."""
    return [segment for segment in path.replace(".", "/").split("/") if segment]


def get_at_path(tree: Dict[str, Any], segments: List[str]) -> Any:
    node: Any = tree
    for segment in segments:
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    return node


def set_at_path(tree: Dict[str, Any], segments: List[str], value: Any) -> None:
    """Assign ``value`` at ``segments``; ``None`` deletes the key."""
    if not segments:
        tree.clear()
        if isinstance(value, dict):
            tree.update(value)
        return
    node = tree
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            if value is None:
                return
            child = {}
            node[segment] = child
        node = child
    if value is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = value


class RemoteBackend(ABC):
    """Path-addressable realtime publish/subscribe store."""

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Replace the value at ``path``."""
        pass

    @abstractmethod
    async def update(self, path: str, partial: Dict[str, Any]) -> None:
        """Write each key of ``partial`` beneath ``path``."""
        pass

    @abstractmethod
    def subscribe(self, path: str, callback: SnapshotCallback) -> Unsubscribe:
        """Deliver the value under ``path`` after each change."""
        pass

    @abstractmethod
    def monitor_connection(self, callback: ConnectivityCallback) -> Unsubscribe:
        """Report connectivity changes."""
        pass

    async def close(self) -> None:
        pass


class InMemoryRemoteBackend(RemoteBackend):
    """
    Process-local backend.

    Subscribers are notified synchronously inside ``set``/``update``, the
    writer included, just like a realtime database raises local events for
    its own writes. Several bridges sharing one instance behave like devices
    sharing one school node.
    """

    def __init__(self, connected: bool = True):
        self._tree: Dict[str, Any] = {}
        self._subscribers: Dict[str, List[SnapshotCallback]] = {}
        self._connection_listeners: List[ConnectivityCallback] = []
        self.connected = connected
        self.write_log: List[Dict[str, Any]] = []

    def get(self, path: str) -> Any:
        return copy.deepcopy(get_at_path(self._tree, split_path(path)))

    async def set(self, path: str, value: Any) -> None:
        self._ensure_connected()
        set_at_path(self._tree, split_path(path), copy.deepcopy(value))
        self.write_log.append({"op": "set", "path": path, "value": value})
        self._notify(path)

    async def update(self, path: str, partial: Dict[str, Any]) -> None:
        self._ensure_connected()
        base = split_path(path)
        for key, value in partial.items():
            set_at_path(self._tree, base + split_path(key), copy.deepcopy(value))
        self.write_log.append({"op": "update", "path": path, "value": partial})
        self._notify(path)

    def subscribe(self, path: str, callback: SnapshotCallback) -> Unsubscribe:
        key = "/".join(split_path(path))
        self._subscribers.setdefault(key, []).append(callback)

        current = self.get(key)
        if current is not None:
            callback(current)

        def unsubscribe():
            listeners = self._subscribers.get(key, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def monitor_connection(self, callback: ConnectivityCallback) -> Unsubscribe:
        self._connection_listeners.append(callback)
        callback(self.connected)

        def unsubscribe():
            if callback in self._connection_listeners:
                self._connection_listeners.remove(callback)

        return unsubscribe

    def set_connected(self, connected: bool) -> None:
        """Simulate a connectivity change."""
        self.connected = connected
        for listener in list(self._connection_listeners):
            listener(connected)

    def _ensure_connected(self) -> None:
        if not self.connected:
            raise ConnectionError("Remote backend is offline")

    def _notify(self, path: str) -> None:
        written = "/".join(split_path(path))
        for key, listeners in list(self._subscribers.items()):
            related = (
                written == key
                or written.startswith(key + "/")
                or key.startswith(written + "/")
                or not key
                or not written
            )
            if not related:
                continue
            value = self.get(key)
            if value is None:
                continue
            for listener in list(listeners):
                listener(value)


def create_backend(remote_config: Optional[Dict[str, Any]] = None) -> RemoteBackend:
    """Build the backend named by ``remote_config``, falling back to settings."""
    from timetable_sync.core.config import settings

    config = remote_config or {}
    kind = config.get("backend") or settings.REMOTE_BACKEND
    if kind == "firebase":
        from timetable_sync.services.sync.firebase_backend import FirebaseRestBackend

        return FirebaseRestBackend(
            database_url=config.get("databaseUrl") or settings.FIREBASE_DATABASE_URL,
            auth_token=config.get("authToken") or settings.FIREBASE_AUTH_TOKEN or None,
            timeout=settings.REMOTE_TIMEOUT
        )
    return InMemoryRemoteBackend()
