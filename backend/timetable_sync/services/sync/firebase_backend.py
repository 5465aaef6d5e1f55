"""
Firebase Realtime Database backend over the REST streaming API.
"""

import asyncio
import json
import logging
from typing import Dict, Any, List, Optional

import aiohttp

from timetable_sync.core.exceptions import ReplicationFailure
from timetable_sync.services.sync.remote import (
    RemoteBackend, SnapshotCallback, ConnectivityCallback, Unsubscribe,
    split_path, set_at_path
)

logger = logging.getLogger(__name__)


def apply_stream_event(snapshot: Dict[str, Any], event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fold one streaming event into the locally mirrored snapshot.

    ``put`` replaces the value at ``data["path"]``; ``patch`` writes each
    child of ``data["data"]`` beneath it.
    """
    segments = split_path(data.get("path", "/"))
    payload = data.get("data")
    if event == "put":
        if not segments:
            return payload if isinstance(payload, dict) else {}
        set_at_path(snapshot, segments, payload)
    elif event == "patch" and isinstance(payload, dict):
        for key, value in payload.items():
            set_at_path(snapshot, segments + split_path(key), value)
    return snapshot


class FirebaseRestBackend(RemoteBackend):
    """Realtime backend talking to ``<database_url>/<path>.json``."""

    def __init__(
        self,
        database_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 10.0,
        reconnect_delay: float = 5.0
    ):
        if not database_url:
            raise ValueError("database_url is required for the Firebase backend")
        self.database_url = database_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.reconnect_delay = reconnect_delay
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._streams: List[asyncio.Task] = []
        self._connection_listeners: List[ConnectivityCallback] = []
        self.connected = False

    def url_for(self, path: str) -> str:
        url = f"{self.database_url}/{'/'.join(split_path(path))}.json"
        if self.auth_token:
            url += f"?auth={self.auth_token}"
        return url

    async def _session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                headers={
                    'User-Agent': 'Timetable-Sync/1.0',
                    'Accept': 'application/json',
                }
            )
        return self._http_session

    async def set(self, path: str, value: Any) -> None:
        await self._write("PUT", path, value)

    async def update(self, path: str, partial: Dict[str, Any]) -> None:
        body = {"/".join(split_path(key)): value for key, value in partial.items()}
        await self._write("PATCH", path, body)

    async def _write(self, method: str, path: str, body: Any) -> None:
        session = await self._session()
        try:
            async with session.request(
                method,
                self.url_for(path),
                data=json.dumps(body),
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise ReplicationFailure(
                        f"{method} {path} failed with HTTP {response.status}",
                        details={'status': response.status, 'body': text[:500]}
                    )
        except aiohttp.ClientError as e:
            raise ReplicationFailure(f"{method} {path} failed: {e}", original_exception=e)

    def subscribe(self, path: str, callback: SnapshotCallback) -> Unsubscribe:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise ReplicationFailure("Streaming subscriptions need a running event loop")

        task = loop.create_task(self._stream(path, callback))
        self._streams.append(task)

        def unsubscribe():
            task.cancel()
            if task in self._streams:
                self._streams.remove(task)

        return unsubscribe

    def monitor_connection(self, callback: ConnectivityCallback) -> Unsubscribe:
        self._connection_listeners.append(callback)
        callback(self.connected)

        def unsubscribe():
            if callback in self._connection_listeners:
                self._connection_listeners.remove(callback)

        return unsubscribe

    async def close(self) -> None:
        for task in list(self._streams):
            task.cancel()
        self._streams.clear()
        if self._http_session and not self._http_session.closed:
            await self._http_session.close()
        self._http_session = None

    def _set_connected(self, connected: bool) -> None:
        if connected == self.connected:
            return
        self.connected = connected
        for listener in list(self._connection_listeners):
            listener(connected)

    async def _stream(self, path: str, callback: SnapshotCallback) -> None:
        """Follow the event stream for ``path``, reconnecting after drops."""
        while True:
            snapshot: Dict[str, Any] = {}
            try:
                session = await self._session()
                async with session.get(
                    self.url_for(path),
                    headers={'Accept': 'text/event-stream'},
                    timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout)
                ) as response:
                    if response.status >= 400:
                        raise ReplicationFailure(f"Stream {path} failed with HTTP {response.status}")
                    self._set_connected(True)

                    event = None
                    async for raw_line in response.content:
                        line = raw_line.decode("utf-8").strip()
                        if line.startswith("event:"):
                            event = line[len("event:"):].strip()
                        elif line.startswith("data:") and event in ("put", "patch"):
                            data = json.loads(line[len("data:"):].strip())
                            snapshot = apply_stream_event(snapshot, event, data)
                            if snapshot:
                                callback(snapshot)
                        elif line.startswith("data:") and event in ("cancel", "auth_revoked"):
                            logger.error(f"Stream {path} closed by server: {event}")
                            self._set_connected(False)
                            return
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, ReplicationFailure, ValueError) as e:
                logger.warning(f"Stream {path} dropped: {e}")

            self._set_connected(False)
            await asyncio.sleep(self.reconnect_delay)
