"""
Replication Bridge

Mirrors local mutations to the shared school node and applies remote
notifications back onto local state.

- Pushes are optimistic and fire-and-forget: local state is already updated,
  failures are logged and swallowed, nothing is retried.
- A single one-shot echo-suppression flag is armed before every push and
  consumed by the next inbound notification, which is then ignored.
- Inbound notifications replace each present top-level group wholesale, so
  conflicts resolve last-writer-wins per group.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, Callable, Optional, Set, Tuple

from timetable_sync.core.exceptions import ErrorCode
from timetable_sync.schemas.sync import ConnectionState, SyncGroup, SyncMetadata
from timetable_sync.services.sync.remote import RemoteBackend, Unsubscribe

logger = logging.getLogger(__name__)

GROUPS = tuple(group.value for group in SyncGroup)
TIMESTAMP_KEY = "lastSyncTimestamp"

ApplyCallback = Callable[[Dict[str, Any]], None]
StateCallback = Callable[[ConnectionState, ConnectionState], None]


@dataclass
class PushResult:
    """Outcome of one push to the remote store."""
    success: bool
    path: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None


def remote_path(school_id: str, group: str, field: str) -> str:
    return f"schools/{school_id}/{group}.{field}"


class ReplicationBridge:
    """Two-way link between local state holders and the remote store."""

    def __init__(
        self,
        backend: RemoteBackend,
        apply_remote: ApplyCallback,
        metadata: Optional[SyncMetadata] = None,
        on_state_change: Optional[StateCallback] = None
    ):
        self.backend = backend
        self.apply_remote = apply_remote
        self.metadata = metadata or SyncMetadata()
        self.on_state_change = on_state_change

        self.echo_pending = False
        self.last_push_result: Optional[PushResult] = None
        self._pending: Set[asyncio.Task] = set()
        self._unsubscribe: Optional[Unsubscribe] = None
        self._unmonitor: Optional[Unsubscribe] = None

        self.metadata.connection_state = (
            ConnectionState.CONNECTING if self.metadata.paired else ConnectionState.OFFLINE
        )

    # ------------------------------------------------------------------
    # State machine

    @property
    def state(self) -> ConnectionState:
        return self.metadata.connection_state

    def _set_state(self, state: ConnectionState) -> None:
        previous = self.metadata.connection_state
        if previous == state:
            return
        self.metadata.connection_state = state
        logger.info(f"Replication state {previous.value} -> {state.value}")
        if self.on_state_change:
            self.on_state_change(previous, state)

    @property
    def school_path(self) -> str:
        return f"schools/{self.metadata.school_id}"

    @property
    def is_active(self) -> bool:
        return self.metadata.paired and bool(self.metadata.school_id) and self.state != ConnectionState.OFFLINE

    @property
    def pending_pushes(self) -> int:
        return len(self._pending)

    def connect(self, school_id: Optional[str] = None) -> bool:
        """Subscribe to the school node and the connectivity channel."""
        if school_id:
            self.metadata.school_id = school_id
        if not self.metadata.school_id:
            logger.warning("Cannot connect replication without a school id")
            return False

        self._release_subscriptions()
        self._set_state(ConnectionState.CONNECTING)
        try:
            self._unmonitor = self.backend.monitor_connection(self._on_connectivity)
            self._unsubscribe = self.backend.subscribe(self.school_path, self.handle_remote)
        except Exception as e:
            logger.warning(f"Replication subscribe to {self.school_path} failed: {e}")
            self._set_state(ConnectionState.ERROR)
            return False
        return True

    def disconnect(self) -> None:
        self._release_subscriptions()
        self.echo_pending = False
        self._set_state(ConnectionState.OFFLINE)

    def _release_subscriptions(self) -> None:
        for release in (self._unsubscribe, self._unmonitor):
            if release:
                release()
        self._unsubscribe = None
        self._unmonitor = None

    def _on_connectivity(self, connected: bool) -> None:
        if self.state == ConnectionState.OFFLINE:
            return
        if connected:
            if self.state != ConnectionState.SYNCING:
                self._set_state(ConnectionState.CONNECTED)
        else:
            self._set_state(ConnectionState.CONNECTING)

    # ------------------------------------------------------------------
    # Outbound

    def push(self, group: str, field: str, value: Any) -> None:
        """Send one changed field of one group."""
        self.push_many({(group, field): value})

    def push_many(self, changes: Dict[Tuple[str, str], Any]) -> None:
        """Send several changed fields as one write, arming the echo flag once."""
        if not self.is_active or not changes:
            return
        for group, _ in changes:
            if group not in GROUPS:
                raise ValueError(f"Unknown sync group: {group}")

        partial = {f"{group}.{field}": value for (group, field), value in changes.items()}
        partial[TIMESTAMP_KEY] = int(time.time() * 1000)
        paths = ", ".join(remote_path(self.metadata.school_id, g, f) for g, f in changes)

        self.echo_pending = True
        self._dispatch(self._send(self.backend.update(self.school_path, partial), paths))

    def publish_full_state(self, state: Dict[str, Any]) -> None:
        """Replace the whole school node (initial master upload)."""
        if not self.metadata.paired or not self.metadata.school_id:
            return
        document = {group: state[group] for group in GROUPS if group in state}
        document[TIMESTAMP_KEY] = int(time.time() * 1000)

        self.echo_pending = True
        self._dispatch(self._send(self.backend.set(self.school_path, document), self.school_path))

    async def _send(self, write, path: str) -> PushResult:
        try:
            await write
        except Exception as e:
            logger.warning(f"Replication push to {path} failed: {e}")
            self._set_state(ConnectionState.ERROR)
            result = PushResult(
                success=False,
                path=path,
                error_code=ErrorCode.REPLICATION_FAILURE,
                error_message=str(e)
            )
        else:
            self.metadata.last_sync = datetime.utcnow().isoformat()
            result = PushResult(success=True, path=path)
        self.last_push_result = result
        return result

    def _dispatch(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to hand the push to; complete it before returning
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every in-flight push."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Inbound

    def handle_remote(self, snapshot: Dict[str, Any]) -> None:
        """Apply a remote notification unless it is the echo of our own push."""
        if self.echo_pending:
            self.echo_pending = False
            logger.debug("Ignored remote notification as echo of local push")
            return

        groups = {g: snapshot[g] for g in GROUPS if isinstance(snapshot, dict) and snapshot.get(g) is not None}
        if not groups:
            return

        self._set_state(ConnectionState.SYNCING)
        try:
            self.apply_remote(groups)
        except Exception as e:
            logger.error(f"Applying remote groups {sorted(groups)} failed: {e}")
            self._set_state(ConnectionState.ERROR)
            return
        self.metadata.last_sync = datetime.utcnow().isoformat()
        self._set_state(ConnectionState.CONNECTED)
