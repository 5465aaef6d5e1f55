"""
Local key/value persistence for the school state.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Callable, Set

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from timetable_sync.models.blob_entry import BlobEntry

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Opaque get/set-by-key store of JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    async def flush(self) -> None:
        """Wait until every accepted write is stored."""
        pass


class InMemoryBlobStore(BlobStore):

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)


class SqlAlchemyBlobStore(BlobStore):
    """
    Blob store backed by the ``blob_entries`` table.

    Database work runs on a single worker thread, so writes land in the
    order they were accepted. Inside a running event loop ``set`` returns
    as soon as the write is queued; ``flush`` awaits the queue.
    """

    def __init__(self, session_factory: Callable[[], Session], executor: Optional[ThreadPoolExecutor] = None):
        self.session_factory = session_factory
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="blob-store")
        self._pending: Set[asyncio.Future] = set()

    def get(self, key: str) -> Optional[Any]:
        return self._executor.submit(self._read, key).result()

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._executor.submit(self._write, key, payload).result()
            return

        future = loop.run_in_executor(self._executor, self._write, key, payload)
        self._pending.add(future)
        future.add_done_callback(self._write_done)

    async def flush(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _write_done(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        # Failures are logged by _write; retrieve them so they are not reported again
        if not future.cancelled():
            future.exception()

    def _read(self, key: str) -> Optional[Any]:
        with self.session_factory() as session:
            entry = session.get(BlobEntry, key)
            if entry is None:
                return None
            try:
                return json.loads(entry.value)
            except ValueError as e:
                logger.warning(f"Stored value for '{key}' is not valid JSON: {e}")
                return None

    def _write(self, key: str, payload: str) -> None:
        with self.session_factory() as session:
            try:
                entry = session.get(BlobEntry, key)
                if entry is None:
                    session.add(BlobEntry(key=key, value=payload))
                else:
                    entry.value = payload
                session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to persist '{key}': {e}")
                session.rollback()
                raise
