"""
State Store - Durable per-stream storage of the pinned message id.

Each stream key is owned by exactly one actor, so the store only needs
to be consistent for single-writer access per key. No multi-key
transactions are offered.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

from pydantic import ValidationError

from pinrelay.config import config
from pinrelay.errors import PersistenceError
from pinrelay.models.state import ActorState

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Async key -> ActorState storage."""

    @abstractmethod
    async def get(self, stream_key: str) -> Optional[ActorState]:
        """Return the state for a stream, or None if it was never written."""

    @abstractmethod
    async def put(self, state: ActorState) -> None:
        """Durably write the state for ``state.stream_key``."""

    @abstractmethod
    async def list_keys(self) -> List[str]:
        """List every stream key that has state."""


class InMemoryStateStore(StateStore):
    """Process-local store for tests and dry runs."""

    def __init__(self):
        self._states: Dict[str, ActorState] = {}

    async def get(self, stream_key: str) -> Optional[ActorState]:
        state = self._states.get(stream_key)
        return state.model_copy() if state else None

    async def put(self, state: ActorState) -> None:
        self._states[state.stream_key] = state.model_copy()

    async def list_keys(self) -> List[str]:
        return sorted(self._states)


class FileStateStore(StateStore):
    """
    File-based storage for stream state.

    Directory structure:
    state/
      mobile-app.json
      default%3Aforum-polish.json

    File names are the URL-quoted stream key, so a key maps to the same
    file across restarts and redeploys. Each write goes through its own
    temp file and ``os.replace``; a crash never leaves a half-written state
    behind. A write that outlives its timeout is awaited before the next
    get or put of the same key, so the stored state only moves forward.
    """

    SUFFIX = ".json"

    def __init__(self, base_dir: Optional[Path] = None, timeout: Optional[float] = None):
        """
        Initialize the FileStateStore.

        Args:
            base_dir: Directory for state files. Defaults to config.state_dir.
            timeout: Seconds allowed per get/put. Defaults to config.store_timeout.
        """
        self.base_dir = base_dir or config.state_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout if timeout is not None else config.store_timeout
        # stream_key -> write still running in its worker thread
        self._writes: Dict[str, "asyncio.Future[None]"] = {}

    def path_for(self, stream_key: str) -> Path:
        """Return the state file for a stream key."""
        return self.base_dir / f"{quote(stream_key, safe='')}{self.SUFFIX}"

    async def get(self, stream_key: str) -> Optional[ActorState]:
        await self._settle(stream_key)
        return await self._call(self._read, stream_key)

    async def put(self, state: ActorState) -> None:
        await self._settle(state.stream_key)
        task = asyncio.ensure_future(asyncio.to_thread(self._write, state))
        self._writes[state.stream_key] = task
        task.add_done_callback(lambda done: self._forget(state.stream_key, done))
        await self._wait("write", task)

    async def list_keys(self) -> List[str]:
        return await self._call(self._list)

    async def _call(self, func, *args):
        return await self._wait(func.__name__.lstrip('_'), asyncio.ensure_future(asyncio.to_thread(func, *args)))

    async def _wait(self, name: str, task: "asyncio.Future"):
        # worker threads cannot be cancelled; shield keeps the task alive for _settle
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise PersistenceError(f"{name} timed out after {self.timeout}s")
        except OSError as e:
            raise PersistenceError(f"{name} failed: {e}") from e

    async def _settle(self, stream_key: str) -> None:
        """
        Wait for a timed-out write of the same key to land.

        A write that outlived its caller would otherwise replace the file
        after a newer one and move the stored id backwards.
        """
        pending = self._writes.get(stream_key)
        if pending is None or pending.done():
            return
        logger.warning("state_write_pending stream=%s waiting=%.2fs", stream_key, self.timeout)
        try:
            await asyncio.wait_for(asyncio.shield(pending), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise PersistenceError(f"Earlier write for {stream_key} still running after {self.timeout}s")
        except OSError:
            # reported to the caller that timed out; the file keeps its previous content
            pass

    def _forget(self, stream_key: str, task: "asyncio.Future[None]") -> None:
        if self._writes.get(stream_key) is task:
            del self._writes[stream_key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("state_write_failed stream=%s error=%s", stream_key, task.exception())

    def _read(self, stream_key: str) -> Optional[ActorState]:
        file_path = self.path_for(stream_key)
        if not file_path.exists():
            return None

        with open(file_path, 'r', encoding='utf-8') as f:
            raw = f.read()

        try:
            return ActorState.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError(f"Corrupt state file {file_path.name}: {e}") from e

    def _write(self, state: ActorState) -> None:
        file_path = self.path_for(state.stream_key)

        with tempfile.NamedTemporaryFile(
            'w', encoding='utf-8', dir=self.base_dir,
            prefix=file_path.name + ".", suffix=".tmp", delete=False,
        ) as f:
            tmp_path = Path(f.name)
            try:
                json.dump(state.model_dump(mode='json'), f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            except BaseException:
                f.close()
                tmp_path.unlink(missing_ok=True)
                raise
        try:
            os.replace(tmp_path, file_path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("state_written stream=%s pinned=%s", state.stream_key, state.pinned_message_id)

    def _list(self) -> List[str]:
        keys = []
        for file_path in self.base_dir.glob(f"*{self.SUFFIX}"):
            keys.append(unquote(file_path.name[: -len(self.SUFFIX)]))
        return sorted(keys)
