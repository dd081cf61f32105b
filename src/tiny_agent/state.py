# state.py
# Crash-safe persisted task state.
#
# Write protocol, in order:
#   1. take <path>.lock with O_CREAT|O_EXCL (bounded retry, then give up)
#   2. rotate <path> → <path>.1 … <path>.5 when it has grown past max_size
#   3. write <path>.tmp.<rand>, fsync, os.replace onto <path>
#   4. remove the temp file on failure; remove the lock on every exit path
#
# The lock file holds an owner token. A stale lock is renamed aside before it
# is dropped, and a holder only removes a lock that still carries its token.
#
# Readers therefore see either the old or the new file, never a partial one.
# Failures are returned as StateResult, not raised.

import asyncio
import contextlib
import json
import logging
import os
import secrets
import time
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from tiny_agent.models import AgentPhase, StateFile, StateMetadata

logger = logging.getLogger(__name__)

MAX_STATE_FILE_SIZE = 10 * 1024 * 1024
MAX_ARCHIVE_COUNT = 5
LOCK_SUFFIX = ".lock"

T = TypeVar("T")


class LockTimeout(Exception):
    """Raised internally when the lock cannot be taken in time."""


class StateResult(BaseModel, Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_state(
    agent_name: str,
    agent_version: str,
    phase: AgentPhase,
    task_description: str,
    parameters: dict[str, Any] | None = None,
) -> StateFile:
    """Fresh pending state for a new task attempt."""
    return StateFile(
        metadata=StateMetadata(
            agent_name=agent_name,
            agent_version=agent_version,
            invocation_timestamp=utc_now(),
            parameters=parameters or {},
        ),
        phase=phase,
        task_description=task_description,
        status="pending",
        errors=[],
        artifacts=[],
    )


def atomic_write(path: str, content: str) -> None:
    """Write via a sibling temp file and rename; the temp file never outlives a failure."""
    temp_path = f"{path}.tmp.{secrets.token_hex(5)}"
    try:
        with open(temp_path, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(temp_path, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(temp_path)
        raise


def rotated_paths(path: str, retention: int = MAX_ARCHIVE_COUNT) -> list[str]:
    """Existing rotated snapshots, most recent first."""
    candidates = (f"{path}.{i}" for i in range(1, retention + 1))
    return [p for p in candidates if os.path.exists(p)]


class StateStore:
    """
    Reads and writes StateFile snapshots under a path-scoped lock.

    A lock older than `stale_lock_after` seconds is assumed to belong to a
    writer that crashed and is reclaimed.
    """

    def __init__(
        self,
        lock_timeout: float = 2.5,
        retry_delay: float = 0.05,
        stale_lock_after: float = 30.0,
        max_size: int = MAX_STATE_FILE_SIZE,
        retention: int = MAX_ARCHIVE_COUNT,
    ) -> None:
        self.lock_timeout = lock_timeout
        self.retry_delay = retry_delay
        self.stale_lock_after = stale_lock_after
        self.max_size = max_size
        self.retention = retention

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _try_create_lock(self, lock_path: str, token: str) -> bool:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        try:
            os.write(fd, token.encode("ascii"))
        finally:
            os.close(fd)
        return True

    def _is_stale(self, lock_path: str) -> bool:
        try:
            age = time.time() - os.path.getmtime(lock_path)
        except FileNotFoundError:
            return False
        return age > self.stale_lock_after

    def _reclaim_stale(self, lock_path: str) -> bool:
        """
        Move the lock at `lock_path` aside and drop it if it is still stale.

        The age is re-checked on the file actually moved: if another waiter
        reclaimed first and its fresh lock was moved instead, that lock is
        linked back into place. Returns True when a stale lock was removed.
        """
        aside = f"{lock_path}.stale.{secrets.token_hex(5)}"
        try:
            os.rename(lock_path, aside)
        except FileNotFoundError:
            return False

        try:
            if self._is_stale(aside):
                logger.warning("Reclaiming stale lock %s", lock_path)
                return True
            try:
                os.link(aside, lock_path)
            except FileExistsError:
                logger.warning("Lock %s was replaced while being restored", lock_path)
            return False
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(aside)

    def _release(self, lock_path: str, token: str) -> None:
        """Remove the lock only while it still carries our token."""
        try:
            with open(lock_path, encoding="ascii", errors="replace") as fh:
                owner = fh.read()
        except FileNotFoundError:
            logger.warning("Lock %s disappeared before release", lock_path)
            return
        if owner != token:
            logger.warning("Lock %s was reclaimed by another writer", lock_path)
            return
        with contextlib.suppress(FileNotFoundError):
            os.unlink(lock_path)

    @contextlib.contextmanager
    def lock(self, path: str) -> Iterator[None]:
        """Hold `<path>.lock` for the duration of the block."""
        lock_path = path + LOCK_SUFFIX
        token = f"{os.getpid()}-{secrets.token_hex(8)}"
        deadline = time.monotonic() + self.lock_timeout

        while not self._try_create_lock(lock_path, token):
            if self._is_stale(lock_path) and self._reclaim_stale(lock_path):
                continue
            if time.monotonic() >= deadline:
                raise LockTimeout(f"could not lock {path} within {self.lock_timeout}s")
            logger.debug("Waiting for lock %s", lock_path)
            time.sleep(self.retry_delay)

        try:
            yield
        finally:
            self._release(lock_path, token)

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def _rotate(self, path: str) -> None:
        """Shift <path>.1..N-1 up by one and move <path> to <path>.1."""
        for i in range(self.retention, 0, -1):
            source = path if i == 1 else f"{path}.{i - 1}"
            target = f"{path}.{i}"
            try:
                os.replace(source, target)
            except FileNotFoundError:
                continue
        logger.info("Rotated state file %s", path)

    def _needs_rotation(self, path: str) -> bool:
        try:
            return os.path.getsize(path) > self.max_size
        except FileNotFoundError:
            return False

    def _load(self, path: str) -> StateResult[StateFile]:
        try:
            with open(path, "rb") as fh:
                raw = fh.read()
        except FileNotFoundError:
            return StateResult(success=False, error=f"State file not found: {path}")

        try:
            data = json.loads(raw)
        except ValueError:
            return StateResult(success=False, error=f"Invalid JSON in state file: {path}")

        try:
            state = StateFile.model_validate(data)
        except ValidationError:
            return StateResult(success=False, error=f"Invalid state file format: {path}")

        return StateResult(success=True, data=state)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def read(self, path: str) -> StateResult[StateFile]:
        """
        Load the StateFile at `path`.

        A missing file (or missing parent directory) is reported as not
        found without touching the lock. When the directory is not writable
        no writer can be active there, so the file is read without a lock.
        """
        if not os.path.exists(path):
            return StateResult(success=False, error=f"State file not found: {path}")

        try:
            if not os.access(os.path.dirname(os.path.abspath(path)), os.W_OK):
                logger.debug("Directory of %s is read-only, reading without lock", path)
                return self._load(path)
            with self.lock(path):
                return self._load(path)
        except LockTimeout as exc:
            return StateResult(success=False, error=f"Failed to acquire lock: {exc}")
        except OSError as exc:
            return StateResult(success=False, error=f"Failed to read state file: {exc}")

    def write(self, path: str, state: StateFile, force: bool = False) -> StateResult[None]:
        """
        Persist `state` at `path`.

        `force` skips rotation even when the current file is oversized.
        """
        try:
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
            with self.lock(path):
                content = state.model_dump_json(by_alias=True, indent=2)
                if not force and self._needs_rotation(path):
                    self._rotate(path)
                atomic_write(path, content)
            return StateResult(success=True)
        except LockTimeout as exc:
            return StateResult(success=False, error=f"Failed to acquire lock: {exc}")
        except Exception as exc:
            logger.error("Failed to write state file %s: %s", path, exc)
            return StateResult(success=False, error=f"Failed to write state file: {exc}")

    async def read_async(self, path: str) -> StateResult[StateFile]:
        return await asyncio.to_thread(self.read, path)

    async def write_async(
        self, path: str, state: StateFile, force: bool = False
    ) -> StateResult[None]:
        return await asyncio.to_thread(self.write, path, state, force)


_default_store = StateStore()


def read_state_file(path: str) -> StateResult[StateFile]:
    return _default_store.read(path)


def write_state_file(path: str, state: StateFile, force: bool = False) -> StateResult[None]:
    return _default_store.write(path, state, force)
