"""
Position Engine - Position Store.

============================================================
PURPOSE
============================================================
Durable mapping asset -> Position. Single source of truth
for the monitor, the schedulers and manual commands.

============================================================
CONCURRENCY MODEL
============================================================
One asyncio.Lock serializes every read-modify-write inside
the process. Across processes (the running engine and a
one-shot CLI command on the same records file) an flock on
the sidecar <records>.lock file does the same: shared for
reads, exclusive for read-modify-write.

The in-memory mapping is a cache of the file. Under the file
lock it is checked against the file's (inode, mtime, size)
stamp and re-read when another process replaced the file, so
a write never starts from a mapping older than the disk.
Every mutation is written through to disk before it becomes
visible. Callers never hold a mapping across a suspension
point and write it back:

- update(asset, fn): fn(current) -> new record, under the lock
- mutate(fn): fn(dict) edits the whole mapping, under the lock
- save(snapshot): compare-and-swap on snapshot.generation;
  a snapshot loaded before another writer committed is
  rejected with StaleSnapshotError instead of clobbering it

============================================================
DURABILITY
============================================================
Writes go to a temp file in the same directory, are
fsync'ed, then os.replace()d over the records file, so a
reader never sees a partially written snapshot.

A missing or empty file is an empty store. Unparseable
content raises CorruptStoreError and is never overwritten;
the next load() reads the file again.

============================================================
"""

import asyncio
import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from core.exceptions import (
    CorruptStoreError,
    PositionNotFoundError,
    StaleSnapshotError,
    StoreClosedError,
    StoreError,
)

from .types import Position


logger = logging.getLogger(__name__)


# (inode, mtime_ns, size) of the records file; None when it is missing
FileStamp = Optional[Tuple[int, int, int]]


# ============================================================
# SNAPSHOT
# ============================================================

class StoreSnapshot(Mapping[str, Position]):
    """
    Read-only view of the store at one generation.

    Iteration follows insertion order.
    """

    def __init__(self, positions: Dict[str, Position], generation: int):
        self._positions = dict(positions)
        self._generation = generation

    @property
    def generation(self) -> int:
        """Store generation this snapshot was taken at."""
        return self._generation

    def __getitem__(self, asset: str) -> Position:
        return self._positions[asset]

    def __iter__(self) -> Iterator[str]:
        return iter(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def open_positions(self) -> List[Position]:
        """Bought positions, in insertion order."""
        return [p for p in self._positions.values() if p.status.is_open]

    def __repr__(self) -> str:
        return f"StoreSnapshot(generation={self._generation}, positions={len(self)})"


# ============================================================
# POSITION STORE
# ============================================================

class PositionStore:
    """
    JSON-file backed position store.

    All public methods are coroutines and serialize on one
    lock; reads return immutable snapshots.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._lock = asyncio.Lock()
        self._stamp: FileStamp = None
        self._positions: Dict[str, Position] = {}
        self._generation = 0
        self._primed = False
        self._ever_loaded = False
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_closed(self) -> bool:
        return self._closed

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    async def load(self) -> StoreSnapshot:
        """
        Current snapshot.

        Reads the file on first use, after a failed read, and
        whenever another process has replaced it.

        Raises:
            CorruptStoreError: file content cannot be parsed
        """
        async with self._lock:
            with self._file_lock(shared=True):
                self._ensure_loaded()
            return self._snapshot()

    async def reload(self) -> StoreSnapshot:
        """Discard memory and read the file again."""
        async with self._lock:
            self._primed = False
            with self._file_lock(shared=True):
                self._ensure_loaded()
            return self._snapshot()

    async def get(self, asset: str) -> Optional[Position]:
        async with self._lock:
            with self._file_lock(shared=True):
                self._ensure_loaded()
            return self._positions.get(asset)

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    async def update(
        self,
        asset: str,
        fn: Callable[[Optional[Position]], Position],
        create: bool = False,
    ) -> Position:
        """
        Read-modify-write one position atomically.

        Args:
            asset: Asset key
            fn: Receives the current record (None when absent and
                create=True) and returns the new one
            create: Allow fn to create a missing record

        Returns:
            The stored record

        Raises:
            PositionNotFoundError: asset absent and create is False
            CorruptStoreError: store cannot be read
            StoreError: write failed; nothing changed
            Any exception raised by fn; nothing changed
        """
        async with self._lock:
            self._check_open()
            with self._file_lock():
                self._ensure_loaded()

                current = self._positions.get(asset)
                if current is None and not create:
                    raise PositionNotFoundError(asset)

                updated = fn(current)
                if updated.asset != asset:
                    raise ValueError(f"Update for {asset} returned record for {updated.asset}")

                positions = dict(self._positions)
                positions[asset] = updated
                self._commit(positions)
                return updated

    async def mutate(self, fn: Callable[[Dict[str, Position]], None]) -> StoreSnapshot:
        """
        Edit the whole mapping atomically.

        fn receives a mutable copy and edits it in place.
        """
        async with self._lock:
            self._check_open()
            with self._file_lock():
                self._ensure_loaded()

                positions = dict(self._positions)
                fn(positions)
                for asset, position in positions.items():
                    if position.asset != asset:
                        raise ValueError(f"Record key {asset} does not match asset {position.asset}")

                self._commit(positions)
                return self._snapshot()

    async def save(self, snapshot: StoreSnapshot) -> StoreSnapshot:
        """
        Write a full snapshot taken from load().

        Raises:
            TypeError: not a StoreSnapshot
            StaleSnapshotError: store changed since the snapshot was
                taken, in this process or another one
        """
        if not isinstance(snapshot, StoreSnapshot):
            raise TypeError("save() needs a StoreSnapshot from load(); use mutate() for edits")

        async with self._lock:
            self._check_open()
            with self._file_lock():
                self._ensure_loaded()

                if snapshot.generation != self._generation:
                    raise StaleSnapshotError(snapshot.generation, self._generation)

                self._commit(dict(snapshot.items()))
                return self._snapshot()

    async def close(self) -> None:
        """
        Stop accepting writes.

        Waits for the write in progress, if any.
        """
        async with self._lock:
            self._closed = True
        logger.info(f"Position store closed | path={self._path}")

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(self._positions, self._generation)

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Position store is closed", path=str(self._path))

    @contextmanager
    def _file_lock(self, shared: bool = False) -> Iterator[None]:
        """Hold the cross-process lock. Nothing awaits while it is held."""
        try:
            self._lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = open(self._lock_path, "a+")
        except OSError as e:
            raise StoreError(
                f"Cannot open lock file {self._lock_path}: {e}",
                path=str(self._path),
                cause=e,
            )

        with lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_SH if shared else fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _file_stamp(self) -> FileStamp:
        try:
            st = os.stat(self._path)
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _ensure_loaded(self) -> None:
        """Call with the file lock held."""
        if self._primed:
            if self._file_stamp() == self._stamp:
                return
            logger.info(f"Records file {self._path} changed on disk; reloading")
            self._primed = False

        self._positions = self._read_file()
        self._stamp = self._file_stamp()
        self._primed = True
        # Snapshots taken before a re-read are stale
        if self._ever_loaded:
            self._generation += 1
        self._ever_loaded = True
        logger.debug(f"Loaded {len(self._positions)} positions from {self._path}")

    def _read_file(self) -> Dict[str, Position]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise CorruptStoreError(
                f"Cannot read {self._path}: {e}",
                path=str(self._path),
                cause=e,
            )

        if not text.strip():
            logger.warning(f"Records file {self._path} is empty")
            return {}

        try:
            data = json.loads(text)
        except ValueError as e:
            raise CorruptStoreError(
                f"Records file {self._path} is not valid JSON: {e}",
                path=str(self._path),
                cause=e,
            )

        if not isinstance(data, dict):
            raise CorruptStoreError(
                f"Records file {self._path} must hold an object",
                path=str(self._path),
            )

        positions = {}
        for asset, record in data.items():
            try:
                positions[asset] = Position.from_dict(asset, record)
            except ValueError as e:
                raise CorruptStoreError(
                    f"Bad record {asset} in {self._path}: {e}",
                    path=str(self._path),
                    cause=e,
                )
        return positions

    def _commit(self, positions: Dict[str, Position]) -> None:
        """Persist, then publish. Memory is untouched if the write fails."""
        self._write_file(positions)
        self._positions = positions
        self._stamp = self._file_stamp()
        self._generation += 1

    def _write_file(self, positions: Dict[str, Position]) -> None:
        data = {asset: position.to_dict() for asset, position in positions.items()}
        directory = self._path.parent
        temp_path = None

        try:
            directory.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                dir=directory,
                prefix=".records_",
                suffix=".json.tmp",
            )

            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_path, self._path)
            temp_path = None

        except OSError as e:
            logger.error(f"Failed to write {self._path}: {e}")
            raise StoreError(
                f"Failed to write {self._path}: {e}",
                path=str(self._path),
                cause=e,
            )

        finally:
            if temp_path is not None and os.path.exists(temp_path):
                os.unlink(temp_path)


__all__ = ["StoreSnapshot", "PositionStore"]
