"""
Persistence - storage backends and the debounced writer.

Storage is a plain key-value collaborator. Writes go through a
DebouncedWriter so a burst of edits produces one write once the burst
has been quiet for the debounce delay.
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union
import asyncio
import copy
import json
import logging
import os
import tempfile

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Key-value storage collaborator."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    def keys(self) -> list:
        return []


class MemoryStorage(StorageBackend):
    """In-process storage. Values are deep-copied in and out."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(data) if data else {}

    def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list:
        return list(self._data)


class JsonFileStorage(StorageBackend):
    """
    All keys in one JSON file, rewritten atomically on every change.

    Example:
        >>> storage = JsonFileStorage("~/.pagepatch/patches.json")
        >>> storage.set("pagepatch::patches::https://a.example/", {"patches": []})
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"[JsonFileStorage] Unreadable store {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".pagepatch-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[Any]:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> list:
        return list(self._read())


class WriterState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"


class DebouncedWriter:
    """
    Debounced persistence as an explicit state machine.

        IDLE --request--> SCHEDULED --quiet for delay--> IN_FLIGHT --> IDLE

    A request while SCHEDULED cancels the pending timer and starts a new
    one, so the last call after the quiet window wins. Without a running
    event loop the write happens immediately. Write errors are logged and
    dropped.
    """

    def __init__(self, write: Callable[[], Any], delay: float = 0.3):
        """
        Args:
            write: Performs the actual write (reads current state itself)
            delay: Quiet period in seconds before writing
        """
        self._write = write
        self.delay = delay
        self._state = WriterState.IDLE
        self._handle: Optional[asyncio.TimerHandle] = None
        self.writes = 0

    @property
    def state(self) -> WriterState:
        return self._state

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def request(self) -> None:
        """Ask for a write after the quiet window."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._run()
            return

        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self._fire)
        if self._state is WriterState.IDLE:
            self._state = WriterState.SCHEDULED

    def flush(self) -> bool:
        """Perform a pending write now. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        self._run()
        return True

    def cancel(self) -> None:
        """Drop a pending write."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._state is WriterState.SCHEDULED:
            self._state = WriterState.IDLE

    def _fire(self) -> None:
        self._handle = None
        self._run()

    def _run(self) -> None:
        self._state = WriterState.IN_FLIGHT
        try:
            self._write()
            self.writes += 1
        except Exception as e:
            logger.error(f"[DebouncedWriter] Write failed: {e}")
        finally:
            self._state = WriterState.SCHEDULED if self._handle is not None else WriterState.IDLE
