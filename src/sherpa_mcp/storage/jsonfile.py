"""Atomic JSON files, fault classification and retry policy."""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FaultClass(str, Enum):
    """How a persistence failure is handled."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CORRUPTION = "corruption"
    LOGICAL = "logical"


PERMANENT_ERRNOS = frozenset(
    {
        errno.EACCES,
        errno.EPERM,
        errno.EROFS,
        errno.ENOSPC,
        errno.ENOTDIR,
        errno.EISDIR,
        errno.ENAMETOOLONG,
        errno.EINVAL,
    }
)

_ERRNO_DESCRIPTIONS = {
    errno.ENOENT: "directory path does not exist",
    errno.EACCES: "permission denied",
    errno.EPERM: "permission denied",
    errno.ENOSPC: "no space left on device",
    errno.EROFS: "read-only file system",
    errno.ENOTDIR: "invalid directory path",
    errno.EISDIR: "path is a directory",
    errno.ENAMETOOLONG: "path name too long",
    errno.EINVAL: "invalid argument",
}


def classify(exc: BaseException) -> FaultClass:
    """Map an exception raised by file or payload handling to a fault class."""

    if isinstance(exc, (UnicodeDecodeError, ValidationError, json.JSONDecodeError, RecursionError)):
        return FaultClass.CORRUPTION
    if isinstance(exc, OSError):
        return FaultClass.PERMANENT if exc.errno in PERMANENT_ERRNOS else FaultClass.TRANSIENT
    if isinstance(exc, (TypeError, ValueError)):
        return FaultClass.CORRUPTION
    if isinstance(exc, LookupError):
        return FaultClass.LOGICAL
    return FaultClass.TRANSIENT


def describe_error(exc: BaseException) -> str:
    """Short human readable reason used in log lines and result aggregates."""

    if isinstance(exc, OSError) and exc.errno in _ERRNO_DESCRIPTIONS:
        target = f" ({exc.filename})" if exc.filename else ""
        return f"{_ERRNO_DESCRIPTIONS[exc.errno]}{target}"
    return str(exc) or exc.__class__.__name__


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Exponential backoff for transient faults.

    Attempt ``n`` (1-based) waits ``min(base_delay * 2 ** (n - 1), max_delay)``
    seconds before the next try. Only transient faults are retried; anything
    else is raised immediately.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> T:
        """Run ``operation`` until it succeeds or the policy gives up.

        The last exception is re-raised once retries are exhausted.
        """

        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                fault = classify(exc)
                if fault is not FaultClass.TRANSIENT or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.debug(
                    "Retrying %s after %s fault",
                    name,
                    fault.value,
                    extra={"attempt": attempt, "delay": delay},
                )
                await sleep(delay)


class JsonFile:
    """A JSON document on disk written atomically.

    Writes go to a temporary file in the target directory and are moved into
    place with :func:`os.replace`. Each write carries a generation number taken
    when the caller snapshotted its state; a write whose generation is older
    than one already on disk is skipped.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._issued = 0
        self._written = 0

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def next_generation(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    def read_sync(self) -> Any:
        """Decode the file; nesting too deep to decode raises ``ValueError``."""

        with self._path.open("r", encoding="utf-8") as handle:
            try:
                return json.load(handle)
            except RecursionError as exc:
                raise ValueError(f"{self._path.name}: JSON nested too deeply") from exc

    def write_sync(self, payload: Any, generation: int | None = None) -> bool:
        """Write ``payload``; return False when skipped as stale."""

        document = json.dumps(payload, indent=2, ensure_ascii=False)
        with self._lock:
            if generation is None:
                self._issued += 1
                generation = self._issued
            if generation < self._written:
                return False

            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(document)
                    handle.write("\n")
                os.replace(tmp_name, self._path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass
                raise
            self._written = generation
        return True

    def delete_sync(self) -> bool:
        """Remove the file; return False when it was already absent."""

        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        return True

    async def read(self) -> Any:
        return await asyncio.to_thread(self.read_sync)

    async def write(self, payload: Any, generation: int | None = None) -> bool:
        return await asyncio.to_thread(self.write_sync, payload, generation)

    async def delete(self) -> bool:
        return await asyncio.to_thread(self.delete_sync)


__all__ = [
    "FaultClass",
    "JsonFile",
    "PERMANENT_ERRNOS",
    "RetryPolicy",
    "classify",
    "describe_error",
]
