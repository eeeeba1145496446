"""Key → JSON document store.

Each key is a file inside the store directory holding one JSON
document.  Documents are read wholesale and rewritten wholesale; there
is no partial update.  Writes to one key are queued behind a per-key
lock, so the last write issued is the one left on disk.

Writes go through :func:`asyncio.to_thread` so the event loop never
blocks on disk I/O, and land atomically (a uniquely named temporary
file in the same directory, then :func:`os.replace`), so readers never
see a truncated or interleaved document.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from zwave2mqtt._errors import PersistenceError

logger = logging.getLogger(__name__)


@runtime_checkable
class DocumentStorePort(Protocol):
    """Port contract for whole-document persistence."""

    def get(self, key: str, default: Any = None) -> Any: ...

    async def put(self, key: str, data: Any) -> None: ...


class JsonStore:
    """File-backed :class:`DocumentStorePort` implementation.

    Args:
        directory: Directory holding one file per key.  Created on
            the first write.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    def get(self, key: str, default: Any = None) -> Any:
        """Read the document stored under *key*.

        A missing, empty, or corrupt file yields *default*; corruption
        is logged so the operator can recover the file by hand.
        """
        path = self._directory / key
        try:
            text = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            logger.debug("No document at %s, using default", path)
            return default
        except OSError:
            logger.exception("Failed to read %s", path)
            return default
        if not text:
            return default
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            logger.error("Corrupt JSON document at %s, using default", path)
            return default

    async def put(self, key: str, data: Any) -> None:
        """Replace the document stored under *key*.

        Writes to the same key are applied one at a time, in call order.

        Raises:
            PersistenceError: If the document cannot be serialised or
                written.
        """
        try:
            payload = json.dumps(data, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            msg = f"Document {key!r} is not JSON serialisable: {exc}"
            raise PersistenceError(msg) from exc
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            await asyncio.to_thread(self._write, key, payload)

    def _write(self, key: str, payload: str) -> None:
        path = self._directory / key
        tmp: Path | None = None
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._directory,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp = Path(handle.name)
                handle.write(payload)
            os.replace(tmp, path)
        except OSError as exc:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
            msg = f"Failed to write {path}: {exc}"
            raise PersistenceError(msg) from exc
