"""Small persistent key/value store for client-side state."""
import asyncio
import json
import os
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import logfire


class LocalStore:
    """
    String key/value store backed by a JSON file.

    Values survive a process restart when a path is given; without a path the
    store lives in memory only. All writes go through one lock so concurrent
    read-modify-write cycles do not lose updates.
    """

    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path) if path else None
        self._lock = asyncio.Lock()
        self._data: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        if self.path is None or not self.path.exists():
            self._data = {}
            return self._data
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logfire.error(f"Local store at {self.path} is unreadable, starting empty: {str(e)}")
            data = {}
        if not isinstance(data, dict):
            logfire.error(f"Local store at {self.path} does not hold an object, starting empty")
            data = {}
        self._data = data
        return self._data

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data), encoding="utf-8")
        os.replace(tmp_path, self.path)

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            return data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        await self.multi_set([(key, value)])

    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            for key, value in pairs:
                data[key] = value
            await asyncio.to_thread(self._flush)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            if data.pop(key, None) is not None:
                await asyncio.to_thread(self._flush)
