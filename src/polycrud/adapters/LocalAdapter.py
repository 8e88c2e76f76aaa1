# src/polycrud/adapters/LocalAdapter.py
from __future__ import annotations

import asyncio
import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..errors import BackendRequestError
from ..json_safe import dumps
from ..models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    Record,
    RecordResult,
    UpdateParams,
)
from .MemoryAdapter import MemoryAdapter


class LocalAdapter(MemoryAdapter):
    """
    MemoryAdapter persisted to a JSON file, loaded on first use.

    Writes are serialized: each mutation and the file write that follows it
    run under one lock, and a failed write rolls the in-memory store back so
    memory and disk never disagree.
    """

    provider_type = "local"

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        *,
        resources: Optional[Dict[str, str]] = None,
        strict_resources: bool = False,
    ):
        super().__init__(resources=resources, strict_resources=strict_resources)
        self.path = Path(path or os.getenv("POLYCRUD_LOCAL_PATH", ".polycrud/data.json"))
        self._loaded = False
        self._file_lock = asyncio.Lock()

    def _read_file(self) -> Dict[str, List[Record]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                content = json.load(fh)
        except (OSError, ValueError) as e:
            raise BackendRequestError(
                f"Failed to read local store {self.path}: {e}",
                backend_message=str(e),
            ) from e
        if not isinstance(content, dict):
            raise BackendRequestError(f"Local store {self.path} must contain a JSON object")
        return content

    def _write_file(self, snapshot: Dict[str, List[Record]]) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.path.parent,
                prefix=f"{self.path.name}.", suffix=".tmp", delete=False,
            ) as fh:
                tmp_name = fh.name
                fh.write(dumps(snapshot, indent=2, sort_keys=True))
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise BackendRequestError(
                f"Failed to write local store {self.path}: {e}",
                backend_message=str(e),
            ) from e

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._file_lock:
            if self._loaded:
                return
            content = await self._to_thread(self._read_file)
            self._load(content)
            self._loaded = True
            self.logger.info(f"Local store loaded from {self.path}")

    async def _write(self, operation: Callable[[Any], Awaitable[RecordResult]],
                     params: Any) -> RecordResult:
        await self._ensure_loaded()
        async with self._file_lock:
            store, counters = copy.deepcopy(self._store), dict(self._counters)
            result = await operation(params)
            try:
                await self._to_thread(self._write_file, self.snapshot())
            except BackendRequestError:
                self._store, self._counters = store, counters
                raise
            return result

    async def get_list(self, params: GetListParams) -> ListResult:
        await self._ensure_loaded()
        return await super().get_list(params)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        await self._ensure_loaded()
        return await super().get_one(params)

    async def create(self, params: CreateParams) -> RecordResult:
        return await self._write(super().create, params)

    async def update(self, params: UpdateParams) -> RecordResult:
        return await self._write(super().update, params)

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        return await self._write(super().delete_one, params)
