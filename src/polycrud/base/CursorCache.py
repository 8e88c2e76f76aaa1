# src/polycrud/base/CursorCache.py
from __future__ import annotations

import json
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..types import JsonDict

PageFetcher = Callable[[Optional[str]], Awaitable[Tuple[List[JsonDict], Optional[str]]]]


class CursorCache:
    """
    Continuation tokens for cursor-only backends, kept per query.

    For each query key the cache maps a 1-based page number to the token that
    fetches it. Page 1 always maps to ``None`` (start of the result set). A
    ``None`` stored for a later page means the backend reported no such page.
    Only tokens the backend actually issued are stored.
    """

    def __init__(self, max_queries: int = 128):
        self.max_queries = max_queries
        self._queries: "OrderedDict[str, Dict[int, Optional[str]]]" = OrderedDict()

    @staticmethod
    def key(*parts: Any) -> str:
        return json.dumps(list(parts), sort_keys=True, default=str)

    def pages(self, key: str) -> Dict[int, Optional[str]]:
        cursors = self._queries.get(key)
        if cursors is None:
            cursors = {1: None}
            self._queries[key] = cursors
            while len(self._queries) > self.max_queries:
                self._queries.popitem(last=False)
        else:
            self._queries.move_to_end(key)
        return cursors

    def reset(self, key: str) -> None:
        self._queries[key] = {1: None}

    def invalidate(self, prefix: str) -> None:
        """Drop every query whose key starts with ``prefix``"""
        for key in [k for k in self._queries if k.startswith(prefix)]:
            del self._queries[key]

    def clear(self) -> None:
        self._queries.clear()

    def last_known_page(self, key: str) -> int:
        cursors = self.pages(key)
        return max(k for k, v in cursors.items() if k == 1 or v is not None)

    async def walk(self, key: str, page: int, fetch: PageFetcher
                   ) -> Tuple[List[JsonDict], bool, bool]:
        """
        Follow tokens from the nearest cached page up to ``page``.

        Returns ``(rows, has_more, reached)``; ``reached`` is False when the
        result set ends before the requested page.
        """
        cursors = self.pages(key)
        start = max(k for k in cursors if k <= page)
        token = cursors[start]
        if start > 1 and token is None:
            return [], False, False

        current = start
        while True:
            rows, next_token = await fetch(token)
            cursors[current + 1] = next_token
            if current == page:
                return rows, next_token is not None, True
            if next_token is None:
                return [], False, False
            current += 1
            token = next_token
