# src/polycrud/audit/manager.py
from __future__ import annotations

import asyncio
from typing import Optional, Dict, Any, List

from .models import AuditRecord
from .AuditStorage import AuditStorage, InMemoryAuditStorage
from .context import AuditContext


def compute_field_changes(
    before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]
) -> Optional[List[str]]:
    if not before or not after:
        return None
    changed = sorted(
        key
        for key in set(before.keys()) | set(after.keys())
        if before.get(key) != after.get(key)
    )
    return changed or None


class AuditManager:
    def __init__(self, storage: Optional[AuditStorage] = None):
        self.storage = storage or InMemoryAuditStorage()
        self._lock = asyncio.Lock()

    async def record(
        self,
        *,
        action: str,
        resource: str,
        entity_id: Optional[Any],
        provider: str,
        success: bool = True,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        changed_fields: Optional[List[str]] = None,
    ) -> AuditRecord:
        context = AuditContext.snapshot()

        # reading the chain head and appending must not interleave
        async with self._lock:
            last = await self.storage.last_record(context["tenant_id"])

            record = AuditRecord.create(
                action=action,
                resource=resource,
                entity_id=str(entity_id) if entity_id is not None else None,
                provider=provider,
                success=success,
                before=before,
                after=after,
                changed_fields=changed_fields if changed_fields is not None
                else compute_field_changes(before, after),
                error=error,
                context=context,
                sequence=last.sequence + 1 if last else 1,
                previous_hash=last.hash if last else None,
            )

            await self.storage.persist(record)

        return record

    async def verify_chain(self, tenant_id: Optional[str] = None) -> bool:
        return await self.storage.verify_chain(tenant_id)
