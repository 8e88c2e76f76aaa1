# src/polycrud/audit/AuditStorage.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..errors import AuditError, CrudError
from ..models import CreateParams, GetListParams, Pagination, Sort, SortOrder
from ..types import CrudProvider
from .models import AuditRecord


class AuditStorage(ABC):
    """Append-only audit log with per-tenant hash chaining"""

    @abstractmethod
    async def last_record(self, tenant_id: Optional[str]) -> Optional[AuditRecord]:
        """Most recent record in the tenant's chain"""

    @abstractmethod
    async def persist(self, record: AuditRecord) -> None:
        pass

    @abstractmethod
    async def records(self, tenant_id: Optional[str] = None) -> List[AuditRecord]:
        """Records of one tenant's chain in sequence order"""

    async def verify_chain(self, tenant_id: Optional[str] = None) -> bool:
        """Verify hash chain integrity: every hash matches its record and links to the previous one"""
        prev_hash = None
        for record in await self.records(tenant_id):
            if record.previous_hash != prev_hash:
                return False
            if record.hash != record.compute_hash():
                return False
            prev_hash = record.hash
        return True


class InMemoryAuditStorage(AuditStorage):
    def __init__(self):
        self._records: Dict[Optional[str], List[AuditRecord]] = {}

    async def last_record(self, tenant_id: Optional[str]) -> Optional[AuditRecord]:
        chain = self._records.get(tenant_id)
        return chain[-1] if chain else None

    async def persist(self, record: AuditRecord) -> None:
        self._records.setdefault(record.tenant_id, []).append(record)

    async def records(self, tenant_id: Optional[str] = None) -> List[AuditRecord]:
        return list(self._records.get(tenant_id, []))


class ProviderAuditStorage(AuditStorage):
    """Stores audit records as rows of a resource in any provider"""

    def __init__(self, provider: CrudProvider, resource: str = "polycrud_audit_log"):
        self.provider = provider
        self.resource = resource

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> AuditRecord:
        row = dict(row)
        row.pop("id", None)
        return AuditRecord.from_dict(row)

    async def last_record(self, tenant_id: Optional[str]) -> Optional[AuditRecord]:
        try:
            result = await self.provider.get_list(GetListParams(
                resource=self.resource,
                pagination=Pagination(page=1, per_page=1),
                sort=Sort("sequence", SortOrder.DESC),
                filter={"tenant_id": tenant_id},
            ))
        except CrudError as e:
            raise AuditError(f"Could not read audit chain: {e}", resource=self.resource) from e
        return self._from_row(result.data[0]) if result.data else None

    async def persist(self, record: AuditRecord) -> None:
        try:
            await self.provider.create(CreateParams(self.resource, record.to_dict()))
        except CrudError as e:
            raise AuditError(f"Could not persist audit record: {e}", resource=self.resource) from e

    async def records(self, tenant_id: Optional[str] = None) -> List[AuditRecord]:
        try:
            result = await self.provider.get_list(GetListParams(
                resource=self.resource,
                sort=Sort("sequence", SortOrder.ASC),
                filter={"tenant_id": tenant_id},
            ))
        except CrudError as e:
            raise AuditError(f"Could not read audit chain: {e}", resource=self.resource) from e
        return [self._from_row(row) for row in result.data]
