# src/polycrud/audit/models.py

from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid
import hashlib
import json

from ..json_safe import json_safe

_CONTEXT_FIELDS = ("tenant_id", "actor_id", "trace_id", "request_id", "ip_address", "user_agent")


@dataclass(frozen=True)
class AuditRecord:
    audit_id: str
    timestamp: str
    sequence: int
    tenant_id: Optional[str]
    actor_id: Optional[str]
    roles: List[str]
    action: str
    resource: str
    entity_id: Optional[str]
    provider: str
    success: bool

    before: Optional[Dict[str, Any]]
    after: Optional[Dict[str, Any]]
    changed_fields: Optional[List[str]]

    trace_id: Optional[str]
    request_id: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]

    error: Optional[str]

    hash: Optional[str] = None
    previous_hash: Optional[str] = None

    def compute_hash(self) -> str:
        payload = asdict(replace(self, hash=None))
        return hashlib.sha256(
            json.dumps(payload, sort_keys=True, default=json_safe).encode()
        ).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditRecord":
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})

    @classmethod
    def create(
        cls,
        *,
        action: str,
        resource: str,
        entity_id: Optional[str],
        provider: str,
        success: bool,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        changed_fields: Optional[List[str]],
        error: Optional[str],
        context: Dict[str, Any],
        sequence: int = 1,
        previous_hash: Optional[str] = None,
    ) -> "AuditRecord":
        record = cls(
            audit_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            sequence=sequence,
            roles=list(context.get("roles") or []),
            action=action,
            resource=resource,
            entity_id=entity_id,
            provider=provider,
            success=success,
            before=before,
            after=after,
            changed_fields=changed_fields,
            **{name: context.get(name) for name in _CONTEXT_FIELDS},
            error=error,
            previous_hash=previous_hash,
        )

        return replace(record, hash=record.compute_hash())
