# src/polycrud/audit/__init__.py
from .models import AuditRecord
from .context import AuditContext
from .manager import AuditManager, compute_field_changes
from .AuditStorage import AuditStorage, InMemoryAuditStorage, ProviderAuditStorage

__all__ = [
    'AuditRecord',
    'AuditContext',
    'AuditManager',
    'AuditStorage',
    'InMemoryAuditStorage',
    'ProviderAuditStorage',
    'compute_field_changes',
]
