# src/polycrud/__init__.py
"""
polycrud - one async CRUD contract over many backends
Provider adapters, a plugin hook engine, audit trail, access control, cache
"""

__version__ = "0.1.0"

from .factory import create_data_provider, create_data_provider_from_env
from .registry import ProviderRegistry
from .engine import CrudEngine, EngineConfig, create_crud_engine, create_crud_engine_with_provider
from .plugins import (
    AuditPlugin,
    CrudPlugin,
    EncryptionPlugin,
    MaskingPlugin,
    PermissionsPlugin,
    PluginHooks,
)
from .models import (
    AuthConfig,
    AuthType,
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    MutationResult,
    Pagination,
    ProviderType,
    RecordResult,
    Sort,
    SortOrder,
    UpdateParams,
)
from .types import CrudProvider
from .query import FilterCondition, Operator, QueryBuilder
from .audit import AuditContext, AuditManager, InMemoryAuditStorage, ProviderAuditStorage
from .security import AccessControl, DataMasking, FieldEncryption
from .cache import CachedProvider, RedisCacheEngine
from .retry import RetryingProvider
from .monitoring import MetricsCollector
from .errors import (
    CrudError,
    UnsupportedProviderTypeError,
    AdapterConfigurationError,
    UnsupportedResourceError,
    NotFoundError,
    TranslationError,
    BackendRequestError,
    OperationTimeoutError,
    PermissionDeniedError,
    HookError,
    AuditError,
)

__all__ = [
    # Factories
    "create_data_provider",
    "create_data_provider_from_env",
    "ProviderRegistry",
    # Engine & Plugins
    "CrudEngine",
    "EngineConfig",
    "create_crud_engine",
    "create_crud_engine_with_provider",
    "CrudPlugin",
    "PluginHooks",
    "AuditPlugin",
    "PermissionsPlugin",
    "MaskingPlugin",
    "EncryptionPlugin",
    # Models
    "AuthConfig",
    "AuthType",
    "CreateParams",
    "DeleteParams",
    "GetListParams",
    "GetOneParams",
    "ListResult",
    "MutationResult",
    "Pagination",
    "ProviderType",
    "RecordResult",
    "Sort",
    "SortOrder",
    "UpdateParams",
    "CrudProvider",
    # Query
    "FilterCondition",
    "Operator",
    "QueryBuilder",
    # Audit, Security, Cache
    "AuditContext",
    "AuditManager",
    "InMemoryAuditStorage",
    "ProviderAuditStorage",
    "AccessControl",
    "DataMasking",
    "FieldEncryption",
    "CachedProvider",
    "RedisCacheEngine",
    "RetryingProvider",
    "MetricsCollector",
    # Errors
    "CrudError",
    "UnsupportedProviderTypeError",
    "AdapterConfigurationError",
    "UnsupportedResourceError",
    "NotFoundError",
    "TranslationError",
    "BackendRequestError",
    "OperationTimeoutError",
    "PermissionDeniedError",
    "HookError",
    "AuditError",
]
