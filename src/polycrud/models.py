# src/polycrud/models.py
"""
Parameter and result models shared by every provider
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum


ResourceName = str
RecordId = Union[str, int]
Record = Dict[str, Any]
# scalar (equality), None (is null), list/tuple (membership) or {"operator", "value"}
FilterValue = Any


class ProviderType(Enum):
    """Supported provider types"""
    MOCK = "mock"
    LOCAL = "local"
    REST = "rest"
    JSONAPI = "jsonapi"
    GRAPHQL = "graphql"
    SUPABASE = "supabase"
    POSTGREST = "postgrest"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    NEON = "neon"
    MONGODB = "mongodb"
    AIRTABLE = "airtable"
    STRIPE = "stripe"


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


class AuthType(Enum):
    NONE = "none"
    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "api_key"


@dataclass(frozen=True)
class Pagination:
    """1-based page window"""
    page: int = 1
    per_page: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


@dataclass(frozen=True)
class Sort:
    field: str
    order: SortOrder = SortOrder.ASC

    @property
    def descending(self) -> bool:
        return self.order == SortOrder.DESC


@dataclass(frozen=True)
class GetListParams:
    resource: ResourceName
    pagination: Optional[Pagination] = None
    sort: Optional[Sort] = None
    filter: Optional[Dict[str, FilterValue]] = None
    meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class GetOneParams:
    resource: ResourceName
    id: RecordId
    meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CreateParams:
    resource: ResourceName
    variables: Record
    meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class UpdateParams:
    resource: ResourceName
    id: RecordId
    variables: Record
    meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class DeleteParams:
    resource: ResourceName
    id: RecordId
    meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ListResult:
    """
    One page of records.

    ``total`` is never smaller than ``len(data)``. When the backend cannot
    report an exact count, ``estimated`` is True and ``total`` is a best-effort
    lower bound.
    """
    data: List[Record] = field(default_factory=list)
    total: int = 0
    estimated: bool = False
    meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class RecordResult:
    """Single record returned by get_one, create, update and delete"""
    data: Record
    meta: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class AuthConfig:
    """Credentials for HTTP-backed providers"""
    type: AuthType = AuthType.NONE
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    header_name: str = "X-API-Key"
    query_param: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> "AuthConfig":
        """Accept an AuthConfig, a plain dict, or None"""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            data = dict(value)
            data["type"] = AuthType(data.get("type", "none"))
            return cls(**data)
        raise TypeError(f"Invalid auth config {value!r}")


# create, update and delete share the single-record shape
MutationResult = RecordResult
