# src/polycrud/registry.py
import importlib
from typing import Any, Callable, Dict, List, Union

from .errors import UnsupportedProviderTypeError
from .models import ProviderType

ProviderFactory = Callable[..., Any]

_BUILTIN: Dict[str, str] = {
    ProviderType.MOCK.value: "polycrud.adapters.MemoryAdapter:MemoryAdapter",
    ProviderType.LOCAL.value: "polycrud.adapters.LocalAdapter:LocalAdapter",
    ProviderType.REST.value: "polycrud.adapters.RestAdapter:RestAdapter",
    ProviderType.JSONAPI.value: "polycrud.adapters.JsonApiAdapter:JsonApiAdapter",
    ProviderType.GRAPHQL.value: "polycrud.adapters.GraphQLAdapter:GraphQLAdapter",
    ProviderType.SUPABASE.value: "polycrud.adapters.PostgRESTAdapter:SupabaseAdapter",
    ProviderType.POSTGREST.value: "polycrud.adapters.PostgRESTAdapter:PostgRESTAdapter",
    ProviderType.SQLITE.value: "polycrud.adapters.SQLAdapter:SQLiteAdapter",
    ProviderType.POSTGRESQL.value: "polycrud.adapters.SQLAdapter:PostgreSQLAdapter",
    ProviderType.NEON.value: "polycrud.adapters.SQLAdapter:NeonAdapter",
    ProviderType.MONGODB.value: "polycrud.adapters.MongoDBAdapter:MongoDBAdapter",
    ProviderType.AIRTABLE.value: "polycrud.adapters.AirtableAdapter:AirtableAdapter",
    ProviderType.STRIPE.value: "polycrud.adapters.StripeAdapter:StripeAdapter",
}


class ProviderRegistry:
    """
    Provider type registry.

    Supports:
    - register(name, factory)
    - resolve(name) -> factory
    - list_registered() -> type names

    Built-in adapters are imported on first resolve so optional drivers
    are only needed for the providers actually used.
    """

    _factories: Dict[str, ProviderFactory] = {}

    @staticmethod
    def _name(provider_type: Union[str, ProviderType]) -> str:
        if isinstance(provider_type, ProviderType):
            return provider_type.value
        if isinstance(provider_type, str):
            return provider_type.strip().lower()
        raise UnsupportedProviderTypeError(provider_type, ProviderRegistry.list_registered())

    @classmethod
    def register(cls, name: Union[str, ProviderType], factory: ProviderFactory) -> None:
        if not callable(factory):
            raise TypeError(f"Provider factory for '{name}' must be callable")
        cls._factories[cls._name(name)] = factory

    @classmethod
    def unregister(cls, name: Union[str, ProviderType]) -> None:
        cls._factories.pop(cls._name(name), None)

    @classmethod
    def resolve(cls, provider_type: Union[str, ProviderType]) -> ProviderFactory:
        name = cls._name(provider_type)

        factory = cls._factories.get(name)
        if factory is not None:
            return factory

        target = _BUILTIN.get(name)
        if target is None:
            raise UnsupportedProviderTypeError(provider_type, cls.list_registered())

        module_name, class_name = target.split(":")
        factory = getattr(importlib.import_module(module_name), class_name)
        cls._factories[name] = factory
        return factory

    @classmethod
    def list_registered(cls) -> List[str]:
        return sorted(set(_BUILTIN) | set(cls._factories))

    @classmethod
    def clear(cls) -> None:
        """Drop custom registrations and cached built-in classes"""
        cls._factories.clear()
