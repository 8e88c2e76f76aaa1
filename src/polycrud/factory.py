# src/polycrud/factory.py
import logging
import os
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from .errors import AdapterConfigurationError, UnsupportedProviderTypeError
from .models import ProviderType
from .registry import ProviderRegistry
from .types import CrudProvider

logger = logging.getLogger(__name__)


def create_data_provider(
    provider_type: Union[str, ProviderType], config: Optional[Dict[str, Any]] = None
) -> CrudProvider:
    """
    Build a provider from a type tag and its configuration.

    Synchronous and free of I/O: adapters open connections on first use.
    Unknown types raise UnsupportedProviderTypeError; configuration keys the
    adapter does not accept raise AdapterConfigurationError.
    """
    factory = ProviderRegistry.resolve(provider_type)
    options = dict(config or {})
    name = provider_type.value if isinstance(provider_type, ProviderType) else str(provider_type)

    try:
        provider = factory(**options)
    except TypeError as e:
        raise AdapterConfigurationError(f"Invalid configuration for provider '{name}': {e}") from e

    logger.debug(f"Created data provider '{name}' ({provider.__class__.__name__})")
    return provider


_DETECTION_RULES = [
    ('NEON_DATABASE_URL', ProviderType.NEON),
    ('SUPABASE_URL', ProviderType.SUPABASE),
    ('MONGODB_URI', ProviderType.MONGODB),
    ('AIRTABLE_API_KEY', ProviderType.AIRTABLE),
    ('STRIPE_API_KEY', ProviderType.STRIPE),
    ('POSTGRES_URL', ProviderType.POSTGRESQL),
    ('POSTGRES_CONNECTION_STRING', ProviderType.POSTGRESQL),
    ('DATABASE_URL', ProviderType.POSTGRESQL),
    ('SQLITE_DATABASE', ProviderType.SQLITE),
]


def _detect_provider(prefix: str) -> ProviderType:
    explicit = os.getenv(f"{prefix}PROVIDER")
    if explicit:
        try:
            return ProviderType(explicit.strip().lower())
        except ValueError:
            raise UnsupportedProviderTypeError(explicit, ProviderRegistry.list_registered())

    if os.getenv(f"{prefix}BASE_URL"):
        return ProviderType.REST

    for env_var, provider in _DETECTION_RULES:
        if os.getenv(env_var):
            return provider

    logger.warning("No provider detected, defaulting to in-memory mock provider")
    return ProviderType.MOCK


def _env_config(provider: ProviderType, prefix: str) -> Dict[str, Any]:
    config: Dict[str, Any] = {}

    if provider in (ProviderType.REST, ProviderType.JSONAPI, ProviderType.GRAPHQL,
                    ProviderType.POSTGREST):
        base_url = os.getenv(f"{prefix}BASE_URL")
        if not base_url:
            raise AdapterConfigurationError(f"{prefix}BASE_URL is required for '{provider.value}'")
        config["base_url"] = base_url
        token = os.getenv(f"{prefix}AUTH_TOKEN")
        if token:
            config["auth"] = {"type": "bearer", "token": token}
        api_key = os.getenv(f"{prefix}API_KEY")
        if api_key and not token:
            config["auth"] = {
                "type": "api_key",
                "api_key": api_key,
                "header_name": os.getenv(f"{prefix}API_KEY_HEADER", "X-API-Key"),
            }

    if provider == ProviderType.LOCAL and os.getenv(f"{prefix}LOCAL_PATH"):
        config["path"] = os.getenv(f"{prefix}LOCAL_PATH")

    # remaining adapters read their own connection variables
    return config


def create_data_provider_from_env(prefix: str = "POLYCRUD_") -> CrudProvider:
    """
    Build a provider from environment variables (and a ``.env`` file).

    ``<prefix>PROVIDER`` selects the type explicitly; otherwise the type is
    detected from well-known connection variables.
    """
    load_dotenv()
    provider = _detect_provider(prefix)
    logger.info(f"Provider from environment: {provider.value}")
    return create_data_provider(provider, _env_config(provider, prefix))
