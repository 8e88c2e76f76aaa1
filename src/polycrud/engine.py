# src/polycrud/engine.py
"""
CRUD engine: one provider wrapped in ordered plugin hook pipelines
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from .audit.context import AuditContext
from .audit.manager import AuditManager
from .errors import HookError, OperationTimeoutError
from .factory import create_data_provider
from .models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    ProviderType,
    RecordResult,
    UpdateParams,
)
from .monitoring import MetricsCollector, PerformanceMonitor
from .plugins.audit import AuditPlugin
from .plugins.base import CrudPlugin
from .plugins.permissions import PermissionsPlugin
from .security import AccessControl
from .types import CrudProvider

logger = logging.getLogger(__name__)

# operation -> (before hook, after hook, provider method)
_PIPELINES: Dict[str, Tuple[str, str, str]] = {
    "get_list": ("before_get_list", "after_get_list", "get_list"),
    "get_one": ("before_get_one", "after_get_one", "get_one"),
    "create": ("before_create", "after_create", "create"),
    "update": ("before_update", "after_update", "update"),
    "delete": ("before_delete", "after_delete", "delete_one"),
}


@dataclass(frozen=True)
class EngineConfig:
    provider: CrudProvider
    plugins: Tuple[CrudPlugin, ...] = ()
    enable_audit: bool = False
    enable_permissions: bool = False
    default_locale: str = "en"
    supported_locales: Tuple[str, ...] = ("en",)
    default_timeout: Optional[float] = None
    audit_manager: Optional[AuditManager] = None
    access_control: Optional[AccessControl] = None
    metrics: Optional[MetricsCollector] = None

    def __post_init__(self):
        if not isinstance(self.provider, CrudProvider):
            raise TypeError(f"{self.provider!r} does not implement the CrudProvider operations")
        object.__setattr__(self, "plugins", tuple(self.plugins))
        object.__setattr__(self, "supported_locales", tuple(self.supported_locales))
        if not self.supported_locales:
            raise ValueError("supported_locales must not be empty")
        if self.default_locale not in self.supported_locales:
            raise ValueError(
                f"default_locale '{self.default_locale}' is not in supported_locales "
                f"{list(self.supported_locales)}"
            )
        if self.default_timeout is not None and self.default_timeout <= 0:
            raise ValueError("default_timeout must be positive")
        if self.enable_permissions and self.access_control is None:
            raise ValueError("enable_permissions requires an access_control")


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CrudEngine:
    """
    Single entry point for application data calls.

    Before-hooks run in plugin registration order, each receiving the
    previous hook's params. The provider is called once with the final
    params. After-hooks then run in the same order, each receiving the
    previous hook's result together with the caller's original params.
    After-hooks run only when the provider call succeeded; errors from the
    provider or any hook propagate unchanged.
    """

    def __init__(self, config: EngineConfig):
        self._config = config
        self._plugins = self._assemble_plugins(config)
        self._metrics = config.metrics

        for plugin in self._plugins:
            plugin.initialize(self)

        logger.info(
            f"CrudEngine ready: provider={self.provider_name} "
            f"plugins={[p.name for p in self._plugins]}"
        )

    @staticmethod
    def _assemble_plugins(config: EngineConfig) -> Tuple[CrudPlugin, ...]:
        plugins = list(config.plugins)
        if config.enable_permissions:
            plugins.insert(0, PermissionsPlugin(config.access_control))  # type: ignore[arg-type]
        if config.enable_audit:
            plugins.append(AuditPlugin(config.audit_manager or AuditManager()))

        seen = set()
        for plugin in plugins:
            if not isinstance(plugin, CrudPlugin):
                raise TypeError(f"{plugin!r} is not a CrudPlugin")
            if plugin.name in seen:
                raise ValueError(f"Duplicate plugin name '{plugin.name}'")
            seen.add(plugin.name)
        return tuple(plugins)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def plugins(self) -> Tuple[CrudPlugin, ...]:
        return self._plugins

    @property
    def provider_name(self) -> str:
        provider = self._config.provider
        return getattr(provider, "provider_type", provider.__class__.__name__)

    def get_data_provider(self) -> CrudProvider:
        return self._config.provider

    def set_data_provider(self, provider: CrudProvider) -> None:
        """Swap the live provider; plugins and settings are unchanged"""
        self._config = replace(self._config, provider=provider)

    def get_plugin(self, name: str) -> Optional[CrudPlugin]:
        for plugin in self._plugins:
            if plugin.name == name:
                return plugin
        return None

    async def _call_provider(self, method: str, operation: str, params: Any) -> Any:
        fn = getattr(self._config.provider, method)
        if self._metrics is None:
            return await fn(params)

        with PerformanceMonitor(self._metrics, operation, params.resource,
                                provider=self.provider_name,
                                tenant_id=AuditContext.tenant_id.get(),
                                actor_id=AuditContext.actor_id.get()) as monitor:
            result = await fn(params)
            monitor.rows = len(result.data) if isinstance(result, ListResult) else 1
            monitor.cache_hit = bool((getattr(result, "meta", None) or {}).get("cache_hit"))
        return result

    async def _pipeline(self, operation: str, params: Any) -> Any:
        before_name, after_name, method = _PIPELINES[operation]

        current = params
        for plugin in self._plugins:
            hook = getattr(plugin.hooks, before_name)
            if hook is None:
                continue
            current = await _resolve(hook(current))
            if current is None:
                raise HookError(
                    f"Plugin '{plugin.name}' {before_name} returned None",
                    resource=params.resource, operation=operation,
                )

        logger.debug(f"{operation} {current.resource} via {self.provider_name}")
        result = await self._call_provider(method, operation, current)

        for plugin in self._plugins:
            hook = getattr(plugin.hooks, after_name)
            if hook is None:
                continue
            result = await _resolve(hook(result, params))
            if result is None:
                raise HookError(
                    f"Plugin '{plugin.name}' {after_name} returned None",
                    resource=params.resource, operation=operation,
                )

        return result

    async def _run(self, operation: str, params: Any, timeout: Optional[float]) -> Any:
        deadline = timeout if timeout is not None else self._config.default_timeout
        if deadline is None:
            return await self._pipeline(operation, params)

        try:
            return await asyncio.wait_for(self._pipeline(operation, params), deadline)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                f"{operation} on '{params.resource}' exceeded {deadline}s",
                resource=params.resource,
                record_id=getattr(params, "id", None),
                operation=operation,
            ) from e

    async def get_list(self, params: GetListParams, *, timeout: Optional[float] = None) -> ListResult:
        return await self._run("get_list", params, timeout)

    async def get_one(self, params: GetOneParams, *, timeout: Optional[float] = None) -> RecordResult:
        return await self._run("get_one", params, timeout)

    async def create(self, params: CreateParams, *, timeout: Optional[float] = None) -> RecordResult:
        return await self._run("create", params, timeout)

    async def update(self, params: UpdateParams, *, timeout: Optional[float] = None) -> RecordResult:
        return await self._run("update", params, timeout)

    async def delete(self, params: DeleteParams, *, timeout: Optional[float] = None) -> RecordResult:
        return await self._run("delete", params, timeout)

    async def aclose(self) -> None:
        close = getattr(self._config.provider, "aclose", None)
        if close is not None:
            await close()


def create_crud_engine(
    data_provider: CrudProvider,
    *,
    plugins: Sequence[CrudPlugin] = (),
    enable_audit: bool = False,
    enable_permissions: bool = False,
    default_locale: str = "en",
    supported_locales: Sequence[str] = ("en",),
    default_timeout: Optional[float] = None,
    audit_manager: Optional[AuditManager] = None,
    access_control: Optional[AccessControl] = None,
    metrics: Optional[MetricsCollector] = None,
) -> CrudEngine:
    return CrudEngine(EngineConfig(
        provider=data_provider,
        plugins=tuple(plugins),
        enable_audit=enable_audit,
        enable_permissions=enable_permissions,
        default_locale=default_locale,
        supported_locales=tuple(supported_locales),
        default_timeout=default_timeout,
        audit_manager=audit_manager,
        access_control=access_control,
        metrics=metrics,
    ))


def create_crud_engine_with_provider(
    provider_type: Union[str, ProviderType],
    config: Optional[Dict[str, Any]] = None,
    **engine_options: Any,
) -> CrudEngine:
    """Build the provider through the factory, then wrap it in an engine"""
    return create_crud_engine(create_data_provider(provider_type, config), **engine_options)
