# src/polycrud/plugins/base.py
from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from ..engine import CrudEngine

# before hooks take params and return params; after hooks take (result, params)
# and return a result. Either may be a coroutine function.
Hook = Callable[..., Any]


@dataclass(frozen=True)
class PluginHooks:
    before_get_list: Optional[Hook] = None
    after_get_list: Optional[Hook] = None
    before_get_one: Optional[Hook] = None
    after_get_one: Optional[Hook] = None
    before_create: Optional[Hook] = None
    after_create: Optional[Hook] = None
    before_update: Optional[Hook] = None
    after_update: Optional[Hook] = None
    before_delete: Optional[Hook] = None
    after_delete: Optional[Hook] = None

    def __post_init__(self):
        for f in fields(self):
            hook = getattr(self, f.name)
            if hook is not None and not callable(hook):
                raise TypeError(f"Hook '{f.name}' must be callable, got {hook!r}")


class CrudPlugin:
    """
    Named set of hooks attached to an engine at construction.

    Pass ``hooks`` and ``initialize`` directly, or subclass and override
    ``setup`` and ``build_hooks``.
    """

    name: str = "plugin"

    def __init__(
        self,
        name: Optional[str] = None,
        hooks: Optional[PluginHooks] = None,
        initialize: Optional[Callable[["CrudEngine"], None]] = None,
    ):
        if name is not None:
            self.name = name
        if not self.name:
            raise ValueError("Plugin name must not be empty")
        self._initialize = initialize
        self.hooks = hooks if hooks is not None else self.build_hooks()
        self.engine: Optional["CrudEngine"] = None

    def build_hooks(self) -> PluginHooks:
        return PluginHooks()

    def initialize(self, engine: "CrudEngine") -> None:
        """Called once by the engine, synchronously, before any operation"""
        if self.engine is not None:
            raise ValueError(f"Plugin '{self.name}' is already attached to an engine")
        self.engine = engine
        self.setup(engine)
        if self._initialize is not None:
            self._initialize(engine)

    def setup(self, engine: "CrudEngine") -> None:
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
