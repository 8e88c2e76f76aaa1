# src/polycrud/plugins/masking.py
from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional

from ..models import GetListParams, GetOneParams, ListResult, RecordResult
from ..security import DataMasking
from .base import CrudPlugin, PluginHooks


class MaskingPlugin(CrudPlugin):
    """Masks sensitive fields in read results"""

    name = "masking"

    def __init__(self, masking: Optional[DataMasking] = None,
                 resources: Optional[Iterable[str]] = None):
        self.masking = masking or DataMasking()
        self.resources = set(resources) if resources is not None else None
        super().__init__()

    def build_hooks(self) -> PluginHooks:
        return PluginHooks(after_get_list=self.after_get_list, after_get_one=self.after_get_one)

    def _applies(self, resource: str) -> bool:
        return self.resources is None or resource in self.resources

    def after_get_list(self, result: ListResult, params: GetListParams) -> ListResult:
        if not self._applies(params.resource):
            return result
        return replace(result, data=[self.masking.mask(r, params.resource) for r in result.data])

    def after_get_one(self, result: RecordResult, params: GetOneParams) -> RecordResult:
        if not self._applies(params.resource):
            return result
        return replace(result, data=self.masking.mask(result.data, params.resource))
