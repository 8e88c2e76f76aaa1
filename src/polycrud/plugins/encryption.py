# src/polycrud/plugins/encryption.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Union

from ..errors import TranslationError
from ..models import (
    CreateParams,
    GetListParams,
    ListResult,
    RecordResult,
    UpdateParams,
)
from ..query import parse_filter
from ..security import FieldEncryption
from .base import CrudPlugin, PluginHooks


class EncryptionPlugin(CrudPlugin):
    """
    Encrypts configured fields before writes and decrypts them in results.

    Ciphertexts use a random nonce, so encrypted fields cannot be filtered on.
    """

    name = "encryption"

    def __init__(self, fields: Dict[str, Iterable[str]], encryption: Optional[FieldEncryption] = None):
        self.fields: Dict[str, List[str]] = {k: list(v) for k, v in fields.items()}
        self.encryption = encryption or FieldEncryption()
        super().__init__()

    def build_hooks(self) -> PluginHooks:
        return PluginHooks(
            before_get_list=self.before_get_list,
            after_get_list=self.after_get_list,
            after_get_one=self._decrypt_record,
            before_create=self._encrypt_variables,
            after_create=self._decrypt_record,
            before_update=self._encrypt_variables,
            after_update=self._decrypt_record,
            after_delete=self._decrypt_record,
        )

    def before_get_list(self, params: GetListParams) -> GetListParams:
        encrypted = set(self.fields.get(params.resource, []))
        for condition in parse_filter(params.filter):
            if condition.field in encrypted:
                raise TranslationError(
                    f"Cannot filter on encrypted field '{condition.field}'",
                    resource=params.resource, operation="get_list",
                )
        if params.sort and params.sort.field in encrypted:
            raise TranslationError(
                f"Cannot sort on encrypted field '{params.sort.field}'",
                resource=params.resource, operation="get_list",
            )
        return params

    def after_get_list(self, result: ListResult, params: GetListParams) -> ListResult:
        fields = self.fields.get(params.resource)
        if not fields:
            return result
        return replace(result, data=[self.encryption.decrypt_fields(r, fields) for r in result.data])

    def _encrypt_variables(self, params: Union[CreateParams, UpdateParams]):
        fields = self.fields.get(params.resource)
        if not fields:
            return params
        return replace(params, variables=self.encryption.encrypt_fields(params.variables, fields))

    def _decrypt_record(self, result: RecordResult, params) -> RecordResult:
        fields = self.fields.get(params.resource)
        if not fields:
            return result
        return replace(result, data=self.encryption.decrypt_fields(result.data, fields))
