# src/polycrud/plugins/__init__.py
from .base import CrudPlugin, PluginHooks
from .audit import AuditPlugin
from .encryption import EncryptionPlugin
from .masking import MaskingPlugin
from .permissions import PermissionsPlugin

__all__ = [
    'AuditPlugin',
    'CrudPlugin',
    'EncryptionPlugin',
    'MaskingPlugin',
    'PermissionsPlugin',
    'PluginHooks',
]
