# src/polycrud/security.py
"""
Security features: encryption, masking, access control
"""
from typing import Dict, Any, Iterable, List, Optional, Callable, Set
from dataclasses import dataclass
import base64
import os
import json
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AdapterConfigurationError, PermissionDeniedError

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "encrypted:"

READ = "read"
CREATE = "create"
UPDATE = "update"
DELETE = "delete"
ALL_OPERATIONS = (READ, CREATE, UPDATE, DELETE)


class FieldEncryption:
    """Field-level AES-GCM encryption for sensitive data"""

    def __init__(self, encryption_key: Optional[bytes] = None):
        self.encryption_key = encryption_key or self._generate_key()
        if len(self.encryption_key) not in (16, 24, 32):
            raise AdapterConfigurationError("Encryption key must be 16, 24 or 32 bytes")
        self._aesgcm = AESGCM(self.encryption_key)

    @staticmethod
    def _generate_key() -> bytes:
        """Load the key from the environment or create an ephemeral one"""
        key_str = os.getenv("POLYCRUD_ENCRYPTION_KEY")
        if key_str:
            return base64.b64decode(key_str)

        key = AESGCM.generate_key(bit_length=256)
        logger.warning(
            "Generated new encryption key. Store it securely in POLYCRUD_ENCRYPTION_KEY env var."
        )
        return key

    @staticmethod
    def is_encrypted(value: Any) -> bool:
        return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)

    def encrypt_value(self, value: Any) -> str:
        """AES-GCM encrypt a value; non-strings are stored as JSON"""
        data = json.dumps(value) if not isinstance(value, str) else value
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, data.encode("utf-8"), None)
        encrypted = base64.b64encode(nonce + ciphertext).decode("utf-8")
        return f"{ENCRYPTED_PREFIX}{encrypted}"

    def decrypt_value(self, encrypted_data: Any) -> Any:
        """Reverse encrypt_value; JSON payloads come back as their original type"""
        if not self.is_encrypted(encrypted_data):
            return encrypted_data

        combined = base64.b64decode(encrypted_data[len(ENCRYPTED_PREFIX):])
        nonce, ciphertext = combined[:12], combined[12:]

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, None).decode("utf-8")
        except InvalidTag:
            # wrong key or tampered value: leave it as stored
            logger.warning("Decryption failed, returning stored value")
            return encrypted_data

        try:
            return json.loads(plaintext)
        except json.JSONDecodeError:
            return plaintext

    def encrypt_fields(self, data: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
        """Return a copy of the record with the named fields encrypted"""
        result = dict(data)

        for field in fields:
            if result.get(field) is not None and not self.is_encrypted(result[field]):
                result[field] = self.encrypt_value(result[field])

        return result

    def decrypt_fields(self, data: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
        """Return a copy of the record with the named fields decrypted"""
        result = dict(data)

        for field in fields:
            if result.get(field) is not None:
                result[field] = self.decrypt_value(result[field])

        return result


def _digits(value: str) -> str:
    return "".join(ch for ch in value if ch.isdigit())


def redact(value: str) -> str:
    return "[REDACTED]"


def mask_email(value: str) -> str:
    """Keep the first and last character of the local part and the whole domain"""
    if "@" not in value:
        return value
    local, domain = value.split("@", 1)
    if len(local) > 2:
        local = local[0] + "*" * (len(local) - 2) + local[-1]
    else:
        local = "*" * len(local)
    return f"{local}@{domain}"


def mask_phone(value: str) -> str:
    digits = _digits(value)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def mask_ssn(value: str) -> str:
    digits = _digits(value)
    if len(digits) < 4:
        return "*" * len(digits)
    return "***-**-" + digits[-4:]


def mask_credit_card(value: str) -> str:
    digits = _digits(value)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "**** **** **** " + digits[-4:]


MASK_TYPES: Dict[str, Callable[[str], str]] = {
    "email": mask_email,
    "phone": mask_phone,
    "ssn": mask_ssn,
    "credit_card": mask_credit_card,
    "redact": redact,
}

# field name -> mask type; a trailing "*" matches any field with that prefix
DEFAULT_FIELD_RULES: Dict[str, str] = {
    "email": "email",
    "phone": "phone",
    "ssn": "ssn",
    "ssn_*": "ssn",
    "credit_card": "credit_card",
    "card_*": "credit_card",
    "password": "redact",
}


class DataMasking:
    """
    Masks sensitive values in records returned to callers.

    A field's mask type comes from the resource config when one is
    registered, otherwise from the field-name rules. Values are masked as
    strings; ``id`` and nulls pass through.
    """

    def __init__(self, use_global_rules: bool = True,
                 field_rules: Optional[Dict[str, str]] = None):
        self._mask_types: Dict[str, Callable[[str], str]] = dict(MASK_TYPES)
        self._configs: Dict[str, Dict[str, str]] = {}

        rules = dict(DEFAULT_FIELD_RULES) if use_global_rules else {}
        rules.update(field_rules or {})
        self._check_types(rules.values())
        self._exact = {k: v for k, v in rules.items() if not k.endswith("*")}
        # longest prefix first so "card_cvc*" beats "card_*"
        self._prefixes = sorted(
            ((k[:-1], v) for k, v in rules.items() if k.endswith("*")),
            key=lambda rule: len(rule[0]), reverse=True,
        )

    def _check_types(self, mask_types: Iterable[str]) -> None:
        for mask_type in mask_types:
            if mask_type not in self._mask_types:
                raise AdapterConfigurationError(f"Unknown mask type '{mask_type}'")

    def register_mask_type(self, name: str, masker: Callable[[str], str]) -> None:
        self._mask_types[name] = masker

    def register_resource_config(self, resource: str, config: Dict[str, str]):
        """Register masking config for a resource: {field: mask_type}"""
        self._check_types(config.values())
        self._configs[resource] = dict(config)

    def mask_type_for(self, resource: str, field: str) -> Optional[str]:
        configured = self._configs.get(resource, {}).get(field)
        if configured:
            return configured
        if field in self._exact:
            return self._exact[field]
        for prefix, mask_type in self._prefixes:
            if field.startswith(prefix):
                return mask_type
        return None

    def mask(self, data: Dict[str, Any], resource: str) -> Dict[str, Any]:
        """Return a copy of the record with every matched field masked"""
        result = dict(data)
        for field, value in data.items():
            if value is None or field == "id":
                continue
            mask_type = self.mask_type_for(resource, field)
            if mask_type:
                result[field] = self._mask_types[mask_type](str(value))
        return result


@dataclass
class Policy:
    """Row-level policy entry"""

    name: str
    func: Callable[[Dict[str, Any], Dict[str, Any]], bool]
    apply_to: str  # 'read', 'write', or 'both'


class AccessControl:
    """
    Role grants per resource and operation, plus row-level policies.

    A resource without grants is open to every role unless
    ``default_allow`` is False. ``"*"`` grants apply to every resource.
    """

    def __init__(self, default_allow: bool = True, tenant_field: Optional[str] = None):
        self.default_allow = default_allow
        self.tenant_field = tenant_field
        self._grants: Dict[str, Dict[str, Set[str]]] = {}
        self.policies: Dict[str, List[Policy]] = {}
        self._read_filters: Dict[str, Dict[str, Any]] = {}
        self._write_defaults: Dict[str, Dict[str, Any]] = {}

    # -------------------------
    # Role grants
    # -------------------------
    def grant(self, resource: str, roles: Iterable[str], operations: Iterable[str] = ALL_OPERATIONS):
        operations = list(operations)
        for op in operations:
            if op not in ALL_OPERATIONS:
                raise ValueError(f"Unknown operation '{op}'")
        per_resource = self._grants.setdefault(resource, {})
        for op in operations:
            per_resource.setdefault(op, set()).update(roles)

    def can(self, resource: str, operation: str, context: Dict[str, Any]) -> bool:
        grants = [g for g in (self._grants.get(resource), self._grants.get("*")) if g]
        if not grants:
            return self.default_allow
        roles = set(context.get("roles") or [])
        return any(roles & g.get(operation, set()) for g in grants)

    def require(self, resource: str, operation: str, context: Dict[str, Any]) -> None:
        if not self.can(resource, operation, context):
            logger.info(f"Access denied: {operation} on {resource} for {context.get('actor_id')}")
            raise PermissionDeniedError(
                f"Operation '{operation}' on '{resource}' is not permitted",
                resource=resource,
                operation=operation,
            )

    # -------------------------
    # Row-level policies
    # -------------------------
    def add_policy(
        self,
        resource: str,
        name: str,
        policy_func: Callable[[Dict[str, Any], Dict[str, Any]], bool],
        apply_to: str = "read",
    ):
        """
        Add row-level policy

        Args:
            resource: Resource name
            name: identifies the policy in denials and logs
            policy_func: (record, context) -> bool
            apply_to: 'read' (post-filter), 'write' (pre-check), or 'both'
        """
        if apply_to not in ("read", "write", "both"):
            raise ValueError(f"apply_to must be 'read', 'write' or 'both', got '{apply_to}'")

        policies = self.policies.setdefault(resource, [])
        if name in {p.name for p in policies}:
            raise ValueError(f"Policy '{name}' already exists for resource '{resource}'")

        policies.append(Policy(name=name, func=policy_func, apply_to=apply_to))

    def check_access(
        self,
        resource: str,
        item: Dict[str, Any],
        context: Dict[str, Any],
        operation: str = "read",
    ) -> bool:
        """Check if access allowed for item under context and operation ('read' or 'write')"""
        for policy in self.policies.get(resource, []):
            if policy.apply_to in (operation, "both"):
                if not policy.func(item, context):
                    logger.info(f"Policy denied: {policy.name} for {resource}:{operation}")
                    return False

        return True

    def enforce_read(
        self, resource: str, filter: Optional[Dict[str, Any]], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Add default read filters and the tenant filter; caller filters win"""
        result = dict(filter or {})

        for k, v in self._read_filters.get(resource, {}).items():
            result.setdefault(k, v)

        if self.tenant_field and context.get("tenant_id"):
            result.setdefault(self.tenant_field, context["tenant_id"])

        return result

    def filter_results(
        self, resource: str, rows: List[Dict[str, Any]], context: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Post-query filter based on read policies"""
        if resource not in self.policies:
            return rows
        return [row for row in rows if self.check_access(resource, row, context, "read")]

    def enforce_write(
        self, resource: str, data: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Validate data against write policies and inject write defaults"""
        result = dict(data)

        for k, v in self._write_defaults.get(resource, {}).items():
            result.setdefault(k, v)

        if self.tenant_field and context.get("tenant_id"):
            result.setdefault(self.tenant_field, context["tenant_id"])

        if not self.check_access(resource, result, context, "write"):
            raise PermissionDeniedError(
                f"Write denied by policy on '{resource}'", resource=resource
            )

        return result

    def set_default_filters(
        self,
        resource: str,
        read_filters: Optional[Dict[str, Any]] = None,
        write_defaults: Optional[Dict[str, Any]] = None,
    ):
        """Set default query filters and write values for resource"""
        if read_filters:
            self._read_filters[resource] = dict(read_filters)
        if write_defaults:
            self._write_defaults[resource] = dict(write_defaults)


def role_based_policy(row: Dict[str, Any], context: Dict[str, Any]) -> bool:
    """Rows naming a ``required_role`` are visible only to that role"""
    required_role = row.get("required_role")
    if not required_role:
        return True
    return required_role in (context.get("roles") or [])


def ownership_policy(item: Dict[str, Any], context: Dict[str, Any]) -> bool:
    """Rows must be owned or created by the calling actor"""
    actor_id = context.get("actor_id")
    if not actor_id:
        return False
    return item.get("owner_id") == actor_id or item.get("created_by") == actor_id
