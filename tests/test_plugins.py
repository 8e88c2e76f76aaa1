import pytest

from polycrud import create_crud_engine
from polycrud.adapters import MemoryAdapter
from polycrud.audit import AuditContext
from polycrud.errors import (
    AdapterConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    TranslationError,
)
from polycrud.models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    Sort,
    UpdateParams,
)
from polycrud.plugins import EncryptionPlugin, MaskingPlugin
from polycrud.security import (
    ALL_OPERATIONS,
    ENCRYPTED_PREFIX,
    READ,
    AccessControl,
    DataMasking,
    FieldEncryption,
    ownership_policy,
    role_based_policy,
)

KEY = b"k" * 32


# ==========================================================
# Permissions
# ==========================================================

class TestRoleGrants:

    @pytest.fixture
    def engine(self, memory_provider):
        access = AccessControl()
        access.grant("items", ["reader"], [READ])
        access.grant("items", ["editor"], ALL_OPERATIONS)
        return create_crud_engine(memory_provider, enable_permissions=True, access_control=access)

    @pytest.mark.asyncio
    async def test_reader_can_list(self, engine):
        AuditContext.set(actor_id="u1", roles=["reader"])
        result = await engine.get_list(GetListParams("items"))
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_reader_cannot_create(self, engine, memory_provider):
        AuditContext.set(actor_id="u1", roles=["reader"])
        with pytest.raises(PermissionDeniedError) as exc:
            await engine.create(CreateParams("items", {"name": "x"}))
        assert exc.value.operation == "create"
        assert len(memory_provider.snapshot("items")) == 3

    @pytest.mark.asyncio
    async def test_anonymous_is_denied(self, engine):
        with pytest.raises(PermissionDeniedError):
            await engine.get_one(GetOneParams("items", 1))

    @pytest.mark.asyncio
    async def test_editor_can_delete(self, engine):
        with AuditContext.scope(actor_id="u2", roles=["editor"]):
            deleted = await engine.delete(DeleteParams("items", 1))
        assert deleted.data["id"] == 1

    @pytest.mark.asyncio
    async def test_ungranted_resource_follows_default(self, memory_provider):
        access = AccessControl(default_allow=False)
        access.grant("*", ["admin"], [READ])
        engine = create_crud_engine(memory_provider, enable_permissions=True, access_control=access)

        with AuditContext.scope(roles=["admin"]):
            assert (await engine.get_list(GetListParams("items"))).total == 3
        with pytest.raises(PermissionDeniedError):
            await engine.get_list(GetListParams("items"))

    def test_grant_rejects_unknown_operation(self):
        with pytest.raises(ValueError):
            AccessControl().grant("items", ["x"], ["publish"])


DOCS = {
    "docs": [
        {"id": 1, "owner_id": "u1", "tenant_id": "t1", "title": "mine"},
        {"id": 2, "owner_id": "u2", "tenant_id": "t1", "title": "theirs"},
        {"id": 3, "owner_id": "u1", "tenant_id": "t2", "title": "elsewhere"},
    ]
}


class TestRowPolicies:

    @pytest.fixture
    def provider(self):
        return MemoryAdapter(DOCS)

    @pytest.fixture
    def engine(self, provider):
        access = AccessControl()
        access.add_policy("docs", "owner", ownership_policy, apply_to="both")
        return create_crud_engine(provider, enable_permissions=True, access_control=access)

    @pytest.mark.asyncio
    async def test_read_policy_filters_rows(self, engine):
        AuditContext.set(actor_id="u1")
        result = await engine.get_list(GetListParams("docs"))

        assert [r["id"] for r in result.data] == [1, 3]
        assert result.total == 2
        assert result.estimated is True

    @pytest.mark.asyncio
    async def test_get_one_denied(self, engine):
        AuditContext.set(actor_id="u1")
        with pytest.raises(PermissionDeniedError) as exc:
            await engine.get_one(GetOneParams("docs", 2))
        assert exc.value.record_id == 2

    @pytest.mark.asyncio
    async def test_update_checks_current_row(self, engine, provider):
        AuditContext.set(actor_id="u1")
        with pytest.raises(PermissionDeniedError):
            await engine.update(UpdateParams("docs", 2, {"title": "hijacked"}))
        assert provider.snapshot("docs")[1]["title"] == "theirs"

    @pytest.mark.asyncio
    async def test_update_checks_merged_row(self, engine):
        AuditContext.set(actor_id="u1")
        with pytest.raises(PermissionDeniedError):
            await engine.update(UpdateParams("docs", 1, {"owner_id": "u2"}))

        updated = await engine.update(UpdateParams("docs", 1, {"title": "edited"}))
        assert updated.data["title"] == "edited"

    @pytest.mark.asyncio
    async def test_delete_denied(self, engine):
        AuditContext.set(actor_id="u2")
        with pytest.raises(PermissionDeniedError):
            await engine.delete(DeleteParams("docs", 1))

    @pytest.mark.asyncio
    async def test_delete_missing_record(self, engine):
        AuditContext.set(actor_id="u1")
        with pytest.raises(NotFoundError):
            await engine.delete(DeleteParams("docs", 99))

    @pytest.mark.asyncio
    async def test_create_checks_write_policy(self, engine):
        AuditContext.set(actor_id="u1")
        with pytest.raises(PermissionDeniedError):
            await engine.create(CreateParams("docs", {"owner_id": "u2"}))
        created = await engine.create(CreateParams("docs", {"owner_id": "u1"}))
        assert created.data["id"] == 4

    def test_duplicate_policy(self):
        access = AccessControl()
        access.add_policy("docs", "roles", role_based_policy)
        with pytest.raises(ValueError):
            access.add_policy("docs", "roles", role_based_policy)


class TestTenantScoping:

    @pytest.fixture
    def engine(self):
        access = AccessControl(tenant_field="tenant_id")
        access.set_default_filters("docs", write_defaults={"title": "untitled"})
        return create_crud_engine(MemoryAdapter(DOCS), enable_permissions=True,
                                  access_control=access)

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_tenant(self, engine):
        AuditContext.set(tenant_id="t2")
        result = await engine.get_list(GetListParams("docs"))
        assert [r["id"] for r in result.data] == [3]
        assert result.estimated is False

    @pytest.mark.asyncio
    async def test_create_stamps_tenant_and_defaults(self, engine):
        AuditContext.set(tenant_id="t2", actor_id="u9")
        created = await engine.create(CreateParams("docs", {"owner_id": "u9"}))
        assert created.data["tenant_id"] == "t2"
        assert created.data["title"] == "untitled"


# ==========================================================
# Masking
# ==========================================================

USERS = {
    "users": [{
        "id": 1,
        "name": "Alice",
        "email": "alice@example.com",
        "phone": "555-123-4567",
        "ssn": "123-45-6789",
        "card_number": "4111 1111 1111 1234",
        "password": "hunter2",
    }]
}


class TestMasking:

    @pytest.mark.asyncio
    async def test_global_rules(self):
        engine = create_crud_engine(MemoryAdapter(USERS), plugins=[MaskingPlugin()])

        result = await engine.get_one(GetOneParams("users", 1))

        assert result.data == {
            "id": 1,
            "name": "Alice",
            "email": "a***e@example.com",
            "phone": "******4567",
            "ssn": "***-**-6789",
            "card_number": "**** **** **** 1234",
            "password": "[REDACTED]",
        }

    @pytest.mark.asyncio
    async def test_resource_config_and_scope(self):
        masking = DataMasking(use_global_rules=False)
        masking.register_resource_config("users", {"name": "redact"})
        provider = MemoryAdapter(dict(USERS, staff=USERS["users"]))
        engine = create_crud_engine(provider, plugins=[
            MaskingPlugin(masking, resources=["users"]),
        ])

        users = await engine.get_list(GetListParams("users"))
        staff = await engine.get_list(GetListParams("staff"))

        assert users.data[0]["name"] == "[REDACTED]"
        assert users.data[0]["email"] == "alice@example.com"
        assert staff.data[0]["name"] == "Alice"

    def test_unknown_mask_type(self):
        with pytest.raises(AdapterConfigurationError):
            DataMasking().register_resource_config("users", {"name": "scramble"})

    def test_short_values(self):
        masking = DataMasking()
        assert masking.mask({"email": "ab@x.io", "phone": "12"}, "users") == {
            "email": "**@x.io", "phone": "**",
        }

    def test_custom_field_rules(self):
        masking = DataMasking(field_rules={"card_cvc*": "redact", "iban": "credit_card"})
        masked = masking.mask({
            "card_number": "4111111111111234",
            "card_cvc2": "123",
            "iban": "DE44 5001 0517 5407 3249 31",
            "phone": 5551234567,
        }, "users")
        assert masked == {
            "card_number": "**** **** **** 1234",
            "card_cvc2": "[REDACTED]",
            "iban": "**** **** **** 4931",
            "phone": "******4567",
        }

    def test_registered_mask_type(self):
        masking = DataMasking(use_global_rules=False)
        masking.register_mask_type("initial", lambda value: value[:1] + ".")
        masking.register_resource_config("users", {"name": "initial"})
        assert masking.mask({"id": 1, "name": "Alice"}, "users") == {"id": 1, "name": "A."}
        assert masking.mask_type_for("staff", "name") is None

    def test_unknown_rule_type(self):
        with pytest.raises(AdapterConfigurationError):
            DataMasking(field_rules={"secret": "scramble"})


# ==========================================================
# Field encryption
# ==========================================================

class TestEncryption:

    def test_value_round_trip_keeps_type(self):
        encryption = FieldEncryption(KEY)
        token = encryption.encrypt_value({"n": 1})
        assert token.startswith(ENCRYPTED_PREFIX)
        assert encryption.decrypt_value(token) == {"n": 1}
        assert encryption.decrypt_value("plain") == "plain"

    def test_wrong_key_returns_stored_value(self):
        token = FieldEncryption(KEY).encrypt_value("secret")
        assert FieldEncryption(b"x" * 32).decrypt_value(token) == token

    def test_invalid_key_length(self):
        with pytest.raises(AdapterConfigurationError):
            FieldEncryption(b"short")

    def test_key_from_environment(self, monkeypatch):
        import base64
        monkeypatch.setenv("POLYCRUD_ENCRYPTION_KEY", base64.b64encode(KEY).decode())
        assert FieldEncryption().encryption_key == KEY

    @pytest.mark.asyncio
    async def test_stored_encrypted_returned_plain(self):
        provider = MemoryAdapter()
        engine = create_crud_engine(provider, plugins=[
            EncryptionPlugin({"users": ["ssn"]}, FieldEncryption(KEY)),
        ])

        created = await engine.create(CreateParams("users", {"name": "Bo", "ssn": "123-45-6789"}))
        await engine.update(UpdateParams("users", created.data["id"], {"ssn": "987-65-4321"}))

        stored = provider.snapshot("users")[0]
        assert stored["ssn"].startswith(ENCRYPTED_PREFIX)
        assert created.data["ssn"] == "123-45-6789"

        listed = await engine.get_list(GetListParams("users"))
        assert listed.data[0]["ssn"] == "987-65-4321"

    @pytest.mark.asyncio
    async def test_cannot_query_encrypted_field(self):
        engine = create_crud_engine(MemoryAdapter(), plugins=[
            EncryptionPlugin({"users": ["ssn"]}, FieldEncryption(KEY)),
        ])
        with pytest.raises(TranslationError):
            await engine.get_list(GetListParams("users", filter={"ssn": "1"}))
        with pytest.raises(TranslationError):
            await engine.get_list(GetListParams("users", sort=Sort("ssn")))

    @pytest.mark.asyncio
    async def test_decrypt_then_mask(self):
        engine = create_crud_engine(MemoryAdapter(), plugins=[
            EncryptionPlugin({"users": ["ssn"]}, FieldEncryption(KEY)),
            MaskingPlugin(resources=["users"]),
        ])
        created = await engine.create(CreateParams("users", {"ssn": "123-45-6789"}))

        fetched = await engine.get_one(GetOneParams("users", created.data["id"]))

        assert fetched.data["ssn"] == "***-**-6789"
