import httpx
import pytest

from conftest import RecordingHandler, body_of, json_response
from polycrud.adapters import (
    GraphQLAdapter,
    JsonApiAdapter,
    PostgRESTAdapter,
    RestAdapter,
    SupabaseAdapter,
)
from polycrud.adapters.PostgRESTAdapter import parse_content_range
from polycrud.errors import (
    AdapterConfigurationError,
    BackendRequestError,
    NotFoundError,
    TranslationError,
)
from polycrud.models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    Pagination,
    Sort,
    SortOrder,
    UpdateParams,
)


def query_items(request: httpx.Request):
    return list(request.url.params.multi_items())


# ==========================================================
# Plain REST
# ==========================================================

class TestRestAdapter:

    def _adapter(self, respond, **kwargs):
        handler = RecordingHandler(respond)
        adapter = RestAdapter(base_url="https://api.test", transport=handler.transport(), **kwargs)
        return adapter, handler

    @pytest.mark.asyncio
    async def test_list_query_and_header_total(self):
        adapter, handler = self._adapter(
            lambda r: json_response([{"id": 3}, {"id": 2}], headers={"X-Total-Count": "3"}))

        result = await adapter.get_list(GetListParams(
            resource="items",
            pagination=Pagination(1, 2),
            sort=Sort("qty", SortOrder.DESC),
            filter={"status": "open", "qty": {"operator": "gte", "value": 5},
                    "name": {"operator": "contains", "value": "a.b"}},
        ))

        assert handler.last.url.path == "/items"
        assert query_items(handler.last) == [
            ("_page", "1"), ("_limit", "2"), ("_sort", "qty"), ("_order", "desc"),
            ("status", "open"), ("qty_gte", "5"), ("name_like", r"a\.b"),
        ]
        assert [r["id"] for r in result.data] == [3, 2]
        assert result.total == 3
        assert result.estimated is False

    @pytest.mark.asyncio
    async def test_total_from_envelope(self):
        adapter, _ = self._adapter(lambda r: json_response({"data": [{"id": 1}], "total": 40}))
        result = await adapter.get_list(GetListParams("items", Pagination(1, 1)))
        assert result.data == [{"id": 1}]
        assert result.total == 40

    @pytest.mark.asyncio
    async def test_total_estimated_without_count(self):
        adapter, _ = self._adapter(lambda r: json_response([{"id": 11}, {"id": 12}]))
        result = await adapter.get_list(GetListParams("items", Pagination(2, 2)))
        assert result.estimated is True
        assert result.total == 6

    @pytest.mark.asyncio
    async def test_unsupported_operator(self):
        adapter, handler = self._adapter(lambda r: json_response([]))
        with pytest.raises(TranslationError):
            await adapter.get_list(GetListParams(
                "items", filter={"qty": {"operator": "gt", "value": 1}}))
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_not_found(self):
        adapter, _ = self._adapter(lambda r: json_response({"message": "nope"}, status=404))
        with pytest.raises(NotFoundError):
            await adapter.get_one(GetOneParams("items", 9))

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        adapter, _ = self._adapter(lambda r: json_response({"message": "boom"}, status=503))
        with pytest.raises(BackendRequestError) as exc:
            await adapter.get_list(GetListParams("items"))
        assert exc.value.status == 503
        assert exc.value.backend_message == "boom"
        assert exc.value.retryable is True

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self):
        adapter, _ = self._adapter(lambda r: json_response({"error": "bad"}, status=400))
        with pytest.raises(BackendRequestError) as exc:
            await adapter.create(CreateParams("items", {"name": "x"}))
        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def respond(request):
            raise httpx.ConnectError("refused", request=request)

        adapter, _ = self._adapter(respond)
        with pytest.raises(BackendRequestError) as exc:
            await adapter.get_list(GetListParams("items"))
        assert exc.value.status is None
        assert exc.value.retryable is True

    @pytest.mark.asyncio
    async def test_update_method_and_delete_reads_first(self):
        rows = {"5": {"id": 5, "name": "old"}}

        def respond(request):
            if request.method == "GET":
                return json_response(rows["5"])
            if request.method == "PATCH":
                return json_response(dict(rows["5"], **body_of(request)))
            return httpx.Response(204)

        adapter, handler = self._adapter(respond, update_method="patch")

        updated = await adapter.update(UpdateParams("items", 5, {"name": "new"}))
        assert handler.last.method == "PATCH"
        assert updated.data == {"id": 5, "name": "new"}

        deleted = await adapter.delete_one(DeleteParams("items", 5))
        assert [r.method for r in handler.requests[-2:]] == ["GET", "DELETE"]
        assert deleted.data == {"id": 5, "name": "old"}

    def test_rejects_bad_update_method(self):
        with pytest.raises(AdapterConfigurationError):
            RestAdapter(base_url="https://api.test", update_method="POST")

    @pytest.mark.asyncio
    async def test_auth_headers(self):
        adapter, handler = self._adapter(
            lambda r: json_response([]),
            auth={"type": "api_key", "api_key": "k-1", "header_name": "X-Key"},
        )
        await adapter.get_list(GetListParams("items"))
        assert handler.last.headers["X-Key"] == "k-1"

    def test_bearer_requires_token(self):
        with pytest.raises(AdapterConfigurationError):
            RestAdapter(base_url="https://api.test", auth={"type": "bearer"})

    @pytest.mark.asyncio
    async def test_bodiless_create_takes_id_from_location(self):
        adapter, _ = self._adapter(
            lambda r: httpx.Response(201, headers={"Location": "/items/a%2F42/"}))
        created = await adapter.create(CreateParams("items", {"name": "x"}))
        assert created.data == {"name": "x", "id": "a/42"}

    @pytest.mark.asyncio
    async def test_bodiless_create_keeps_caller_id(self):
        adapter, _ = self._adapter(lambda r: httpx.Response(204))
        created = await adapter.create(CreateParams("items", {"id": 7, "name": "x"}))
        assert created.data == {"id": 7, "name": "x"}

    @pytest.mark.asyncio
    async def test_bodiless_create_without_id_raises(self):
        adapter, _ = self._adapter(lambda r: httpx.Response(201))
        with pytest.raises(BackendRequestError) as exc:
            await adapter.create(CreateParams("items", {"name": "x"}))
        assert exc.value.status == 201
        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_created_record_without_id_raises(self):
        adapter, _ = self._adapter(lambda r: json_response({"name": "x"}, status=201))
        with pytest.raises(BackendRequestError, match="without an id"):
            await adapter.create(CreateParams("items", {"name": "x"}))

    @pytest.mark.asyncio
    async def test_list_envelope_keys(self):
        adapter, _ = self._adapter(
            lambda r: json_response({"items": [{"id": 1}, {"id": 2}], "total": 2}))
        result = await adapter.get_list(GetListParams("items"))
        assert [r["id"] for r in result.data] == [1, 2]
        assert result.total == 2

    @pytest.mark.asyncio
    async def test_unknown_list_shape_raises(self):
        adapter, _ = self._adapter(lambda r: json_response({"rows": [{"id": 1}]}))
        with pytest.raises(BackendRequestError, match="Unrecognized list payload") as exc:
            await adapter.get_list(GetListParams("items"))
        assert exc.value.retryable is False

    def test_client_is_reused(self):
        adapter, _ = self._adapter(lambda r: json_response([]))
        assert adapter._get_client() is adapter._get_client()


# ==========================================================
# JSON:API
# ==========================================================

class TestJsonApiAdapter:

    @pytest.mark.asyncio
    async def test_list(self):
        handler = RecordingHandler(lambda r: json_response({
            "data": [{"id": "1", "type": "articles", "attributes": {"title": "t"},
                      "relationships": {"author": {"data": {"id": "9", "type": "people"}}}}],
            "meta": {"total": 12},
        }))
        adapter = JsonApiAdapter(base_url="https://api.test", transport=handler.transport())

        result = await adapter.get_list(GetListParams(
            "articles", Pagination(2, 5), Sort("title", SortOrder.DESC), {"tag": ["a", "b"]}))

        assert query_items(handler.last) == [
            ("page[number]", "2"), ("page[size]", "5"), ("sort", "-title"),
            ("filter[tag]", "a,b"),
        ]
        assert handler.last.headers["Accept"] == "application/vnd.api+json"
        assert result.data == [{"id": "1", "title": "t", "author": "9"}]
        assert result.total == 12

    @pytest.mark.asyncio
    async def test_total_estimated_from_next_link(self):
        handler = RecordingHandler(lambda r: json_response({
            "data": [{"id": "1", "attributes": {}}, {"id": "2", "attributes": {}}],
            "links": {"next": "/articles?page[number]=2"},
        }))
        adapter = JsonApiAdapter(base_url="https://api.test", transport=handler.transport())

        result = await adapter.get_list(GetListParams("articles", Pagination(1, 2)))
        assert result.estimated is True
        assert result.total == 4

    @pytest.mark.asyncio
    async def test_create_document(self):
        handler = RecordingHandler(lambda r: json_response(
            {"data": {"id": "7", "type": "articles", "attributes": {"title": "new"}}},
            status=201))
        adapter = JsonApiAdapter(base_url="https://api.test", transport=handler.transport(),
                                 type_names={"articles": "article"})

        created = await adapter.create(CreateParams("articles", {"title": "new"}))

        assert body_of(handler.last) == {"data": {"type": "article",
                                                  "attributes": {"title": "new"}}}
        assert created.data == {"id": "7", "title": "new"}

    @pytest.mark.asyncio
    async def test_rejects_comparison_filter(self):
        adapter = JsonApiAdapter(base_url="https://api.test",
                                 transport=RecordingHandler(lambda r: json_response({})).transport())
        with pytest.raises(TranslationError):
            await adapter.get_list(GetListParams(
                "articles", filter={"views": {"operator": "gt", "value": 3}}))


# ==========================================================
# GraphQL
# ==========================================================

class TestGraphQLAdapter:

    def _adapter(self, respond, **kwargs):
        handler = RecordingHandler(respond)
        adapter = GraphQLAdapter(base_url="https://api.test/graphql",
                                 transport=handler.transport(),
                                 resources={"posts": "post"}, **kwargs)
        return adapter, handler

    @pytest.mark.asyncio
    async def test_list_variables(self):
        adapter, handler = self._adapter(lambda r: json_response(
            {"data": {"posts": {"data": [{"id": 1}], "total": 30}}}))

        result = await adapter.get_list(GetListParams(
            "posts", Pagination(3, 10), Sort("id"),
            {"status": "live", "views": {"operator": "gt", "value": 3}}))

        payload = body_of(handler.last)
        assert handler.last.method == "POST"
        assert "posts(page: $page" in payload["query"]
        assert payload["variables"] == {
            "page": 3, "perPage": 10, "sortField": "id", "sortOrder": "asc",
            "filter": {"status": "live", "views": {"gt": 3}},
        }
        assert result.total == 30

    @pytest.mark.asyncio
    async def test_errors_raise(self):
        adapter, _ = self._adapter(lambda r: json_response(
            {"errors": [{"message": "Cannot query field"}], "data": None}))
        with pytest.raises(BackendRequestError, match="Cannot query field"):
            await adapter.get_list(GetListParams("posts"))

    @pytest.mark.asyncio
    async def test_null_record_is_not_found(self):
        adapter, _ = self._adapter(lambda r: json_response({"data": {"post": None}}))
        with pytest.raises(NotFoundError):
            await adapter.get_one(GetOneParams("posts", 1))

    @pytest.mark.asyncio
    async def test_custom_document(self):
        doc = "query Custom($id: ID!) { post: findPost(id: $id) { id title } }"
        adapter, handler = self._adapter(
            lambda r: json_response({"data": {"post": {"id": 1, "title": "x"}}}),
            queries={"posts": {"get_one": doc}},
        )
        result = await adapter.get_one(GetOneParams("posts", 1))
        assert body_of(handler.last)["query"] == doc
        assert result.data["title"] == "x"

    def test_unknown_custom_operation(self):
        with pytest.raises(AdapterConfigurationError):
            GraphQLAdapter(base_url="https://api.test", queries={"posts": {"upsert": "..."}})

    @pytest.mark.asyncio
    async def test_delete_returns_prior_state(self):
        def respond(request):
            if "GetOne" in body_of(request)["query"]:
                return json_response({"data": {"post": {"id": 4, "title": "bye"}}})
            return json_response({"data": {"deletePost": {"id": 4}}})

        adapter, handler = self._adapter(respond)
        deleted = await adapter.delete_one(DeleteParams("posts", 4))
        assert deleted.data == {"id": 4, "title": "bye"}
        assert "deletePost" in body_of(handler.last)["query"]

    @pytest.mark.asyncio
    async def test_bare_list_payload(self):
        adapter, _ = self._adapter(lambda r: json_response(
            {"data": {"posts": [{"id": 1}, {"id": 2}]}}))
        result = await adapter.get_list(GetListParams("posts"))
        assert result.total == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [5, {"rows": [{"id": 1}]}, {"data": None}])
    async def test_unknown_list_payload_raises(self, payload):
        adapter, _ = self._adapter(lambda r: json_response({"data": {"posts": payload}}))
        with pytest.raises(BackendRequestError, match="Unrecognized list payload"):
            await adapter.get_list(GetListParams("posts"))


# ==========================================================
# PostgREST / Supabase
# ==========================================================

class TestPostgRESTAdapter:

    @pytest.mark.parametrize("header,expected", [
        ("0-9/42", 42), ("*/0", 0), ("0-9/*", None), (None, None), ("junk", None),
    ])
    def test_parse_content_range(self, header, expected):
        assert parse_content_range(header) == expected

    @pytest.mark.asyncio
    async def test_list_query(self):
        handler = RecordingHandler(lambda r: json_response(
            [{"id": 1}], headers={"Content-Range": "0-0/9"}))
        adapter = PostgRESTAdapter(base_url="https://db.test", transport=handler.transport())

        result = await adapter.get_list(GetListParams(
            "items", Pagination(2, 5), Sort("qty", SortOrder.DESC),
            {"name": {"operator": "contains", "value": "ab"},
             "status": ["a", "b c"], "deleted_at": None}))

        assert query_items(handler.last) == [
            ("select", "*"), ("name", "ilike.*ab*"), ("status", 'in.(a,"b c")'),
            ("deleted_at", "is.null"), ("order", "qty.desc.nullslast"),
            ("limit", "5"), ("offset", "5"),
        ]
        assert handler.last.headers["Prefer"] == "count=exact"
        assert result.total == 9
        assert result.estimated is False

    @pytest.mark.asyncio
    async def test_get_one_empty_is_not_found(self):
        handler = RecordingHandler(lambda r: json_response([]))
        adapter = PostgRESTAdapter(base_url="https://db.test", transport=handler.transport())

        with pytest.raises(NotFoundError):
            await adapter.get_one(GetOneParams("items", 3))
        assert ("id", "eq.3") in query_items(handler.last)

    @pytest.mark.asyncio
    async def test_mutations_ask_for_representation(self):
        handler = RecordingHandler(lambda r: json_response([{"id": 3, "name": "x"}]))
        adapter = PostgRESTAdapter(base_url="https://db.test", transport=handler.transport())

        deleted = await adapter.delete_one(DeleteParams("items", 3))

        assert handler.last.method == "DELETE"
        assert handler.last.headers["Prefer"] == "return=representation"
        assert deleted.data == {"id": 3, "name": "x"}

    def test_invalid_count_mode(self):
        with pytest.raises(AdapterConfigurationError):
            PostgRESTAdapter(base_url="https://db.test", count="all")

    @pytest.mark.asyncio
    async def test_supabase_headers(self):
        handler = RecordingHandler(lambda r: json_response([]))
        adapter = SupabaseAdapter(url="https://proj.supabase.co", key="anon",
                                  transport=handler.transport())

        await adapter.get_list(GetListParams("items"))

        assert str(handler.last.url).startswith("https://proj.supabase.co/rest/v1/items")
        assert handler.last.headers["apikey"] == "anon"
        assert handler.last.headers["Authorization"] == "Bearer anon"

    def test_supabase_requires_key(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_KEY", raising=False)
        monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
        with pytest.raises(AdapterConfigurationError):
            SupabaseAdapter(url="https://proj.supabase.co")
