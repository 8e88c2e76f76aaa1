# src/polycrud/base/HttpProvider.py
from __future__ import annotations

import base64
import os
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from ..errors import AdapterConfigurationError, BackendRequestError
from ..models import AuthConfig, AuthType, RecordId
from .BaseProvider import BaseProvider

QueryParams = List[Tuple[str, Any]]


class HttpProvider(BaseProvider):
    """Base for HTTP backends: lazy async client, auth injection, status mapping"""

    default_timeout = float(os.getenv("POLYCRUD_HTTP_TIMEOUT", "30"))

    def __init__(
        self,
        *,
        base_url: str,
        auth: Union[AuthConfig, Dict[str, Any], None] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        resources: Optional[Dict[str, str]] = None,
        strict_resources: bool = False,
        id_field: str = "id",
    ):
        super().__init__(resources=resources, strict_resources=strict_resources, id_field=id_field)
        if not base_url:
            raise AdapterConfigurationError(f"{self.provider_type}: base_url is required")
        self.base_url = base_url.rstrip("/")
        self.auth = AuthConfig.from_value(auth)
        self._auth_headers()
        self.headers = dict(headers or {})
        self.timeout = timeout if timeout is not None else self.default_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            with self._client_lock:
                if self._client is None or self._client.is_closed:
                    self._client = httpx.AsyncClient(
                        base_url=self.base_url,
                        headers=self._build_headers(),
                        timeout=self.timeout,
                        transport=self._transport,
                    )
                    self.logger.info(f"HTTP client initialized for {self.base_url}")
        return self._client

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        headers.update(self._auth_headers())
        headers.update(self.headers)
        return headers

    def _auth_headers(self) -> Dict[str, str]:
        auth = self.auth
        if auth.type == AuthType.BEARER:
            if not auth.token:
                raise AdapterConfigurationError("bearer auth requires a token")
            return {"Authorization": f"Bearer {auth.token}"}
        if auth.type == AuthType.BASIC:
            raw = f"{auth.username or ''}:{auth.password or ''}".encode("utf-8")
            return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}
        if auth.type == AuthType.API_KEY and not auth.query_param:
            if not auth.api_key:
                raise AdapterConfigurationError("api_key auth requires an api_key")
            return {auth.header_name: auth.api_key}
        return {}

    def _auth_params(self) -> QueryParams:
        if self.auth.type == AuthType.API_KEY and self.auth.query_param:
            return [(self.auth.query_param, self.auth.api_key)]
        return []

    @staticmethod
    def _backend_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:500]
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if body.get("errors") and isinstance(body["errors"], list):
                first = body["errors"][0]
                if isinstance(first, dict):
                    return str(first.get("detail") or first.get("message") or first.get("title"))
                return str(first)
            for key in ("message", "error", "detail", "msg", "hint"):
                if body.get(key):
                    return str(body[key])
        return response.text[:500]

    async def _request(
        self,
        method: str,
        path: str,
        *,
        resource: str,
        operation: str,
        record_id: Optional[RecordId] = None,
        params: Optional[Sequence[Tuple[str, Any]]] = None,
        json: Any = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        client = self._get_client()
        query = list(params or []) + self._auth_params()
        self.logger.debug(f"{method} {path} params={query}")

        try:
            response = await client.request(
                method,
                path,
                params=query or None,
                json=json,
                data=data,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise BackendRequestError(
                f"{method} {path} timed out after {self.timeout}s",
                status=None,
                backend_message=str(e),
                resource=resource,
                record_id=record_id,
                operation=operation,
            ) from e
        except httpx.HTTPError as e:
            raise BackendRequestError(
                f"{method} {path} failed: {e}",
                status=None,
                backend_message=str(e),
                resource=resource,
                record_id=record_id,
                operation=operation,
            ) from e

        if response.status_code == 404 and record_id is not None:
            raise self._not_found(resource, record_id, operation)

        if not response.is_success:
            message = self._backend_message(response)
            raise BackendRequestError(
                f"{method} {path} returned {response.status_code}: {message}",
                status=response.status_code,
                backend_message=message,
                resource=resource,
                record_id=record_id,
                operation=operation,
            )

        return response

    @staticmethod
    def _json(response: httpx.Response, *, resource: str, operation: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendRequestError(
                f"Invalid JSON from backend: {e}",
                status=response.status_code,
                backend_message=response.text[:500],
                resource=resource,
                operation=operation,
            ) from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
