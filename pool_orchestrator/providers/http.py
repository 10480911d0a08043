"""
HTTP control-plane bindings.

Talks to a REST control plane that exposes resources as
``/resources/{kind}/{id}`` and statement execution as ``/query``.
Transport errors are retried with tenacity; retryable status codes with
``retry_on_http_error``. Anything still failing becomes a ProviderError
(or QueryExecutionError / NotificationError) carrying the original detail.
"""
from typing import Any, Dict, List, Mapping, Optional, Type

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pool_orchestrator.config.logging import get_logger
from pool_orchestrator.config.settings import settings
from pool_orchestrator.exceptions import (
    NotificationError,
    OrchestratorException,
    ProviderError,
    QueryExecutionError,
    ResourceNotFoundError,
)
from pool_orchestrator.models.placement import ResourceKind
from pool_orchestrator.utils.retry import retry_on_http_error

logger = get_logger(__name__)


def _error_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _decode_object(
    response: httpx.Response, what: str, error_cls: Type[OrchestratorException] = ProviderError
) -> Dict[str, Any]:
    """
    Decode a 2xx body that must be a JSON object. An empty body decodes to {}.

    Raises:
        error_cls: If the body is not JSON or not an object
    """
    if not response.content.strip():
        return {}
    try:
        body = response.json()
    except ValueError as e:
        logger.error("provider_response_undecodable", call=what, status_code=response.status_code)
        raise error_cls(
            f"{what} returned a body that is not JSON: {e}",
            details={"status_code": response.status_code, "response": response.text[:500]},
        )
    if not isinstance(body, dict):
        raise error_cls(
            f"{what} returned a JSON {type(body).__name__}, expected an object",
            details={"status_code": response.status_code, "response": body},
        )
    return body


class _HttpBinding:
    """Shared client handling of the control-plane bindings."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if token is None and settings.provider_token is not None:
            token = settings.provider_token.get_secret_value()
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=base_url or settings.provider_base_url or "",
            headers=headers,
            timeout=timeout or settings.provider_timeout_seconds,
            transport=transport,
        )
        retries = settings.provider_max_retries if max_retries is None else max_retries

        @retry(
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(multiplier=backoff_seconds, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        @retry_on_http_error(max_retries=retries, initial_delay=backoff_seconds, max_delay=30.0)
        async def send(method: str, url: str, **kwargs: Any) -> httpx.Response:
            response = await self.client.request(method, url, **kwargs)
            if response.status_code != 404:
                response.raise_for_status()
            return response

        self._send = send

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class HttpResourceStore(_HttpBinding):
    """ResourceStore over the control-plane REST API."""

    @staticmethod
    def _path(kind: ResourceKind, resource_id: str) -> str:
        return f"/resources/{kind.value}/{resource_id}"

    async def _call(
        self, method: str, kind: ResourceKind, resource_id: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            return await self._send(method, self._path(kind, resource_id), **kwargs)
        except httpx.HTTPStatusError as e:
            logger.error(
                "provider_request_failed",
                method=method,
                kind=kind.value,
                resource_id=resource_id,
                status_code=e.response.status_code,
            )
            raise ProviderError(
                f"{method} {kind.value} '{resource_id}' returned {e.response.status_code}",
                details={
                    "status_code": e.response.status_code,
                    "response": _error_detail(e.response),
                },
            )
        except httpx.HTTPError as e:
            logger.error(
                "provider_transport_failed",
                method=method,
                kind=kind.value,
                resource_id=resource_id,
                error=str(e),
            )
            raise ProviderError(
                f"{method} {kind.value} '{resource_id}' failed: {e}",
                details={"error_type": type(e).__name__},
            )

    async def exists(self, kind: ResourceKind, resource_id: str) -> bool:
        response = await self._call("GET", kind, resource_id)
        return response.status_code != 404

    async def create(self, kind: ResourceKind, resource_id: str, spec: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._call("PUT", kind, resource_id, json={"properties": dict(spec)})
        if response.status_code == 404:
            raise ProviderError(
                f"parent of {kind.value} '{resource_id}' does not exist",
                details={"status_code": 404, "response": _error_detail(response)},
            )
        return _decode_object(response, f"PUT {kind.value} '{resource_id}'")

    async def get(self, kind: ResourceKind, resource_id: str) -> Dict[str, Any]:
        response = await self._call("GET", kind, resource_id)
        if response.status_code == 404:
            raise ResourceNotFoundError(kind.value, resource_id)
        return _decode_object(response, f"GET {kind.value} '{resource_id}'")

    async def update(self, kind: ResourceKind, resource_id: str, delta: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._call("PATCH", kind, resource_id, json={"properties": dict(delta)})
        if response.status_code == 404:
            raise ResourceNotFoundError(kind.value, resource_id)
        return _decode_object(response, f"PATCH {kind.value} '{resource_id}'")

    async def delete(self, kind: ResourceKind, resource_id: str) -> bool:
        response = await self._call("DELETE", kind, resource_id)
        return response.status_code != 404


class HttpQueryChannel(_HttpBinding):
    """QueryChannel that relays statements through the control plane's ``/query`` endpoint."""

    async def execute(
        self,
        server_address: str,
        database_name: str,
        statement: str,
        credential_token: Optional[str],
        timeout: float,
    ) -> List[Dict[str, Any]]:
        headers = {"X-Database-Token": credential_token} if credential_token else None
        try:
            response = await self._send(
                "POST",
                "/query",
                json={
                    "server_address": server_address,
                    "database_name": database_name,
                    "statement": statement,
                    "timeout_seconds": timeout,
                },
                headers=headers,
                timeout=timeout,
            )
        except httpx.HTTPStatusError as e:
            raise QueryExecutionError(
                f"statement on '{database_name}' returned {e.response.status_code}",
                details={"status_code": e.response.status_code, "response": _error_detail(e.response)},
            )
        except httpx.HTTPError as e:
            raise QueryExecutionError(
                f"statement on '{database_name}' failed: {e}",
                details={"error_type": type(e).__name__},
            )

        if response.status_code == 404:
            raise QueryExecutionError(
                f"database '{database_name}' on '{server_address}' not reachable",
                details={"status_code": 404},
            )
        body = _decode_object(response, f"statement on '{database_name}'", QueryExecutionError)
        rows = body.get("rows") or []
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise QueryExecutionError(
                f"statement on '{database_name}' returned malformed rows",
                details={"response": body},
            )
        return rows


class WebhookNotificationSink:
    """Posts messages to a webhook URL given as the channel configuration."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def send(self, channel_config: str, message: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(channel_config, json={"text": message})
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(str(e), details={"channel": channel_config})
