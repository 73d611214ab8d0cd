"""
RPC client for the dashboard backend.

Procedures are addressed as ``router.method`` (for example ``funnels.list``)
and invoked with the request-scoped headers of the caller, so every call is
authorized by the backend exactly as if the user had made it directly.
"""

from typing import Any, Mapping

import httpx
import structlog

from ..context import SessionContext
from ..errors import TransportError, rpc_error_from_code, rpc_error_from_status

logger = structlog.get_logger()


class BackendClient:
    """Thin wrapper around a shared httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def call(
        self,
        procedure: str,
        payload: dict[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        correlation_id: str | None = None,
    ) -> Any:
        """Invoke a backend procedure and return its unwrapped result.

        Raises the RPCError subclass matching the backend error code, or
        TransportError when the backend cannot be reached.
        """
        request_headers = dict(headers or {})
        if correlation_id:
            request_headers["x-correlation-id"] = correlation_id

        url = f"{self.base_url}/rpc/{procedure}"
        try:
            response = await self._client.post(
                url,
                json=payload or {},
                headers=request_headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("RPC transport error", procedure=procedure, error=str(e))
            raise TransportError(f"{procedure}: {e}") from e

        if response.status_code >= 400:
            code, detail = _parse_error_body(response)
            logger.info(
                "RPC error",
                procedure=procedure,
                status=response.status_code,
                code=code,
            )
            if code:
                raise rpc_error_from_code(code, detail)
            raise rpc_error_from_status(response.status_code, detail)

        if not response.content:
            return None

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"{procedure}: invalid JSON response") from e

        return _unwrap(body)

    async def aclose(self) -> None:
        await self._client.aclose()


class BoundBackend:
    """A BackendClient bound to one SessionContext.

    Tools only ever receive a bound backend, so headers and correlation id
    come from the run and never from model-supplied arguments.
    """

    def __init__(self, client: BackendClient, ctx: SessionContext):
        self.client = client
        self.ctx = ctx

    async def call(self, procedure: str, payload: dict[str, Any] | None = None) -> Any:
        return await self.client.call(
            procedure,
            payload,
            headers=self.ctx.transport_headers,
            correlation_id=self.ctx.correlation_id,
        )


def _unwrap(body: Any) -> Any:
    """Strip the transport envelope: ``{"json": ...}``."""
    if isinstance(body, dict) and set(body.keys()) <= {"json", "meta"} and "json" in body:
        return body["json"]
    return body


def _parse_error_body(response: httpx.Response) -> tuple[str | None, str]:
    try:
        body = _unwrap(response.json())
    except ValueError:
        return None, response.text[:200]

    if not isinstance(body, dict):
        return None, str(body)[:200]

    error = body.get("error") if isinstance(body.get("error"), dict) else body
    code = error.get("code")
    detail = error.get("message") or ""
    return (str(code) if code else None), str(detail)
