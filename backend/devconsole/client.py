"""Clients the session controller uses to reach the execution sandbox"""
import logging
from typing import Any, Protocol

import httpx

from devconsole.config import settings
from devconsole.errors import ExecutionError, ValidationError
from devconsole.models import ActionRequest, ActionResponse
from devconsole.sandbox import ExecutionSandbox

logger = logging.getLogger(__name__)


class SandboxClient(Protocol):
    async def invoke(self, request: ActionRequest) -> Any:
        """Return the action's data; raise ValidationError or ExecutionError"""
        ...


class LocalSandboxClient:
    """Calls a sandbox living in the same process"""

    def __init__(self, sandbox: ExecutionSandbox):
        self.sandbox = sandbox

    async def invoke(self, request: ActionRequest) -> Any:
        return await self.sandbox.execute(request)


class RemoteSandboxClient:
    """Calls the connector endpoint of a remote installation over HTTP"""

    def __init__(self, base_url: str = None, connector_key: str = None, api_key: str = None,
                 timeout: float = None, transport: httpx.AsyncBaseTransport = None):
        self.base_url = (base_url or settings.sandbox_url).rstrip("/")
        self.headers = {
            "X-Connector-Key": connector_key if connector_key is not None else settings.connector_key,
            "X-Api-Key": api_key if api_key is not None else settings.api_key,
        }
        self.timeout = timeout or settings.sandbox_timeout
        self.transport = transport

    async def invoke(self, request: ActionRequest) -> Any:
        url = f"{self.base_url}/api/execute"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=request.model_dump(), headers=self.headers)
        except httpx.TimeoutException as e:
            raise ExecutionError(f"The site did not respond in time ({request.action}).") from e
        except httpx.HTTPError as e:
            raise ExecutionError(f"Could not reach the site: {e}") from e

        try:
            body = ActionResponse.model_validate(response.json())
        except ValueError:
            body = ActionResponse(success=False, message=response.text[:200] or response.reason_phrase)

        if response.status_code == 200 and body.success:
            return body.data
        message = body.message or f"HTTP {response.status_code}"
        if response.status_code in (400, 404):
            raise ValidationError(message)
        if response.status_code in (401, 403):
            logger.warning("Connector rejected credentials for %s", self.base_url)
        raise ExecutionError(message)


def build_client(sandbox: ExecutionSandbox = None) -> SandboxClient:
    """Remote client when a sandbox url is configured, in-process otherwise"""
    if settings.sandbox_url:
        return RemoteSandboxClient()
    if sandbox is None:
        raise ValueError("An in-process sandbox is required when no sandbox_url is configured")
    return LocalSandboxClient(sandbox)
