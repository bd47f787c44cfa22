from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ..errors import ToolExecutionError
from .base import ToolInvoker


class ToolResponseDTO(BaseModel):
    """Wire shape returned by the tool service: ``{success, result | error}``."""

    model_config = ConfigDict(extra="ignore")

    success: bool
    result: Any = None
    error: Optional[str] = None


class HttpToolInvoker(ToolInvoker):
    """
    Thin async HTTP client for a remote tool service.

    Every tool is exposed as ``POST {base_url}/tools/{name}`` with the params
    as the JSON body.

    Note: Transport errors, non-2xx responses, malformed bodies and
    ``success: false`` all surface as ``ToolExecutionError``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth_token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._logger = logging.getLogger(__name__)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = self.auth_token
        return headers

    async def invoke(self, tool_name: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/tools/{tool_name}"
        try:
            self._logger.debug("HttpToolInvoker.invoke: POST %s", url)
            r = await self._client.post(url, headers=self._headers(), json=params)
            r.raise_for_status()
            payload = ToolResponseDTO.model_validate(r.json())
        except httpx.HTTPStatusError as e:
            raise ToolExecutionError(
                tool_name,
                f"tool service returned {e.response.status_code}",
                details=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            raise ToolExecutionError(tool_name, f"tool service unreachable: {e}") from e
        except (ValueError, ValidationError) as e:
            raise ToolExecutionError(tool_name, f"malformed tool response: {e}") from e
        if not payload.success:
            raise ToolExecutionError(tool_name, payload.error or "tool reported failure", details=payload.result)
        self._logger.debug("HttpToolInvoker.invoke: %s succeeded", tool_name)
        return payload.result

    async def aclose(self) -> None:
        await self._client.aclose()
