"""Capability backed by a companion integration service over HTTP."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import httpx

from convoflow.capabilities.base import (
    ActionResult,
    ActionType,
    BaseCapability,
    CapabilityAction,
)
from convoflow.utils.logging import get_logger

log = get_logger(__name__)


class HttpActionCapability(BaseCapability):
    """POSTs ``{"type", "payload"}`` to ``<base_url>/actions/<type>``.

    The service answers with ``{"success": bool, "data": {...}, "error": str}``.
    """

    def __init__(
        self,
        base_url: str,
        actions: Iterable[ActionType | str],
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._actions = frozenset(ActionType(a) for a in actions)
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
        )

    @property
    def name(self) -> str:
        return "http"

    @property
    def actions(self) -> frozenset[ActionType]:
        return self._actions

    async def execute(self, action: CapabilityAction) -> ActionResult:
        try:
            resp = await self._client.post(
                f"/actions/{action.type.value}",
                json={"type": action.type.value, "payload": action.payload},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log.warning("http_capability_error", action=action.type.value, status=status)
            return ActionResult(
                success=False,
                error=_error_text(e.response) or f"Integration service returned {status}",
                retryable=status >= 500,
            )
        except httpx.TransportError as e:
            log.warning("http_capability_unreachable", action=action.type.value, error=str(e))
            return ActionResult(
                success=False,
                error=f"Integration service unreachable: {e}",
                retryable=True,
            )

        body = resp.json()
        return ActionResult(
            success=bool(body.get("success", False)),
            data=body.get("data") or {},
            error=body.get("error") or "",
        )

    async def close(self) -> None:
        await self._client.aclose()


def _error_text(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or "")
    return ""
