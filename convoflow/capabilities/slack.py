"""Slack incoming-webhook capability for chat-ops messages."""

from __future__ import annotations

import httpx

from convoflow.capabilities.base import (
    ActionResult,
    ActionType,
    BaseCapability,
    CapabilityAction,
)


class SlackWebhookCapability(BaseCapability):
    def __init__(
        self,
        webhook_url: str,
        channel: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._channel = channel
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def name(self) -> str:
        return "slack"

    @property
    def actions(self) -> frozenset[ActionType]:
        return frozenset({ActionType.SEND_CHAT_MESSAGE})

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def execute(self, action: CapabilityAction) -> ActionResult:
        body = {"text": action.payload.get("text", "")}
        channel = action.payload.get("channel") or self._channel
        if channel:
            body["channel"] = channel

        try:
            resp = await self._client.post(self._webhook_url, json=body)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            return ActionResult(
                success=False,
                error=f"Slack returned {e.response.status_code}: {e.response.text[:200]}",
                retryable=e.response.status_code >= 500,
            )
        except httpx.TransportError as e:
            return ActionResult(success=False, error=f"Slack unreachable: {e}", retryable=True)

        return ActionResult(success=True)

    async def close(self) -> None:
        await self._client.aclose()
