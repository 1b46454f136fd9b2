"""Routes capability actions to registered services."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from convoflow.capabilities.base import (
    ActionResult,
    ActionType,
    BaseCapability,
    CapabilityAction,
)
from convoflow.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0


class IntegrationManager:
    """Holds the capability services available to a workflow.

    Every call is bounded by ``timeout`` seconds. A timeout is reported as a
    retryable failure, never as success.
    """

    def __init__(
        self,
        capabilities: Iterable[BaseCapability] = (),
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._services: list[BaseCapability] = []
        self._timeout = timeout
        for capability in capabilities:
            self.register(capability)

    @property
    def timeout(self) -> float:
        return self._timeout

    def register(self, capability: BaseCapability) -> None:
        self._services.append(capability)
        log.debug(
            "capability_registered",
            service=capability.name,
            actions=sorted(a.value for a in capability.actions),
        )

    def service_for(self, action_type: ActionType) -> BaseCapability | None:
        for service in self._services:
            if service.enabled and action_type in service.actions:
                return service
        return None

    def has_capability(self, name: ActionType | str) -> bool:
        try:
            action_type = ActionType(name)
        except ValueError:
            return False
        return self.service_for(action_type) is not None

    async def execute(self, action: CapabilityAction) -> ActionResult:
        service = self.service_for(action.type)
        if service is None:
            return ActionResult(
                success=False,
                error=f"Capability {action.type.value} is not configured",
                unavailable=True,
            )

        try:
            result = await asyncio.wait_for(service.execute(action), timeout=self._timeout)
        except asyncio.TimeoutError:
            log.warning(
                "capability_timeout",
                action=action.type.value,
                service=service.name,
                timeout=self._timeout,
            )
            return ActionResult(
                success=False,
                error=f"{action.type.value} timed out after {self._timeout:g}s",
                retryable=True,
            )

        log.info(
            "capability_executed",
            action=action.type.value,
            service=service.name,
            success=result.success,
        )
        return result

    async def close(self) -> None:
        for service in self._services:
            await service.close()
