"""Capability provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    CHECK_AVAILABILITY = "check_availability"
    SCHEDULE_MEETING = "schedule_meeting"
    CANCEL_MEETING = "cancel_meeting"
    UPDATE_MEETING = "update_meeting"
    SEND_CHAT_MESSAGE = "send_chat_message"
    SEND_EMAIL = "send_email"


@dataclass
class CapabilityAction:
    type: ActionType
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionResult:
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str = ""
    # Transient failure (timeout, 5xx, connection refused)
    retryable: bool = False
    # No service is registered for the action
    unavailable: bool = False


class BaseCapability(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def actions(self) -> frozenset[ActionType]:
        """Action types this service can perform."""
        ...

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def execute(self, action: CapabilityAction) -> ActionResult: ...

    async def close(self) -> None:
        return None
