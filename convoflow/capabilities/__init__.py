"""Capability providers: calendar, messaging and email actions."""

from convoflow.capabilities.base import (
    ActionResult,
    ActionType,
    BaseCapability,
    CapabilityAction,
)
from convoflow.capabilities.http import HttpActionCapability
from convoflow.capabilities.manager import IntegrationManager
from convoflow.capabilities.slack import SlackWebhookCapability

__all__ = [
    "ActionResult",
    "ActionType",
    "BaseCapability",
    "CapabilityAction",
    "HttpActionCapability",
    "IntegrationManager",
    "SlackWebhookCapability",
]
