"""HTTP control surface."""

from convoflow.api.server import ControlServer

__all__ = ["ControlServer"]
