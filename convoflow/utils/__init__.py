"""Utility modules for convoflow."""

from convoflow.utils.logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
