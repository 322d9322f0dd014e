"""Inbound event handlers."""

from .base import EventHandler
from .handlers import DelayDetectedHandler, DelayNotDetectedHandler

__all__ = ["EventHandler", "DelayDetectedHandler", "DelayNotDetectedHandler"]
