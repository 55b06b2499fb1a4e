"""Outbound event delivery."""

from .workflow import WorkflowNotifier

__all__ = [
    "WorkflowNotifier",
]
