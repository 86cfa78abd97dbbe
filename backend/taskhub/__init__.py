"""Taskhub - multi-assignee task assignment and completion service."""

__version__ = "0.1.0"
