"""Taskpilot - client for human-supervised coding agent executions."""

__version__ = "0.1.0"
