"""Taskboard request boundary."""

from taskboard.api.executor import APIExecutor, APIRequest, APIResponse  # noqa: F401

__all__ = ["APIExecutor", "APIRequest", "APIResponse"]
