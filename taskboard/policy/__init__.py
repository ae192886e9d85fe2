"""Taskboard Access Policy Engine."""

from taskboard.policy.access import AccessPolicy, Decision, decide  # noqa: F401

__all__ = ["AccessPolicy", "Decision", "decide"]
