"""Taskboard Engine — errors, configuration, request context, logging, security."""
