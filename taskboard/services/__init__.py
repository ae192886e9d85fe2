"""Taskboard stores — users, tasks, projects, notifications."""
