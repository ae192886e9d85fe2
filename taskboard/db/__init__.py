"""Taskboard persistence — declarative base, session scope and models."""
