"""
Taskboard — rule layer for a task/project dashboard.

Subpackages:
    engine    — errors, config, request context, logging, security
    db        — SQLAlchemy base, session scope, models
    policy    — access policy engine
    services  — user directory, task/project stores, notification selector
    api       — transport-independent request boundary
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "policy", "services", "api"]
