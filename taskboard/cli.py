"""
Taskboard CLI — Bootstrap and maintenance commands.

Commands:
- taskboard init           — Create the DB tables, seed an admin user
- taskboard create-user    — Create a user with an explicit role
- taskboard notifications  — Print the tasks due tomorrow for one user
"""

from __future__ import annotations

import argparse
import getpass
import logging
from typing import Optional

logger = logging.getLogger("taskboard.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="taskboard",
        description="Taskboard — task and project dashboard",
    )
    parser.add_argument(
        "--config", default=None, help="Path to taskboard.yaml (default: auto-discover)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # taskboard init
    init_parser = subparsers.add_parser("init", help="Create tables and seed an admin user")
    init_parser.add_argument("--admin-email", default="admin@example.com", help="Admin email")
    init_parser.add_argument("--admin-name", default="Administrator", help="Admin display name")
    init_parser.add_argument(
        "--admin-password", help="Admin password (prompted if not provided)"
    )

    # taskboard create-user
    user_parser = subparsers.add_parser("create-user", help="Create a user")
    user_parser.add_argument("email", help="Email address (unique)")
    user_parser.add_argument("--name", required=True, help="Display name")
    user_parser.add_argument("--role", choices=["admin", "member"], default="member")
    user_parser.add_argument("--password", help="Password (prompted if not provided)")

    # taskboard notifications
    notif_parser = subparsers.add_parser("notifications", help="List tasks due tomorrow")
    notif_parser.add_argument("--email", required=True, help="Show tasks visible to this user")

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "create-user":
        return cmd_create_user(args)
    elif args.command == "notifications":
        return cmd_notifications(args)
    else:
        parser.print_help()
        return 0


def _bootstrap(args: argparse.Namespace, create_tables: bool = False):
    """
    Load config, open the database and start the log queue. Returns the config.

    Anything already started is shut down again if a later step fails.

    Raises:
        ConfigError: invalid configuration, or the database or log directory
            cannot be opened.
    """
    from sqlalchemy.exc import SQLAlchemyError

    from taskboard.db.session import init_db
    from taskboard.engine.config import load_config
    from taskboard.engine.errors import ConfigError
    from taskboard.engine.logging import init_logging, log, log_system_event

    config = load_config(args.config)
    logging.basicConfig(level=getattr(logging, config.logging.level.upper(), logging.INFO))
    try:
        init_db(
            config.database.url,
            create_tables=create_tables,
            echo=config.database.echo,
            pool_pre_ping=config.database.pool_pre_ping,
        )
        init_logging(
            log_dir=config.logging.directory,
            flush_interval_ms=config.logging.async_queue.flush_interval_ms,
            flush_batch_size=config.logging.async_queue.flush_batch_size,
            max_queue_size=config.logging.async_queue.max_queue_size,
        )
    except SQLAlchemyError as e:
        _shutdown()
        raise ConfigError(f"Cannot open database: {e}") from e
    except OSError as e:
        _shutdown()
        raise ConfigError(f"Cannot prepare log directory: {e}") from e
    except BaseException:
        _shutdown()
        raise
    log(log_system_event("cli_start", details={"command": args.command}))
    return config


def _shutdown() -> None:
    from taskboard.db.session import close_db
    from taskboard.engine.logging import shutdown_logging

    close_db()
    shutdown_logging()


def _prompt_password(label: str) -> str:
    while True:
        password = getpass.getpass(f"  Enter {label} password: ")
        confirm = getpass.getpass("  Confirm password: ")
        if password == confirm:
            return password
        print("  Passwords do not match. Try again.")


def cmd_init(args: argparse.Namespace) -> int:
    """
    Bootstrap the database:
    1. Load config from taskboard.yaml
    2. Create all tables
    3. Create the admin user, or reset its password if it already exists
    """
    from taskboard.engine.errors import TaskboardError

    print("=" * 60)
    print("  Taskboard Initialization")
    print("=" * 60)

    try:
        config = _bootstrap(args, create_tables=True)
        print(f"[OK] Database ready at {config.database.url}")
    except TaskboardError as e:
        print(f"[ERROR] {e.message}")
        return 1

    from taskboard.db.session import session_scope
    from taskboard.engine.security import hash_password
    from taskboard.services.users import UserDirectory

    password = args.admin_password or _prompt_password("admin")

    try:
        with session_scope() as session:
            users = UserDirectory(
                session,
                password_min_length=config.security.password_min_length,
                bcrypt_rounds=config.security.bcrypt_rounds,
            )
            existing = users.find_by_email(args.admin_email)
            if existing is not None:
                if len(password) < config.security.password_min_length:
                    print(f"[ERROR] Password must be at least {config.security.password_min_length} characters")
                    return 1
                existing.password_hash = hash_password(password, rounds=config.security.bcrypt_rounds)
                existing.role = "admin"
                print(f"[INFO] Admin '{existing.email}' already exists; password updated")
            else:
                admin = users.bootstrap_admin(args.admin_name, args.admin_email, password)
                print(f"[OK] Created admin user: '{admin.email}'")
    except TaskboardError as e:
        print(f"[ERROR] {e.message}")
        for err in getattr(e, "errors", []):
            print(f"  {err['path']}: {err['message']}")
        return 1
    finally:
        _shutdown()

    print("=" * 60)
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    from taskboard.engine.errors import TaskboardError

    try:
        config = _bootstrap(args)
    except TaskboardError as e:
        print(f"[ERROR] {e.message}")
        return 1

    from taskboard.db.session import session_scope
    from taskboard.engine.context import RequestContext
    from taskboard.services.users import UserDirectory

    password = args.password or _prompt_password(args.email)

    try:
        with session_scope() as session:
            users = UserDirectory(
                session,
                password_min_length=config.security.password_min_length,
                bcrypt_rounds=config.security.bcrypt_rounds,
            )
            # The CLI operator acts with admin authority
            operator = RequestContext(subject_id="cli", role="admin", name="cli")
            user = users.create_user(operator, {
                "name": args.name,
                "email": args.email,
                "password": password,
                "role": args.role,
            })
            print(f"[OK] Created {user.role} '{user.email}' ({user.id})")
    except TaskboardError as e:
        print(f"[ERROR] {e.message}")
        for err in getattr(e, "errors", []):
            print(f"  {err['path']}: {err['message']}")
        return 1
    finally:
        _shutdown()
    return 0


def cmd_notifications(args: argparse.Namespace) -> int:
    from taskboard.engine.errors import TaskboardError

    try:
        config = _bootstrap(args)
    except TaskboardError as e:
        print(f"[ERROR] {e.message}")
        return 1

    from taskboard.db.base import ensure_utc
    from taskboard.db.session import session_scope
    from taskboard.engine.context import RequestContext
    from taskboard.policy.access import AccessPolicy
    from taskboard.services.notifications import NotificationSelector
    from taskboard.services.users import UserDirectory

    try:
        with session_scope() as session:
            user = UserDirectory(session).find_by_email(args.email)
            if user is None:
                print(f"[ERROR] No user with email '{args.email}'")
                return 1
            ctx = RequestContext(subject_id=user.id, role=user.role, email=user.email, name=user.name)
            selector = NotificationSelector(
                session,
                AccessPolicy(config.policy.profile),
                horizon_days=config.notifications.horizon_days,
                timezone=config.notifications.timezone,
            )
            tasks = selector.due_soon(ctx)
            if not tasks:
                print("No tasks due tomorrow.")
            for task in tasks:
                due = ensure_utc(task.due_date).isoformat()
                print(f"  [{task.priority:<6}] {task.title}  (due {due}, {task.status})")
    except TaskboardError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        _shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
