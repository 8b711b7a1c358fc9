#!/usr/bin/env python3
"""
Unified Action API command line interface

Usage:
    unified-api serve [--host HOST] [--port PORT]
    unified-api actions list|check <action>|refresh
    unified-api docs generate [--format json|openapi] [--output FILE]
    unified-api docs validate <action>
    unified-api permissions list|set|remove|sync
    unified-api users create --name N --email E --password P [--admin]
    unified-api tokens create|list|revoke|revoke-all|revoke-name|cleanup
"""

import argparse
import json
import sys
from datetime import timedelta
from typing import List, Optional

from .bootstrap import Container, build_container
from .config import LOG_JSON, LOG_LEVEL, is_debug, load_settings
from .credentials import User
from .errors import ActionNotFoundError, DuplicateActionError
from .logging_config import configure_logging
from .util import utc_now


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def save_text(text: str, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def _csv(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _user_by_email(container: Container, email: str) -> Optional[User]:
    user = container.users.get_by_email(email)
    if user is None:
        print(f"✗ No user with email {email}", file=sys.stderr)
    return user


# ============================================================
# serve
# ============================================================

def cmd_serve(args, container: Container) -> int:
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError("uvicorn is required to serve the API. Install the 'server' extra") from e

    from .main import create_app

    level = "DEBUG" if is_debug() else LOG_LEVEL
    configure_logging(level, LOG_JSON)
    uvicorn.run(create_app(container=container), host=args.host, port=args.port, log_level=level.lower())
    return 0


# ============================================================
# actions
# ============================================================

def cmd_actions_list(args, container: Container) -> int:
    descriptors = container.registry.list_all()
    if args.json:
        print_json([d.to_dict() for d in descriptors])
        return 0

    print(f"{'ACTION':<28} {'VERSION':<9} {'ENABLED':<8} CAPABILITIES")
    for d in descriptors:
        required = container.permissions.required_capabilities(d)
        print(f"{d.action_type:<28} {d.version:<9} {'yes' if d.enabled else 'no':<8} "
              f"{', '.join(required) or '(public)'}")
    print(f"\n{len(descriptors)} actions")
    return 0


def cmd_actions_check(args, container: Container) -> int:
    descriptor = container.registry.get(args.action)
    if descriptor is None:
        print(f"✗ Action not found: {args.action}", file=sys.stderr)
        return 1

    info = descriptor.to_dict()
    info["effective_capabilities"] = list(container.permissions.required_capabilities(descriptor))
    override = container.permissions.get_override(args.action)
    info["override"] = override.to_dict() if override else None
    info["documentation"] = container.docs.validate(args.action)
    print_json(info)
    return 0 if info["documentation"]["valid"] else 1


def cmd_actions_refresh(args, container: Container) -> int:
    try:
        descriptors = container.registry.refresh()
    except (DuplicateActionError, TypeError, ValueError) as e:
        print(f"✗ Discovery failed: {e}", file=sys.stderr)
        return 1
    print(f"✓ Registry refreshed: {len(descriptors)} actions")
    return 0


# ============================================================
# docs
# ============================================================

def cmd_docs_generate(args, container: Container) -> int:
    if args.format == "openapi":
        text = container.docs.export_openapi()
    else:
        text = json.dumps(container.docs.regenerate(), indent=2)

    if args.output:
        save_text(text, args.output)
        print(f"Documentation saved to: {args.output}")
    else:
        print(text)

    errors = container.docs.generate()["errors"]
    for action_type, message in errors.items():
        print(f"  - {action_type}: {message}", file=sys.stderr)
    return 1 if errors else 0


def cmd_docs_validate(args, container: Container) -> int:
    try:
        report = container.docs.validate(args.action)
    except ActionNotFoundError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        return 1
    print_json(report)
    return 0 if report["valid"] else 1


# ============================================================
# permissions
# ============================================================

def cmd_permissions_list(args, container: Container) -> int:
    overrides = container.permissions.list_overrides()
    if not overrides:
        print("No permission overrides")
        return 0
    print_json([o.to_dict() for o in overrides])
    return 0


def cmd_permissions_set(args, container: Container) -> int:
    try:
        override = container.permissions.set_override(
            args.action,
            _csv(args.capabilities),
            description=args.description,
            is_active=not args.inactive,
        )
    except ActionNotFoundError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        return 1
    print_json(override.to_dict())
    return 0


def cmd_permissions_remove(args, container: Container) -> int:
    if not container.permissions.remove_override(args.action):
        print(f"✗ No override for {args.action}", file=sys.stderr)
        return 1
    print(f"✓ Override removed; {args.action} uses its declared capabilities")
    return 0


def cmd_permissions_sync(args, container: Container) -> int:
    print_json(container.permissions.sync_overrides())
    return 0


# ============================================================
# users
# ============================================================

def cmd_users_create(args, container: Container) -> int:
    if container.users.get_by_email(args.email):
        print(f"✗ Email already in use: {args.email}", file=sys.stderr)
        return 1
    try:
        user = container.users.create(args.name, args.email, args.password, is_admin=args.admin)
    except ValueError as exc:
        print(f"✗ {exc}", file=sys.stderr)
        return 1
    print_json(user.to_public_dict())
    return 0


# ============================================================
# tokens
# ============================================================

def cmd_tokens_create(args, container: Container) -> int:
    user = _user_by_email(container, args.email)
    if user is None:
        return 1
    expires_at = utc_now() + timedelta(days=args.expires_days) if args.expires_days else None
    token, credential = container.credentials.issue(
        user.id, args.name, _csv(args.permissions), expires_at
    )
    print_json({"token": token, "credential": credential.to_dict()})
    print("\nStore this token now; it cannot be shown again.", file=sys.stderr)
    return 0


def cmd_tokens_list(args, container: Container) -> int:
    user = _user_by_email(container, args.email)
    if user is None:
        return 1
    credentials = container.credentials.list_for_user(user.id, active_only=not args.all)
    print_json([c.to_dict() for c in credentials])
    return 0


def cmd_tokens_revoke(args, container: Container) -> int:
    if not container.credentials.revoke(args.token):
        print("✗ Token not found or already revoked", file=sys.stderr)
        return 1
    print("✓ Token revoked")
    return 0


def cmd_tokens_revoke_all(args, container: Container) -> int:
    user = _user_by_email(container, args.email)
    if user is None:
        return 1
    count = container.credentials.revoke_all_for_user(user.id)
    print(f"✓ Revoked {count} tokens")
    return 0


def cmd_tokens_revoke_name(args, container: Container) -> int:
    user = _user_by_email(container, args.email)
    if user is None:
        return 1
    count = container.credentials.revoke_by_name(user.id, args.name)
    if not count:
        print(f"✗ No active token named {args.name!r}", file=sys.stderr)
        return 1
    print(f"✓ Revoked {count} tokens named {args.name!r}")
    return 0


def cmd_tokens_cleanup(args, container: Container) -> int:
    count = container.credentials.cleanup_expired()
    print(f"✓ Deactivated {count} expired tokens")
    return 0


# ============================================================
# parser
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unified-api",
        description="Unified Action API CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  unified-api actions list
  unified-api docs generate --format openapi --output openapi.json
  unified-api permissions set user.list admin.read,user.list
  unified-api users create --name Admin --email admin@example.com --password secret123 --admin
  unified-api tokens create --email admin@example.com --name cli --expires-days 30
        """
    )
    parser.add_argument("--db", help="SQLite database path (overrides UNIFIED_API_DB_PATH)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=cmd_serve)

    # actions
    actions_parser = subparsers.add_parser("actions", help="Inspect the action registry")
    actions_sub = actions_parser.add_subparsers(dest="subcommand")
    p = actions_sub.add_parser("list", help="List registered actions")
    p.add_argument("--json", action="store_true", help="Machine-readable output")
    p.set_defaults(func=cmd_actions_list)
    p = actions_sub.add_parser("check", help="Show one action and validate its docs")
    p.add_argument("action")
    p.set_defaults(func=cmd_actions_check)
    p = actions_sub.add_parser("refresh", help="Rediscover actions from the manifest")
    p.set_defaults(func=cmd_actions_refresh)

    # docs
    docs_parser = subparsers.add_parser("docs", help="API documentation")
    docs_sub = docs_parser.add_subparsers(dest="subcommand")
    p = docs_sub.add_parser("generate", help="Generate documentation")
    p.add_argument("-f", "--format", choices=("json", "openapi"), default="json")
    p.add_argument("-o", "--output", help="Output file")
    p.set_defaults(func=cmd_docs_generate)
    p = docs_sub.add_parser("validate", help="Check one action's documentation")
    p.add_argument("action")
    p.set_defaults(func=cmd_docs_validate)

    # permissions
    perms_parser = subparsers.add_parser("permissions", help="Manage permission overrides")
    perms_sub = perms_parser.add_subparsers(dest="subcommand")
    p = perms_sub.add_parser("list", help="List overrides")
    p.set_defaults(func=cmd_permissions_list)
    p = perms_sub.add_parser("set", help="Create or replace an override")
    p.add_argument("action")
    p.add_argument("capabilities", help="Comma-separated capabilities; empty string makes it public")
    p.add_argument("-d", "--description")
    p.add_argument("--inactive", action="store_true", help="Store the override disabled")
    p.set_defaults(func=cmd_permissions_set)
    p = perms_sub.add_parser("remove", help="Delete an override")
    p.add_argument("action")
    p.set_defaults(func=cmd_permissions_remove)
    p = perms_sub.add_parser("sync", help="Reconcile overrides with the registry")
    p.set_defaults(func=cmd_permissions_sync)

    # users
    users_parser = subparsers.add_parser("users", help="Manage users")
    users_sub = users_parser.add_subparsers(dest="subcommand")
    p = users_sub.add_parser("create", help="Create a user")
    p.add_argument("--name", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--password", required=True)
    p.add_argument("--admin", action="store_true")
    p.set_defaults(func=cmd_users_create)

    # tokens
    tokens_parser = subparsers.add_parser("tokens", help="Manage bearer tokens")
    tokens_sub = tokens_parser.add_subparsers(dest="subcommand")
    p = tokens_sub.add_parser("create", help="Issue a token")
    p.add_argument("--email", required=True)
    p.add_argument("--name", default="API Token")
    p.add_argument("--permissions", help="Comma-separated capabilities; default set when omitted")
    p.add_argument("--expires-days", type=int)
    p.set_defaults(func=cmd_tokens_create)
    p = tokens_sub.add_parser("list", help="List a user's tokens")
    p.add_argument("--email", required=True)
    p.add_argument("--all", action="store_true", help="Include revoked tokens")
    p.set_defaults(func=cmd_tokens_list)
    p = tokens_sub.add_parser("revoke", help="Revoke one token")
    p.add_argument("token")
    p.set_defaults(func=cmd_tokens_revoke)
    p = tokens_sub.add_parser("revoke-all", help="Revoke every token of a user")
    p.add_argument("--email", required=True)
    p.set_defaults(func=cmd_tokens_revoke_all)
    p = tokens_sub.add_parser("revoke-name", help="Revoke a user's tokens by name")
    p.add_argument("--email", required=True)
    p.add_argument("--name", required=True)
    p.set_defaults(func=cmd_tokens_revoke_name)
    p = tokens_sub.add_parser("cleanup", help="Deactivate expired tokens")
    p.set_defaults(func=cmd_tokens_cleanup)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    settings = load_settings()
    if args.db:
        settings = settings.with_overrides(db_path=args.db)

    container = build_container(settings, rate_limit=args.command == "serve")
    try:
        return args.func(args, container)
    finally:
        container.close()


if __name__ == "__main__":
    sys.exit(main())
