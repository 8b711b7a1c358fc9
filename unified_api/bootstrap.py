"""
Process bootstrap: builds every service once and wires them together.

Both the HTTP app and the CLI start from ``build_container``; nothing in
the package holds module-level service instances.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from .actions import MANIFEST
from .audit import AuditLogStore, AuditSink, get_audit_sink
from .config import Settings, load_settings
from .context import ActionServices
from .credentials import Authenticator, CredentialStore, UserStore
from .db import Database
from .dispatcher import Dispatcher
from .docs import DocumentationGenerator
from .permissions import PermissionOverrideStore, PermissionResolver
from .rate_limit import RateLimiter
from .registry import ActionRegistry, HandlerFactory


@dataclass
class Container:
    settings: Settings
    db: Database
    users: UserStore
    credentials: CredentialStore
    authenticator: Authenticator
    registry: ActionRegistry
    permissions: PermissionResolver
    docs: DocumentationGenerator
    audit_sink: AuditSink
    audit_logs: AuditLogStore
    rate_limiter: Optional[RateLimiter]
    services: ActionServices
    dispatcher: Dispatcher

    def close(self) -> None:
        self.db.close()


def build_container(
    settings: Optional[Settings] = None,
    manifest: Iterable[HandlerFactory] = MANIFEST,
    rate_limit: bool = True,
) -> Container:
    settings = settings or load_settings()

    db = Database(settings.db_path)
    db.init_schema()

    users = UserStore(db)
    credentials = CredentialStore(db)
    services = ActionServices(settings=settings, db=db, users=users, credentials=credentials)

    registry = ActionRegistry(manifest, services)
    services.registry = registry

    authenticator = Authenticator(credentials, users, settings)
    permissions = PermissionResolver(registry, PermissionOverrideStore(db))
    docs = DocumentationGenerator(registry, settings)
    audit_sink = get_audit_sink(settings.audit_sink, db)
    rate_limiter = RateLimiter(settings.dispatch_rpm) if rate_limit else None

    dispatcher = Dispatcher(
        registry=registry,
        authenticator=authenticator,
        permissions=permissions,
        audit_sink=audit_sink,
        settings=settings,
        services=services,
        rate_limiter=rate_limiter,
    )

    return Container(
        settings=settings,
        db=db,
        users=users,
        credentials=credentials,
        authenticator=authenticator,
        registry=registry,
        permissions=permissions,
        docs=docs,
        audit_sink=audit_sink,
        audit_logs=AuditLogStore(db),
        rate_limiter=rate_limiter,
        services=services,
        dispatcher=dispatcher,
    )
