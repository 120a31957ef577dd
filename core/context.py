"""
Request Context.

AdminContext carries the identity and scope of the current request (or job)
through every core call. A ContextVar holds the context of the running task
so deeply nested collaborators can read it without threading it by hand.
"""

from contextvars import ContextVar, Token
from dataclasses import dataclass, field, replace
from typing import Any, Optional


@dataclass(frozen=True)
class Scope:
    """Tenant + organization tuple used for multi-tenant isolation."""

    tenant_id: str = ""
    org_id: str = ""

    def normalized(self) -> "Scope":
        return Scope(tenant_id=self.tenant_id.strip(), org_id=self.org_id.strip())

    def key(self) -> tuple[str, str]:
        return (self.tenant_id.strip(), self.org_id.strip())


@dataclass(frozen=True)
class AdminContext:
    """
    Identity and locale of the caller.

    Attributes:
        user_id: Authenticated user id (empty for anonymous).
        role: Role name consulted by authorizers.
        locale: Locale used for menus and labels.
        tenant_id: Tenant of the caller.
        org_id: Organization of the caller.
        claims: Raw identity claims from the authenticator.
    """

    user_id: str = ""
    role: str = ""
    locale: str = "en"
    tenant_id: str = ""
    org_id: str = ""
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def scope(self) -> Scope:
        return Scope(tenant_id=self.tenant_id, org_id=self.org_id)

    @property
    def is_admin(self) -> bool:
        return self.role.strip().lower() in ("admin", "superadmin")

    def with_locale(self, locale: str) -> "AdminContext":
        if not locale:
            return self
        return replace(self, locale=locale)


_current_context: ContextVar[Optional[AdminContext]] = ContextVar(
    "admin_context", default=None
)


def get_admin_context() -> AdminContext:
    """Return the context bound to the running task, or an anonymous one."""
    ctx = _current_context.get()
    return ctx if ctx is not None else AdminContext()


def set_admin_context(ctx: AdminContext) -> Token:
    return _current_context.set(ctx)


def reset_admin_context(token: Token) -> None:
    _current_context.reset(token)
