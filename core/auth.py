"""
Authentication & Authorization.

Authenticators translate request-bound identity into an AdminContext.
Authorizers answer ``can(ctx, action_token, resource)`` before every panel,
command and action invocation.
"""

import fnmatch
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional, Protocol, runtime_checkable

import jwt
from starlette.requests import Request

from core.context import AdminContext
from core.errors import UnauthorizedError

logger = logging.getLogger(__name__)

TOKEN_TYPE = "admin_access"
AUTH_COOKIE = "admin_token"


@dataclass(frozen=True)
class AuthConfig:
    """
    Attributes:
        login_path: Where unauthenticated browser requests are redirected.
        public_paths: Path prefixes served without authentication.
    """

    login_path: str = "/admin/login"
    public_paths: tuple[str, ...] = ()


@runtime_checkable
class Authenticator(Protocol):
    async def authenticate(self, request: Request) -> Optional[AdminContext]:
        """Return the caller's context, or None when no identity is present."""
        ...


@runtime_checkable
class Authorizer(Protocol):
    def can(self, ctx: AdminContext, action: str, resource: str) -> bool: ...


# =============================================================================
# JWT Authenticator
# =============================================================================


class JWTAuthenticator:
    """
    Bearer-token authenticator backed by PyJWT.

    Tokens are read from the ``Authorization: Bearer`` header, falling back
    to the ``admin_token`` cookie for browser sessions.

    Args:
        secret: HMAC secret.
        algorithm: JWT algorithm (default HS256).
        default_locale: Locale used when the token carries none.
        expire_minutes: Lifetime of issued tokens.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        default_locale: str = "en",
        expire_minutes: int = 480,
    ) -> None:
        if not secret:
            raise ValueError("JWT secret is not configured")
        self._secret = secret
        self._algorithm = algorithm
        self._default_locale = default_locale
        self._expire_minutes = expire_minutes

    def issue_token(
        self,
        user_id: str,
        role: str = "",
        tenant_id: str = "",
        org_id: str = "",
        locale: str = "",
        **claims: Any,
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "role": role,
            "tenant_id": tenant_id,
            "org_id": org_id,
            "locale": locale,
            "type": TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(minutes=self._expire_minutes),
            **claims,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> AdminContext:
        """
        Decode a token into a context.

        Raises:
            UnauthorizedError: Invalid, expired or wrongly typed token.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as e:
            raise UnauthorizedError("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise UnauthorizedError("Invalid token") from e

        if payload.get("type") != TOKEN_TYPE or not payload.get("sub"):
            raise UnauthorizedError("Invalid token type")

        return AdminContext(
            user_id=str(payload["sub"]),
            role=str(payload.get("role") or ""),
            locale=str(payload.get("locale") or self._default_locale),
            tenant_id=str(payload.get("tenant_id") or ""),
            org_id=str(payload.get("org_id") or ""),
            claims=payload,
        )

    async def authenticate(self, request: Request) -> Optional[AdminContext]:
        token = _bearer_token(request) or request.cookies.get(AUTH_COOKIE, "")
        if not token:
            return None
        try:
            return self.decode(token)
        except UnauthorizedError as e:
            logger.info(f"Rejected admin token: {e.message}")
            return None


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return credentials.strip()


# =============================================================================
# Authorizers
# =============================================================================


def is_delete_action(action: str) -> bool:
    token = action.strip().lower()
    return token == "delete" or token.endswith((".delete", ":delete"))


class DefaultAuthorizer:
    """Deletes require an admin role; everything else is allowed."""

    def can(self, ctx: AdminContext, action: str, resource: str) -> bool:
        if is_delete_action(action) and not ctx.is_admin:
            return False
        return True


@dataclass
class RolePolicyAuthorizer:
    """
    Role to permission-pattern policy.

    Admin roles may do anything. Other roles need a matching glob pattern;
    roles without a policy fall back to DefaultAuthorizer rules when
    ``fallback_allow`` is set.
    """

    policies: Mapping[str, Iterable[str]] = field(default_factory=dict)
    fallback_allow: bool = False

    def can(self, ctx: AdminContext, action: str, resource: str) -> bool:
        if ctx.is_admin:
            return True
        patterns = self.policies.get(ctx.role)
        if patterns is None:
            return self.fallback_allow and DefaultAuthorizer().can(ctx, action, resource)
        return any(fnmatch.fnmatchcase(action, pattern) for pattern in patterns)
