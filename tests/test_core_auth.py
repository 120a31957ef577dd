"""
Unit Tests for core.auth and core.context modules.

Tests JWT authentication, authorizers and the request context.
"""

import jwt
import pytest
from starlette.requests import Request

from core.context import AdminContext


def _request(headers=None):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/admin/api/x", "headers": raw})


class TestJWTAuthenticator:
    """Tests for JWTAuthenticator."""

    def test_requires_secret(self):
        """Test an empty secret is rejected."""
        from core.auth import JWTAuthenticator

        with pytest.raises(ValueError):
            JWTAuthenticator("")

    def test_issue_and_decode(self, jwt_authenticator):
        """Test issued tokens decode into a context."""
        token = jwt_authenticator.issue_token(
            "user-1", role="editor", tenant_id="t1", org_id="o1", locale="de", team="ops"
        )

        ctx = jwt_authenticator.decode(token)

        assert ctx == AdminContext(user_id="user-1", role="editor", locale="de", tenant_id="t1", org_id="o1")
        assert ctx.claims["team"] == "ops"
        assert ctx.claims["type"] == "admin_access"

    def test_default_locale(self):
        """Test tokens without a locale use the default."""
        from core.auth import JWTAuthenticator

        auth = JWTAuthenticator("secret", default_locale="fr")

        assert auth.decode(auth.issue_token("u")).locale == "fr"

    def test_expired_token(self):
        """Test expired tokens raise UnauthorizedError."""
        from core.auth import JWTAuthenticator
        from core.errors import UnauthorizedError

        auth = JWTAuthenticator("secret", expire_minutes=-1)

        with pytest.raises(UnauthorizedError) as exc_info:
            auth.decode(auth.issue_token("u"))

        assert exc_info.value.message == "Token expired"

    def test_wrong_secret(self, jwt_authenticator):
        """Test tokens signed with another secret are invalid."""
        from core.auth import JWTAuthenticator
        from core.errors import UnauthorizedError

        token = JWTAuthenticator("other-secret").issue_token("u")

        with pytest.raises(UnauthorizedError) as exc_info:
            jwt_authenticator.decode(token)

        assert exc_info.value.message == "Invalid token"

    def test_wrong_token_type(self, jwt_authenticator):
        """Test tokens of another type are rejected."""
        from core.errors import UnauthorizedError

        token = jwt.encode({"sub": "u", "type": "refresh"}, "test-secret-key-12345", algorithm="HS256")

        with pytest.raises(UnauthorizedError) as exc_info:
            jwt_authenticator.decode(token)

        assert exc_info.value.message == "Invalid token type"

    @pytest.mark.asyncio
    async def test_authenticate_bearer(self, jwt_authenticator):
        """Test the Authorization header is read."""
        token = jwt_authenticator.issue_token("u1", role="admin")

        ctx = await jwt_authenticator.authenticate(_request({"Authorization": f"Bearer {token}"}))

        assert ctx.user_id == "u1"
        assert ctx.is_admin is True

    @pytest.mark.asyncio
    async def test_authenticate_cookie(self, jwt_authenticator):
        """Test the admin_token cookie is a fallback."""
        token = jwt_authenticator.issue_token("u2")

        ctx = await jwt_authenticator.authenticate(_request({"Cookie": f"admin_token={token}"}))

        assert ctx.user_id == "u2"

    @pytest.mark.asyncio
    async def test_authenticate_missing_or_invalid(self, jwt_authenticator):
        """Test missing and invalid tokens yield no identity."""
        assert await jwt_authenticator.authenticate(_request()) is None
        assert await jwt_authenticator.authenticate(_request({"Authorization": "Bearer garbage"})) is None
        assert await jwt_authenticator.authenticate(_request({"Authorization": "Basic abc"})) is None


class TestAuthorizers:
    """Tests for DefaultAuthorizer and RolePolicyAuthorizer."""

    @pytest.mark.parametrize("action,expected", [
        ("delete", True),
        ("notes.delete", True),
        ("notes:DELETE", True),
        ("notes.deleted_view", False),
        ("notes.edit", False),
    ])
    def test_is_delete_action(self, action, expected):
        """Test delete tokens are recognized by suffix."""
        from core.auth import is_delete_action

        assert is_delete_action(action) is expected

    def test_default_authorizer(self):
        """Test only admins may delete."""
        from core.auth import DefaultAuthorizer

        authorizer = DefaultAuthorizer()

        assert authorizer.can(AdminContext(role="editor"), "notes.edit", "notes") is True
        assert authorizer.can(AdminContext(role="editor"), "notes.delete", "notes") is False
        assert authorizer.can(AdminContext(role="superadmin"), "notes.delete", "notes") is True

    def test_role_policy_patterns(self):
        """Test glob patterns grant matching actions."""
        from core.auth import RolePolicyAuthorizer

        authorizer = RolePolicyAuthorizer({"editor": ["notes.*", "dashboard.view"]})
        editor = AdminContext(role="editor")

        assert authorizer.can(editor, "notes.delete", "notes") is True
        assert authorizer.can(editor, "dashboard.view", "dashboard") is True
        assert authorizer.can(editor, "users.view", "users") is False
        assert authorizer.can(AdminContext(role="admin"), "users.delete", "users") is True

    def test_role_without_policy(self):
        """Test roles without a policy use the fallback."""
        from core.auth import RolePolicyAuthorizer

        viewer = AdminContext(role="viewer")

        assert RolePolicyAuthorizer({}).can(viewer, "notes.view", "notes") is False
        assert RolePolicyAuthorizer({}, fallback_allow=True).can(viewer, "notes.view", "notes") is True
        assert RolePolicyAuthorizer({}, fallback_allow=True).can(viewer, "notes.delete", "notes") is False


class TestAdminContext:
    """Tests for AdminContext and the context variable."""

    def test_scope_and_locale(self):
        """Test scope derivation and locale replacement."""
        from core.context import Scope

        ctx = AdminContext(tenant_id=" t1 ", org_id="o1")

        assert ctx.scope.normalized() == Scope("t1", "o1")
        assert ctx.with_locale("de").locale == "de"
        assert ctx.with_locale("") is ctx

    def test_context_var(self):
        """Test the bound context is visible until reset."""
        from core.context import get_admin_context, reset_admin_context, set_admin_context

        token = set_admin_context(AdminContext(user_id="bound"))
        try:
            assert get_admin_context().user_id == "bound"
        finally:
            reset_admin_context(token)

        assert get_admin_context() == AdminContext()
