"""
Tests for token verification, organization context and role checks
"""
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from riskmate.auth import OrganizationContext, require_roles, verify_token
from riskmate.db.engine import get_db
from riskmate.db.models import User
from riskmate.exceptions import ApiError, api_error_handler

from helpers import make_token


class TestVerifyToken:
    """verify_token"""

    def test_valid_token(self):
        payload = verify_token(make_token("user-1"))

        assert payload["sub"] == "user-1"
        assert payload["aud"] == "authenticated"

    def test_expired_token(self):
        assert verify_token(make_token("user-1", expires_in=-60)) is None

    def test_wrong_audience(self):
        assert verify_token(make_token("user-1", audience="anon")) is None

    def test_wrong_secret(self):
        assert verify_token(make_token("user-1", secret="another-secret-that-is-long-enough")) is None

    def test_garbage(self):
        assert verify_token("not.a.jwt") is None

    def test_unconfigured_secret(self, monkeypatch):
        from riskmate.config import config

        token = make_token("user-1")
        monkeypatch.setattr(config, "SUPABASE_JWT_SECRET", None)

        assert verify_token(token) is None


class TestOrganizationContext:
    """get_current_context via a protected route"""

    def test_context_resolved(self, client, auth_headers, organization):
        response = client.get("/api/subscriptions", headers=auth_headers)

        assert response.status_code == 200

    def test_invalid_token(self, client):
        response = client.get("/api/subscriptions", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid or expired authentication token"

    def test_user_without_account(self, client, db_session):
        response = client.get(
            "/api/subscriptions", headers={"Authorization": f"Bearer {make_token('ghost-user')}"}
        )

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_display_name_fallback(self):
        assert OrganizationContext("u1", "o1", "member", name="Sam").display_name == "Sam"
        assert OrganizationContext("u1", "o1", "member", email="sam@acme.test").display_name == "sam@acme.test"
        assert OrganizationContext("u1", "o1", "member").display_name == "u1"


class TestRequireRoles:
    """require_roles dependency factory"""

    @pytest.fixture
    def roles_client(self, db_session):
        app = FastAPI()
        app.add_exception_handler(ApiError, api_error_handler)
        app.dependency_overrides[get_db] = lambda: db_session

        @app.get("/admin")
        async def admin(context: OrganizationContext = Depends(require_roles("owner", "admin"))):
            return {"role": context.role}

        return TestClient(app)

    def test_allowed_role(self, roles_client, auth_headers):
        response = roles_client.get("/admin", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"role": "owner"}

    def test_denied_role(self, roles_client, db_session, organization):
        member = User(organization_id=organization.id, email="crew@acme.test", role="member")
        db_session.add(member)
        db_session.commit()

        response = roles_client.get("/admin", headers={"Authorization": f"Bearer {make_token(member.id)}"})

        assert response.status_code == 403
        assert response.json()["details"] == {"required_roles": ["owner", "admin"], "role": "member"}
