"""
Tests for role resolution and middleware.

Tests JWT authentication, API key authentication, and anonymous fallback.
"""

import pytest
import jwt
from datetime import datetime, timedelta, timezone
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from core.rbac.resolve import (
    RoleResolver,
    configure_resolver,
    get_resolver,
    reset_resolver,
)
from api.middleware.roles import (
    RoleResolutionMiddleware,
    get_current_user,
    get_user_roles,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_global_resolver():
    reset_resolver()
    yield
    reset_resolver()


@pytest.fixture
def jwt_secret():
    """JWT secret for testing."""
    return "test-secret-key-12345"


@pytest.fixture
def api_key_map():
    """API key to user mapping for testing."""
    return {
        "qa-key-123": {
            "user_id": "qa-user-1",
            "email": "qa@example.com",
            "roles": ["QA"],
        },
        "leader-key-456": {
            "user_id": "leader-1",
            "roles": ["GroupLeader"],
            "group_ids": ["g1", "g2"],
        },
        "single-role-key": {
            "user_id": "editor-2",
            "roles": "Editor",  # Single role (not a list)
            "group_ids": "g1",
        },
    }


@pytest.fixture
def resolver(jwt_secret, api_key_map):
    return RoleResolver(
        jwt_secret=jwt_secret,
        api_key_to_user_map=api_key_map,
    )


def _token(secret, **claims):
    payload = {
        "sub": "user-123",
        "email": "test@example.com",
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


# ============================================================================
# JWT
# ============================================================================

class TestJwtResolution:

    def test_direct_claims(self, resolver, jwt_secret):
        token = _token(jwt_secret, roles=["TeamLead", "qa"], group_ids=["g7"])

        user = resolver.resolve_from_request(authorization_header=f"Bearer {token}")

        assert user.user_id == "user-123"
        assert user.email == "test@example.com"
        assert user.roles == ["team-lead", "qa"]
        assert user.group_ids == ["g7"]
        assert user.auth_method == "jwt"
        assert user.is_authenticated

    def test_app_metadata_claims(self, resolver, jwt_secret):
        token = _token(jwt_secret, app_metadata={"roles": ["editor"], "group_ids": [3]})

        user = resolver.resolve_from_request(authorization_header=f"Bearer {token}")

        assert user.roles == ["editor"]
        assert user.group_ids == ["3"]

    def test_user_metadata_claims(self, resolver, jwt_secret):
        token = _token(jwt_secret, user_metadata={"roles": ["backup"]})
        user = resolver.resolve_from_request(authorization_header=f"Bearer {token}")
        assert user.roles == ["backup"]

    def test_no_roles_claim_means_no_roles(self, resolver, jwt_secret):
        token = _token(jwt_secret)
        user = resolver.resolve_from_request(authorization_header=f"Bearer {token}")
        assert user.auth_method == "jwt"
        assert user.roles == []

    def test_unknown_roles_dropped(self, resolver, jwt_secret):
        token = _token(jwt_secret, roles=["janitor", "qa"])
        user = resolver.resolve_from_request(authorization_header=f"Bearer {token}")
        assert user.roles == ["qa"]

    def test_expired_token_falls_back_to_anonymous(self, resolver, jwt_secret):
        token = _token(jwt_secret, roles=["admin"], exp=datetime.now(timezone.utc) - timedelta(minutes=1))

        user = resolver.resolve_from_request(authorization_header=f"Bearer {token}")

        assert user.is_anonymous
        assert user.roles == []

    def test_wrong_secret(self, resolver):
        token = _token("other-secret", roles=["admin"])
        user = resolver.resolve_from_request(authorization_header=f"Bearer {token}")
        assert user.is_anonymous

    def test_missing_bearer_prefix(self, resolver, jwt_secret):
        token = _token(jwt_secret, roles=["admin"])
        user = resolver.resolve_from_request(authorization_header=token)
        assert user.is_anonymous

    def test_missing_sub(self, resolver, jwt_secret):
        token = jwt.encode({"roles": ["admin"]}, jwt_secret, algorithm="HS256")
        user = resolver.resolve_from_request(authorization_header=f"Bearer {token}")
        assert user.is_anonymous

    def test_jwt_takes_priority_over_api_key(self, resolver, jwt_secret):
        token = _token(jwt_secret, roles=["admin"])
        user = resolver.resolve_from_request(
            authorization_header=f"Bearer {token}",
            api_key_header="qa-key-123",
        )
        assert user.roles == ["admin"]

    def test_invalid_jwt_falls_through_to_api_key(self, resolver):
        user = resolver.resolve_from_request(
            authorization_header="Bearer garbage",
            api_key_header="qa-key-123",
        )
        assert user.auth_method == "api_key"


# ============================================================================
# API keys and anonymous
# ============================================================================

class TestApiKeyResolution:

    def test_known_key(self, resolver):
        user = resolver.resolve_from_request(api_key_header="leader-key-456")

        assert user.user_id == "leader-1"
        assert user.roles == ["group-leader"]
        assert user.group_ids == ["g1", "g2"]
        assert user.auth_method == "api_key"

    def test_single_values_accepted(self, resolver):
        user = resolver.resolve_from_request(api_key_header="single-role-key")
        assert user.roles == ["editor"]
        assert user.group_ids == ["g1"]

    def test_unknown_key_is_anonymous(self, resolver):
        user = resolver.resolve_from_request(api_key_header="nope-nope-nope")
        assert user.is_anonymous

    def test_anonymous_has_no_roles(self, resolver):
        user = resolver.resolve_from_request()
        assert user.user_id is None
        assert user.roles == []

    def test_owner_context(self, resolver):
        owner = resolver.resolve_from_request(api_key_header="leader-key-456").owner_context()
        assert owner.user_id == "leader-1"
        assert owner.group_ids == ("g1", "g2")
        assert owner.has_target is False

    def test_cache_cleared(self, resolver):
        resolver.resolve_from_request(api_key_header="qa-key-123")
        assert resolver._request_cache
        resolver.clear_cache()
        assert not resolver._request_cache


# ============================================================================
# Global resolver
# ============================================================================

def test_configure_resolver_replaces_global(jwt_secret):
    configured = configure_resolver(jwt_secret=jwt_secret)
    assert get_resolver() is configured
    reset_resolver()
    assert get_resolver() is not configured


# ============================================================================
# Middleware
# ============================================================================

@pytest.fixture
def app(api_key_map):
    configure_resolver(api_key_to_user_map=api_key_map)
    app = FastAPI()
    app.add_middleware(RoleResolutionMiddleware)

    @app.get("/whoami")
    def whoami(request: Request):
        ctx = get_current_user(request)
        return {
            "user_id": ctx.user_id,
            "roles": get_user_roles(request),
            "group_ids": ctx.group_ids,
            "auth_method": ctx.auth_method,
        }

    return app


def test_middleware_sets_context(app):
    client = TestClient(app)

    response = client.get("/whoami", headers={"X-API-KEY": "leader-key-456"})

    assert response.status_code == 200
    assert response.json() == {
        "user_id": "leader-1",
        "roles": ["group-leader"],
        "group_ids": ["g1", "g2"],
        "auth_method": "api_key",
    }


def test_middleware_anonymous(app):
    response = TestClient(app).get("/whoami")
    assert response.json()["auth_method"] == "anonymous"
    assert response.json()["roles"] == []
