"""
Role resolution logic for user authentication and authorization.

Resolves user identity, roles and group membership from multiple sources:
- JWT bearer tokens
- API key headers
- Anonymous fallback (no roles, denied everything by policy)
"""

import logging
from typing import Optional, List, Dict, Any, Tuple
from dataclasses import dataclass, field
import jwt

from .policy import OwnerContext
from .roles import normalize_roles

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ResolvedUser:
    """Resolved user identity and roles."""
    user_id: Optional[str]
    email: Optional[str]
    roles: List[str]
    auth_method: str  # 'jwt', 'api_key', 'anonymous'
    group_ids: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_anonymous(self) -> bool:
        """Check if this is an anonymous user."""
        return self.auth_method == 'anonymous'

    @property
    def is_authenticated(self) -> bool:
        """Check if user is authenticated (not anonymous)."""
        return not self.is_anonymous

    def owner_context(self) -> OwnerContext:
        """Identity half of the policy engine's owner context."""
        return OwnerContext(user_id=self.user_id, group_ids=tuple(self.group_ids))


# ============================================================================
# Role Resolver
# ============================================================================

class RoleResolver:
    """
    Resolves user identity and roles from various authentication sources.

    Supports:
    - JWT tokens (Authorization: Bearer <token>)
    - API keys (X-API-KEY header)
    - Anonymous fallback (no roles by default)
    """

    def __init__(
        self,
        jwt_secret: Optional[str] = None,
        jwt_algorithm: str = "HS256",
        api_key_to_user_map: Optional[Dict[str, Dict[str, Any]]] = None,
        default_anonymous_roles: Optional[List[str]] = None,
    ):
        """
        Initialize role resolver.

        Args:
            jwt_secret: Secret for verifying JWT bearer tokens
            jwt_algorithm: Signing algorithm accepted for bearer tokens
            api_key_to_user_map: Mapping of API keys to user info
            default_anonymous_roles: Roles to assign to anonymous users
        """
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.api_key_to_user_map = api_key_to_user_map or {}
        self.default_anonymous_roles = list(default_anonymous_roles or [])

        # Request-level cache
        self._request_cache: Dict[str, ResolvedUser] = {}

    def resolve_from_request(
        self,
        authorization_header: Optional[str] = None,
        api_key_header: Optional[str] = None,
    ) -> ResolvedUser:
        """
        Resolve user identity and roles from request headers.

        Priority order:
        1. JWT token (Authorization header)
        2. API key (X-API-KEY header)
        3. Anonymous fallback

        Args:
            authorization_header: Authorization header value (e.g., "Bearer <token>")
            api_key_header: API key header value

        Returns:
            ResolvedUser with user_id, email, roles, groups and auth method
        """
        cache_key = f"{authorization_header}:{api_key_header}"
        if cache_key in self._request_cache:
            logger.debug("Returning cached user resolution")
            return self._request_cache[cache_key]

        user = None
        if authorization_header:
            logger.debug("Attempting JWT authentication")
            user = self._resolve_from_jwt(authorization_header)

        if user is None and api_key_header:
            logger.debug("Attempting API key authentication")
            user = self._resolve_from_api_key(api_key_header)

        if user is None:
            logger.debug("Falling back to anonymous user")
            user = self._resolve_anonymous()

        self._request_cache[cache_key] = user
        return user

    def _resolve_from_jwt(self, authorization_header: str) -> Optional[ResolvedUser]:
        """
        Resolve user from a JWT bearer token.

        Returns:
            ResolvedUser if the token is valid, None otherwise
        """
        if not authorization_header.startswith("Bearer "):
            logger.warning("Invalid Authorization header format (missing 'Bearer')")
            return None

        token = authorization_header[7:].strip()
        if not token:
            logger.warning("Empty JWT token")
            return None

        if not self.jwt_secret:
            logger.warning("No JWT secret configured, skipping JWT verification")
            return None

        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.jwt_algorithm],
                options={"verify_exp": True},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("JWT token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid JWT token: {e}")
            return None

        user_id = payload.get("sub")
        email = payload.get("email")

        if not user_id:
            logger.warning("JWT token missing 'sub' claim")
            return None

        roles, group_ids = self._extract_claims(payload)

        logger.info(f"Resolved user from JWT: user_id={user_id}, roles={roles}")

        return ResolvedUser(
            user_id=str(user_id),
            email=email,
            roles=roles,
            auth_method='jwt',
            group_ids=group_ids,
            metadata={
                'token_issued_at': payload.get('iat'),
                'token_expires_at': payload.get('exp'),
            },
        )

    def _extract_claims(self, payload: Dict[str, Any]) -> Tuple[List[str], List[str]]:
        """
        Extract roles and group ids from JWT payload.

        Checks multiple possible locations:
        1. payload['roles'] / payload['group_ids'] (direct)
        2. payload['app_metadata'][...]
        3. payload['user_metadata'][...]

        Authenticated users without a roles claim get no roles.
        """
        sources = [payload, payload.get('app_metadata', {}), payload.get('user_metadata', {})]

        roles: List[str] = []
        for source in sources:
            if isinstance(source, dict) and isinstance(source.get('roles'), list):
                roles = source['roles']
                break
        else:
            logger.debug("No roles found in JWT")

        group_ids: List[str] = []
        for source in sources:
            if isinstance(source, dict) and isinstance(source.get('group_ids'), list):
                group_ids = [str(g) for g in source['group_ids']]
                break

        return normalize_roles(roles), group_ids

    def _resolve_from_api_key(self, api_key: str) -> Optional[ResolvedUser]:
        """
        Resolve user from API key.

        Returns:
            ResolvedUser if API key is valid, None otherwise
        """
        user_info = self.api_key_to_user_map.get(api_key)

        if not user_info:
            logger.warning(f"Unknown API key: {api_key[:8]}...")
            return None

        user_id = user_info.get('user_id')
        roles = user_info.get('roles', [])
        if not isinstance(roles, list):
            roles = [roles]
        group_ids = user_info.get('group_ids', [])
        if not isinstance(group_ids, list):
            group_ids = [group_ids]

        roles = normalize_roles(roles)
        logger.info(f"Resolved user from API key: user_id={user_id}, roles={roles}")

        return ResolvedUser(
            user_id=str(user_id) if user_id is not None else None,
            email=user_info.get('email'),
            roles=roles,
            auth_method='api_key',
            group_ids=[str(g) for g in group_ids],
            metadata={
                'api_key_prefix': api_key[:8] if len(api_key) >= 8 else api_key,
            },
        )

    def _resolve_anonymous(self) -> ResolvedUser:
        return ResolvedUser(
            user_id=None,
            email=None,
            roles=self.default_anonymous_roles.copy(),
            auth_method='anonymous',
        )

    def clear_cache(self):
        """Clear the request-level cache."""
        self._request_cache.clear()


# ============================================================================
# Global Resolver Instance
# ============================================================================

# Global resolver instance (configured at app startup)
_global_resolver: Optional[RoleResolver] = None


def get_resolver() -> RoleResolver:
    """
    Get the global role resolver instance.

    Returns:
        Global RoleResolver instance (an unconfigured one resolves everyone
        as anonymous)
    """
    global _global_resolver

    if _global_resolver is None:
        logger.warning("Using default role resolver (not configured)")
        _global_resolver = RoleResolver()

    return _global_resolver


def configure_resolver(
    jwt_secret: Optional[str] = None,
    jwt_algorithm: str = "HS256",
    api_key_to_user_map: Optional[Dict[str, Dict[str, Any]]] = None,
    default_anonymous_roles: Optional[List[str]] = None,
) -> RoleResolver:
    """Configure the global role resolver."""
    global _global_resolver

    _global_resolver = RoleResolver(
        jwt_secret=jwt_secret,
        jwt_algorithm=jwt_algorithm,
        api_key_to_user_map=api_key_to_user_map,
        default_anonymous_roles=default_anonymous_roles,
    )

    logger.info("Configured global role resolver")
    return _global_resolver


def reset_resolver():
    """Reset the global resolver (useful for testing)."""
    global _global_resolver
    _global_resolver = None
