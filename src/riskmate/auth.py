"""
Authentication: Supabase JWT verification, organization context and the
shared-secret guard for operator endpoints
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import config
from .db.engine import get_db
from .db.models.organization import User
from .exceptions import ApiError

logger = logging.getLogger(__name__)

# Supabase signs access tokens with the project JWT secret
ALGORITHM = "HS256"
AUDIENCE = "authenticated"

http_bearer = HTTPBearer(auto_error=False)


@dataclass
class OrganizationContext:
    """Authenticated user and the organization they act for"""
    user_id: str
    organization_id: str
    role: str
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.user_id


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a Supabase access token, None when invalid"""
    if not config.SUPABASE_JWT_SECRET:
        logger.error("Token verification failed: SUPABASE_JWT_SECRET is not configured")
        return None
    try:
        return jwt.decode(token, config.SUPABASE_JWT_SECRET, algorithms=[ALGORITHM], audience=AUDIENCE)
    except jwt.ExpiredSignatureError:
        logger.warning("Token verification failed: Token has expired")
        return None
    except jwt.JWTClaimsError as e:
        logger.warning(f"Token verification failed: Invalid token claims - {str(e)}")
        return None
    except JWTError as e:
        logger.warning(f"Token verification failed: {type(e).__name__} - {str(e)}")
        return None


def get_current_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> OrganizationContext:
    """
    Resolve the caller's organization context from the bearer token

    Raises:
        ApiError: 401 for a missing or invalid token, 403 when the user has no
            RiskMate account
    """
    if credentials is None or not credentials.credentials:
        raise ApiError("UNAUTHORIZED", "Authentication token is missing")

    payload = verify_token(credentials.credentials.strip())
    if payload is None:
        raise ApiError("UNAUTHORIZED", "Invalid or expired authentication token")

    user_id = payload.get("sub")
    if not user_id:
        raise ApiError("UNAUTHORIZED", "Invalid token format: missing user identifier")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.warning(f"Authenticated user {user_id} has no account row")
        raise ApiError("FORBIDDEN", "User is not a member of any organization")

    return OrganizationContext(
        user_id=user.id,
        organization_id=user.organization_id,
        role=user.role,
        email=user.email,
        name=user.full_name,
    )


def require_roles(*roles: str) -> Callable[..., OrganizationContext]:
    """Dependency factory that only admits the given membership roles"""

    def dependency(context: OrganizationContext = Depends(get_current_context)) -> OrganizationContext:
        if context.role not in roles:
            logger.info(f"Role {context.role} denied (requires one of {', '.join(roles)})")
            raise ApiError(
                "FORBIDDEN",
                "You do not have permission to perform this action",
                details={"required_roles": list(roles), "role": context.role},
            )
        return context

    return dependency


def require_reconcile_secret(request: Request) -> None:
    """
    Guard for operator endpoints: Authorization: Bearer <RECONCILE_SECRET>

    Raises:
        ApiError: 503 when no secret is configured, 401 for a missing or wrong secret
    """
    secret = config.RECONCILE_SECRET
    if not secret:
        raise ApiError("RECONCILIATION_NOT_CONFIGURED", "Reconciliation secret is not configured")

    header = request.headers.get("authorization") or ""
    scheme, _, provided = header.partition(" ")
    if scheme.lower() != "bearer" or not provided.strip():
        raise ApiError("UNAUTHORIZED", "Unauthorized - Missing bearer token")

    if not hmac.compare_digest(provided.strip().encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Rejected operator request with invalid secret")
        raise ApiError("UNAUTHORIZED", "Unauthorized - Invalid secret")
