import logging

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, joinedload

from .database import get_db
from .models import User
from .security_utils import verify_jwt_token

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the Bearer JWT to an active user"""

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received: length {len(token)}")
        raise HTTPException(status_code=401, detail="Invalid token format. Expected a valid JWT token.")

    claims = verify_jwt_token(token)
    if not claims or not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = (
        db.query(User)
        .options(joinedload(User.user_roles))
        .filter(User.id == claims["sub"], User.deleted_at.is_(None))
        .first()
    )
    if not user:
        logger.warning(f"⚠️ Token subject {claims['sub']} no longer exists")
        raise HTTPException(status_code=401, detail="User not found")

    # Routers read impersonation and other session claims from here
    request.state.token_claims = claims
    logger.debug(f"✅ User authenticated: {user.id}")
    return user


def require_roles(*roles: str):
    """
    Dependency factory restricting a route to users holding one of the roles.
    Checks the UserRoles row as well as the legacy role column.
    """

    async def role_checker(user: User = Depends(get_current_user)) -> User:
        held = set(user.role_list()) | {user.role}
        if "super_admin" in held:
            return user
        if not held.intersection(roles):
            logger.warning(f"⚠️ User {user.id} denied: requires one of {roles}")
            raise HTTPException(
                status_code=403, detail=f"Access denied. Requires role: {', '.join(roles)}"
            )
        return user

    return role_checker


def require_clinic(user: User) -> str:
    if not user.clinic_id:
        raise HTTPException(status_code=400, detail="No clinic associated with user")
    return user.clinic_id


def is_impersonating(request: Request) -> bool:
    claims = getattr(request.state, "token_claims", None) or {}
    return bool(claims.get("impersonating"))
