import logging
import time
from typing import Optional

import httpx
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import config
from .database import get_db
from .models import ADMIN_ROLES, GroupMembership, User

logger = logging.getLogger(__name__)

security = HTTPBearer()

# Cache for the identity provider's signing keys
_cached_jwks = None
_cached_at = 0.0
JWKS_CACHE_SECONDS = 3600


async def get_identity_provider_keys(force_refresh: bool = False) -> Optional[dict]:
    """Fetch the identity provider's JWKS (cached, time-bounded)"""
    global _cached_jwks, _cached_at
    if _cached_jwks and not force_refresh and time.monotonic() - _cached_at < JWKS_CACHE_SECONDS:
        logger.debug("✅ Using cached identity provider keys")
        return _cached_jwks

    if not config.IDP_JWKS_URL:
        logger.error("❌ IDP_JWKS_URL not configured")
        return None

    try:
        async with httpx.AsyncClient(timeout=config.IDP_JWKS_TIMEOUT) as client:
            response = await client.get(config.IDP_JWKS_URL)
        if response.status_code == 200:
            _cached_jwks = response.json()
            _cached_at = time.monotonic()
            logger.info(f"✅ Fetched {len(_cached_jwks.get('keys', []))} identity provider keys")
            return _cached_jwks
        logger.error(f"❌ Failed to fetch identity provider keys: HTTP {response.status_code}")
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"❌ Error fetching identity provider keys: {str(e)}")
    # Stale keys are served when a refresh fails
    return _cached_jwks


async def verify_identity_token(token: str) -> dict:
    """Verify a dashboard bearer token against the identity provider's JWKS"""
    jwks = await get_identity_provider_keys()
    if not jwks:
        raise HTTPException(status_code=503, detail="Authentication service unavailable")

    try:
        return jwt.decode(
            token,
            jwks,
            algorithms=["RS256"],
            audience=config.IDP_AUDIENCE,
            issuer=config.IDP_ISSUER,
            options={"verify_aud": bool(config.IDP_AUDIENCE), "verify_iss": bool(config.IDP_ISSUER)},
        )
    except JWTError as e:
        logger.warning(f"⚠️ Bearer token rejected: {type(e).__name__}")
        raise HTTPException(status_code=401, detail="Invalid authentication credentials") from e


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    claims = await verify_identity_token(credentials.credentials)
    subject = claims.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    user = db.query(User).filter(User.id == subject).first()
    if not user:
        logger.warning(f"⚠️ Authenticated subject has no user row: {subject}")
        raise HTTPException(status_code=401, detail="User not found")
    return user


# ============================================================================
# Group role checks
# ============================================================================


def get_group_role(db: Session, group_id: str, user_id: str) -> Optional[str]:
    membership = (
        db.query(GroupMembership)
        .filter(GroupMembership.group_id == group_id, GroupMembership.user_id == user_id)
        .first()
    )
    return membership.role if membership else None


def require_group_member(db: Session, group_id: str, user: User) -> str:
    """Returns the caller's role, or raises 403"""
    role = get_group_role(db, group_id, user.id)
    if not role:
        raise HTTPException(status_code=403, detail="Not a member of this group")
    return role


def require_group_admin(db: Session, group_id: str, user: User) -> str:
    role = require_group_member(db, group_id, user)
    if role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Group admin access required")
    return role
