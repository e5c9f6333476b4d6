"""Token router - magic link validation, revocation and analytics endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_group_admin, require_group_member
from ...database import get_db
from ...models import User
from ...services import AppServices, get_services
from ...timeutils import from_epoch
from .analytics import get_token_metrics
from .repository import MagicTokenRepository
from .schemas import (
    RevokeTokenResponse,
    TokenErrorResponse,
    TokenUser,
    ValidateTokenRequest,
    ValidateTokenResponse,
)
from .service import TokenService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Magic Tokens"])


def get_token_service(
    db: Session = Depends(get_db), services: AppServices = Depends(get_services)
) -> TokenService:
    """Dependency injection for TokenService"""
    return TokenService(db, services.signing)


def token_error_response() -> JSONResponse:
    """Every token failure looks the same to the client"""
    return JSONResponse(status_code=400, content=TokenErrorResponse().model_dump())


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/magic-auth/validate", response_model=ValidateTokenResponse)
async def validate_magic_token(
    request: Request,
    body: Optional[ValidateTokenRequest] = None,
    token: Optional[str] = Query(None),
    formLoadedAt: Optional[str] = Query(None),
    service: TokenService = Depends(get_token_service),
):
    """Validate a magic link token presented in the body or query string"""
    body = body or ValidateTokenRequest()
    result = service.validate(
        body.token or token,
        body.formLoadedAt or formLoadedAt,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    if not result.valid:
        return token_error_response()

    return ValidateTokenResponse(
        valid=True,
        user=TokenUser(name=result.claims.get("name")),
        prompt_id=result.prompt_id,
        expiresAt=from_epoch(result.claims["exp"]),
        graceUsed=result.grace_used,
    )


@router.get("/tokens/metrics")
async def token_metrics(
    groupId: Optional[str] = Query(None),
    days: int = Query(7, ge=1, le=365),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Token generation and validation analytics"""
    if groupId:
        require_group_member(db, groupId, current_user)
    return get_token_metrics(db, group_id=groupId, days=days)


@router.post("/tokens/{token_id}/revoke", response_model=RevokeTokenResponse)
async def revoke_token(
    token_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service),
):
    """Revoke a single magic token (group admins only)"""
    record = MagicTokenRepository.get_by_token_id(db, token_id)
    if not record:
        raise HTTPException(status_code=404, detail="Token not found")

    require_group_admin(db, record.prompt.group_id, current_user)
    service.revoke(token_id)
    return RevokeTokenResponse(token_id=token_id, status=record.status)
