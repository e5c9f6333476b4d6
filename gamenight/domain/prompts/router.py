"""Prompt router - FastAPI endpoints for prompts, respondents, reminders and submissions"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_group_admin, require_group_member
from ...database import get_db
from ...models import User
from ...services import AppServices, get_services
from ..scheduling.dispatcher import PromptDispatcher
from ..scheduling.retry import PermanentJobError
from ..tokens.router import client_ip, get_token_service, token_error_response
from ..tokens.service import TokenService
from .lifecycle import InvalidTransition
from .schemas import (
    AvailabilitySubmission,
    CloseResult,
    ExistingResponse,
    PromptCreate,
    PromptCreateResult,
    PromptResponse,
    ReminderResult,
    RespondentStatus,
    StoredResponse,
    SubmissionResult,
)
from .service import (
    PromptService,
    ReminderCooldown,
    ReminderDeliveryFailed,
    ReminderNotAllowed,
    SubmissionRejected,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Availability Prompts"])


def get_prompt_service(
    db: Session = Depends(get_db), services: AppServices = Depends(get_services)
) -> PromptService:
    """Dependency injection for PromptService"""
    return PromptService(db, services.signing, services.mailer)


def load_prompt(service: PromptService, prompt_id: str):
    prompt = service.get_prompt(prompt_id)
    if not prompt:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return prompt


# ============================================================================
# ADMIN OPERATIONS
# ============================================================================


@router.post("/groups/{group_id}/prompts", response_model=PromptCreateResult, status_code=201)
async def create_prompt(
    group_id: str,
    data: PromptCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    """Create this week's prompt now and send the links (group admins only)"""
    require_group_admin(db, group_id, current_user)
    try:
        result = await PromptDispatcher(db, services).create_and_send(
            group_id,
            timezone=data.timezone,
            deadline=data.deadline,
            game_id=data.game_id,
            custom_message=data.custom_message,
            auto_schedule_enabled=data.auto_schedule_enabled,
            blind_voting_enabled=data.blind_voting_enabled,
        )
    except PermanentJobError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    if not result.created:
        raise HTTPException(
            status_code=409,
            detail=f"A prompt already exists for this group this week ({result.skipped_reason})",
        )

    return PromptCreateResult(
        prompt=PromptResponse.model_validate(result.prompt),
        created=True,
        tokens_issued=result.tokens_issued,
        emails_sent=result.emails_sent,
        message=f"Prompt created and sent to {result.emails_sent} members",
    )


@router.get("/prompts/{prompt_id}/respondents", response_model=list[RespondentStatus])
async def get_respondents(
    prompt_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: PromptService = Depends(get_prompt_service),
):
    """Member response status for a prompt (blind voting hides slot counts)"""
    prompt = load_prompt(service, prompt_id)
    role = require_group_member(db, prompt.group_id, current_user)
    return service.list_respondents(prompt, current_user.id, role)


@router.post("/prompts/{prompt_id}/remind/{user_id}", response_model=ReminderResult)
async def remind_user(
    prompt_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: PromptService = Depends(get_prompt_service),
):
    """Send a manual reminder to one member (group admins only, 24h cooldown)"""
    prompt = load_prompt(service, prompt_id)
    require_group_admin(db, prompt.group_id, current_user)

    try:
        return await service.send_manual_reminder(prompt, user_id)
    except ReminderCooldown as e:
        return JSONResponse(
            status_code=429,
            content={
                "error": str(e),
                "next_reminder_available": e.next_available.isoformat() + "Z",
            },
        )
    except ReminderNotAllowed as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ReminderDeliveryFailed as e:
        raise HTTPException(status_code=502, detail="Failed to send reminder email") from e


@router.post("/prompts/{prompt_id}/close", response_model=CloseResult)
async def close_prompt(
    prompt_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: PromptService = Depends(get_prompt_service),
):
    """Close an active prompt now and freeze its suggestions (group admins only)"""
    prompt = load_prompt(service, prompt_id)
    require_group_admin(db, prompt.group_id, current_user)

    try:
        suggestions = service.close_prompt(prompt)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=f"Prompt is {e.current} and cannot be closed") from e
    return CloseResult(prompt_id=prompt.id, status=prompt.status, suggestionCount=len(suggestions))


# ============================================================================
# TOKEN-AUTHENTICATED SUBMISSION
# ============================================================================


@router.post("/availability-responses", response_model=SubmissionResult)
async def submit_availability(
    request: Request,
    submission: AvailabilitySubmission,
    tokens: TokenService = Depends(get_token_service),
    service: PromptService = Depends(get_prompt_service),
):
    """Submit or replace the caller's availability for the token's prompt"""
    result = tokens.validate(
        submission.token,
        submission.formLoadedAt,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    if not result.valid:
        return token_error_response()

    try:
        response, updated, late = service.submit_response(
            result.prompt_id, result.user_id, result.token_id, submission
        )
    except SubmissionRejected as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return SubmissionResult(response_id=response.id, updated=updated, late=late)


@router.get("/availability-responses/{prompt_id}", response_model=Optional[ExistingResponse])
async def get_existing_response(
    prompt_id: str,
    request: Request,
    token: Optional[str] = Query(None),
    tokens: TokenService = Depends(get_token_service),
    service: PromptService = Depends(get_prompt_service),
):
    """Caller's stored response for pre-filling the form (null when none)"""
    result = tokens.validate(
        token, ip_address=client_ip(request), user_agent=request.headers.get("user-agent")
    )
    if not result.valid or result.prompt_id != prompt_id:
        return token_error_response()

    response = service.get_own_response(prompt_id, result.user_id)
    if not response:
        return None
    return ExistingResponse(response=StoredResponse.model_validate(response))
