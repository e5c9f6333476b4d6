"""Suggestion router - heatmap suggestions, refresh and conversion to events"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_group_admin, require_group_member
from ...database import get_db
from ...models import PROMPT_ACTIVE, User
from ..prompts.lifecycle import InvalidTransition
from ..prompts.repository import PromptRepository
from .schemas import (
    ConvertSuggestionResponse,
    RefreshSuggestionsResponse,
    SuggestionListResponse,
    SuggestionResponse,
)
from .service import SuggestionAlreadyConverted, SuggestionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Suggestions"])


def get_suggestion_service(db: Session = Depends(get_db)) -> SuggestionService:
    """Dependency injection for SuggestionService"""
    return SuggestionService(db)


def load_prompt(db: Session, prompt_id: str):
    prompt = PromptRepository.get_by_id(db, prompt_id)
    if not prompt:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return prompt


@router.get("/prompts/{prompt_id}/suggestions", response_model=SuggestionListResponse)
async def get_suggestions(
    prompt_id: str,
    min_participants: Optional[int] = Query(None, ge=0),
    meets_minimum: Optional[bool] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: SuggestionService = Depends(get_suggestion_service),
):
    """Ranked suggestions for a prompt (group members)"""
    prompt = load_prompt(db, prompt_id)
    require_group_member(db, prompt.group_id, current_user)

    suggestions = service.list_suggestions(prompt_id, min_participants, meets_minimum)
    return SuggestionListResponse(
        prompt_id=prompt_id,
        status=prompt.status,
        suggestions=[SuggestionResponse.model_validate(s) for s in suggestions],
    )


@router.post("/prompts/{prompt_id}/suggestions/refresh", response_model=RefreshSuggestionsResponse)
async def refresh_suggestions(
    prompt_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: SuggestionService = Depends(get_suggestion_service),
):
    """Recompute suggestions from current responses (group admins, active prompts only)"""
    prompt = load_prompt(db, prompt_id)
    require_group_admin(db, prompt.group_id, current_user)

    if prompt.status != PROMPT_ACTIVE:
        raise HTTPException(
            status_code=409, detail=f"Suggestions are frozen once a prompt is {prompt.status}"
        )

    rows = service.aggregate_responses(prompt)
    return RefreshSuggestionsResponse(
        prompt_id=prompt_id,
        suggestionCount=len(rows),
        message=f"Computed {len(rows)} suggestions",
    )


@router.post(
    "/suggestions/{suggestion_id}/convert", response_model=ConvertSuggestionResponse, status_code=201
)
async def convert_suggestion(
    suggestion_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: SuggestionService = Depends(get_suggestion_service),
):
    """Turn a suggestion into a scheduled event (group admins, closed prompts only)"""
    suggestion = service.get_suggestion(suggestion_id)
    if not suggestion:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    require_group_admin(db, suggestion.prompt.group_id, current_user)

    try:
        event = service.convert_suggestion(suggestion, created_by_user_id=current_user.id)
    except SuggestionAlreadyConverted as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except InvalidTransition as e:
        raise HTTPException(
            status_code=409, detail=f"Only closed prompts can be converted (prompt is {e.current})"
        ) from e

    return ConvertSuggestionResponse(
        suggestion_id=suggestion.id,
        event_id=event.id,
        prompt_id=suggestion.prompt_id,
        start_time=event.start_time,
        end_time=event.end_time,
    )
