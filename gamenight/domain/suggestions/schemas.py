"""Suggestion schemas - Pydantic models for suggestion endpoints"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SuggestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    prompt_id: str
    suggested_start: datetime
    suggested_end: datetime
    participant_count: int
    participant_user_ids: list[str]
    preferred_count: int
    meets_minimum: bool
    score: float
    rank: int
    converted_to_event_id: Optional[str] = None


class SuggestionListResponse(BaseModel):
    prompt_id: str
    status: str
    suggestions: list[SuggestionResponse]


class RefreshSuggestionsResponse(BaseModel):
    prompt_id: str
    suggestionCount: int
    message: str


class ConvertSuggestionResponse(BaseModel):
    suggestion_id: str
    event_id: str
    prompt_id: str
    start_time: datetime
    end_time: datetime
