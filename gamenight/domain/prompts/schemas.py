"""Prompt schemas - Pydantic models for prompts, responses and reminders"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PREFERRED = "preferred"
IF_NEED_BE = "if-need-be"


class PromptCreate(BaseModel):
    """Manual prompt creation by a group admin"""

    deadline: Optional[datetime] = None
    game_id: Optional[str] = None
    custom_message: Optional[str] = Field(default=None, max_length=2000)
    auto_schedule_enabled: bool = False
    blind_voting_enabled: bool = False
    timezone: str = "UTC"


class PromptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    group_id: str
    game_id: Optional[str] = None
    prompt_date: datetime
    deadline: datetime
    status: str
    week_identifier: str
    custom_message: Optional[str] = None
    auto_schedule_enabled: bool
    blind_voting_enabled: bool


class PromptCreateResult(BaseModel):
    prompt: Optional[PromptResponse] = None
    created: bool
    tokens_issued: int = 0
    emails_sent: int = 0
    message: str


class RespondentStatus(BaseModel):
    user_id: str
    username: str
    has_responded: bool
    slot_count: Optional[int] = None
    submitted_at: Optional[datetime] = None
    last_reminded_at: Optional[datetime] = None


class ReminderResult(BaseModel):
    success: bool
    message: str
    next_reminder_available: Optional[datetime] = None


class TimeSlotIn(BaseModel):
    start: str
    end: str
    preference: Literal["preferred", "if-need-be"] = IF_NEED_BE

    @field_validator("start", "end")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Each time slot must have start and end times")
        return v.strip()


class AvailabilitySubmission(BaseModel):
    token: str
    time_slots: list[TimeSlotIn] = []
    user_timezone: str
    is_unavailable: bool = False
    formLoadedAt: Optional[str] = None


class SubmissionResult(BaseModel):
    success: bool = True
    response_id: str
    updated: bool
    late: bool = False


class StoredResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    time_slots: list[dict]
    user_timezone: str
    submitted_at: Optional[datetime] = None


class ExistingResponse(BaseModel):
    response: StoredResponse


class CloseResult(BaseModel):
    prompt_id: str
    status: str
    suggestionCount: int
