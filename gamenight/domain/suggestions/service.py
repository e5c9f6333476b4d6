"""Suggestion service - materialises overlap results and converts them into events"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models import (
    PROMPT_CONVERTED,
    AvailabilityPrompt,
    AvailabilityResponse,
    AvailabilitySuggestion,
    Event,
    GroupPromptSettings,
)
from ...timeutils import local_to_utc, parse_iso_timestamp
from ..prompts.lifecycle import LifecycleError, transition
from .overlap import ResponseSlots, ScoringPolicy, Slot, compute_suggestions
from .repository import SuggestionRepository

logger = logging.getLogger(__name__)


class SuggestionAlreadyConverted(LifecycleError):
    def __init__(self, suggestion_id: str, event_id: str):
        self.suggestion_id = suggestion_id
        self.event_id = event_id
        super().__init__(f"Suggestion {suggestion_id} already converted to event {event_id}")


def resolve_min_participants(db: Session, prompt: AvailabilityPrompt) -> int:
    """Group setting, then the game's minimum players, then the system default"""
    settings = (
        db.query(GroupPromptSettings).filter(GroupPromptSettings.group_id == prompt.group_id).first()
    )
    if settings and settings.min_participants:
        return settings.min_participants
    if prompt.game and prompt.game.min_players:
        return prompt.game.min_players
    return config.DEFAULT_MIN_PARTICIPANTS


def resolve_min_duration(prompt: AvailabilityPrompt) -> timedelta:
    if prompt.game and prompt.game.playing_time_minutes:
        return timedelta(minutes=prompt.game.playing_time_minutes)
    return timedelta(minutes=config.DEFAULT_SESSION_MINUTES)


def _slot_bound(slot: dict, key: str, tz_name: str):
    """Prefer the stored UTC instant; fall back to converting the submitted civil time"""
    stored = parse_iso_timestamp(slot.get(f"{key}_utc"))
    if stored is not None:
        return stored
    raw = slot.get(key)
    if not raw:
        return None
    try:
        return local_to_utc(raw, tz_name)
    except (TypeError, ValueError):
        return None


def response_to_slots(response: AvailabilityResponse) -> ResponseSlots:
    slots = []
    for raw in response.time_slots or []:
        start = _slot_bound(raw, "start", response.user_timezone)
        end = _slot_bound(raw, "end", response.user_timezone)
        if start is None or end is None:
            logger.warning(f"⚠️ Skipping unreadable slot in response {response.id}")
            continue
        slots.append(Slot(start=start, end=end, preferred=raw.get("preference") == "preferred"))
    return ResponseSlots(user_id=response.user_id, slots=slots)


class SuggestionService:
    """Service layer for suggestion business logic"""

    def __init__(self, db: Session, policy: Optional[ScoringPolicy] = None):
        self.db = db
        self.repo = SuggestionRepository()
        self.policy = policy or ScoringPolicy.from_config()

    def aggregate_responses(self, prompt: AvailabilityPrompt) -> list[AvailabilitySuggestion]:
        """
        Recompute the prompt's suggestions from its submitted responses and replace
        the stored set. Commits, together with any pending change on the prompt.
        """
        responses = self.repo.submitted_responses(self.db, prompt.id)
        candidates = compute_suggestions(
            [response_to_slots(r) for r in responses],
            min_participants=resolve_min_participants(self.db, prompt),
            min_duration=resolve_min_duration(prompt),
            policy=self.policy,
        )
        rows = self.repo.replace_for_prompt(self.db, prompt.id, candidates)
        self.db.commit()

        logger.info(
            f"📊 Aggregated {len(responses)} responses into {len(rows)} suggestions for prompt {prompt.id}"
        )
        return rows

    def list_suggestions(
        self,
        prompt_id: str,
        min_participants: Optional[int] = None,
        meets_minimum: Optional[bool] = None,
    ) -> list[AvailabilitySuggestion]:
        return self.repo.list_for_prompt(self.db, prompt_id, min_participants, meets_minimum)

    def get_suggestion(self, suggestion_id: str) -> Optional[AvailabilitySuggestion]:
        return self.repo.get_by_id(self.db, suggestion_id)

    def best_suggestion(self, prompt_id: str) -> Optional[AvailabilitySuggestion]:
        return self.repo.best_meeting_minimum(self.db, prompt_id)

    def convert_suggestion(
        self,
        suggestion: AvailabilitySuggestion,
        created_by_user_id: Optional[str] = None,
        auto_scheduled: bool = False,
    ) -> Event:
        """
        Turn a suggestion into an Event and move its prompt closed -> converted.

        Raises:
            SuggestionAlreadyConverted: the suggestion already points at an event
            InvalidTransition: the prompt is not closed
        """
        if suggestion.converted_to_event_id:
            raise SuggestionAlreadyConverted(suggestion.id, suggestion.converted_to_event_id)

        prompt = suggestion.prompt
        transition(prompt, PROMPT_CONVERTED)

        event = Event(
            group_id=prompt.group_id,
            game_id=prompt.game_id,
            start_time=suggestion.suggested_start,
            end_time=suggestion.suggested_end,
            created_by_user_id=created_by_user_id,
            is_auto_scheduled=auto_scheduled,
        )
        self.db.add(event)
        self.db.flush()
        suggestion.converted_to_event_id = event.id
        self.db.commit()
        self.db.refresh(event)

        logger.info(
            f"✅ Converted suggestion {suggestion.id} to event {event.id} "
            f"({'auto' if auto_scheduled else 'manual'})"
        )
        return event
