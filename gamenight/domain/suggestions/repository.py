"""Suggestion repository - Database operations for computed meeting windows"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import AvailabilityResponse, AvailabilitySuggestion
from .overlap import Candidate


class SuggestionRepository:
    """Repository for suggestion data access"""

    @staticmethod
    def replace_for_prompt(
        db: Session, prompt_id: str, candidates: list[Candidate]
    ) -> list[AvailabilitySuggestion]:
        """Delete the prompt's suggestions and stage the new set (caller commits)"""
        db.query(AvailabilitySuggestion).filter(
            AvailabilitySuggestion.prompt_id == prompt_id
        ).delete(synchronize_session=False)

        rows = [
            AvailabilitySuggestion(
                prompt_id=prompt_id,
                suggested_start=c.start,
                suggested_end=c.end,
                participant_count=c.participant_count,
                participant_user_ids=c.participant_user_ids,
                preferred_count=c.preferred_count,
                meets_minimum=c.meets_minimum,
                score=c.score,
                rank=c.rank,
            )
            for c in candidates
        ]
        db.add_all(rows)
        return rows

    @staticmethod
    def list_for_prompt(
        db: Session,
        prompt_id: str,
        min_participants: Optional[int] = None,
        meets_minimum: Optional[bool] = None,
    ) -> list[AvailabilitySuggestion]:
        query = db.query(AvailabilitySuggestion).filter(AvailabilitySuggestion.prompt_id == prompt_id)
        if min_participants is not None:
            query = query.filter(AvailabilitySuggestion.participant_count >= min_participants)
        if meets_minimum is not None:
            query = query.filter(AvailabilitySuggestion.meets_minimum.is_(meets_minimum))
        return query.order_by(
            AvailabilitySuggestion.score.desc(),
            AvailabilitySuggestion.suggested_start.asc(),
            AvailabilitySuggestion.suggested_end.asc(),
        ).all()

    @staticmethod
    def get_by_id(db: Session, suggestion_id: str) -> Optional[AvailabilitySuggestion]:
        return db.query(AvailabilitySuggestion).filter(AvailabilitySuggestion.id == suggestion_id).first()

    @staticmethod
    def best_meeting_minimum(db: Session, prompt_id: str) -> Optional[AvailabilitySuggestion]:
        return (
            db.query(AvailabilitySuggestion)
            .filter(
                AvailabilitySuggestion.prompt_id == prompt_id,
                AvailabilitySuggestion.meets_minimum.is_(True),
                AvailabilitySuggestion.converted_to_event_id.is_(None),
            )
            .order_by(
                AvailabilitySuggestion.score.desc(),
                AvailabilitySuggestion.suggested_start.asc(),
                AvailabilitySuggestion.suggested_end.asc(),
            )
            .first()
        )

    @staticmethod
    def submitted_responses(db: Session, prompt_id: str) -> list[AvailabilityResponse]:
        return (
            db.query(AvailabilityResponse)
            .filter(
                AvailabilityResponse.prompt_id == prompt_id,
                AvailabilityResponse.submitted_at.isnot(None),
            )
            .order_by(AvailabilityResponse.user_id)
            .all()
        )
