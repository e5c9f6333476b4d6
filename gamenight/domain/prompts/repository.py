"""Prompt repository - Database operations for prompts, members and responses"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    ADMIN_ROLES,
    PROMPT_ACTIVE,
    AvailabilityPrompt,
    AvailabilityResponse,
    Group,
    GroupMembership,
    GroupPromptSettings,
    User,
)
from .lifecycle import OPEN_STATUSES


class PromptRepository:
    """Repository for prompt data access"""

    @staticmethod
    def get_by_id(db: Session, prompt_id: str) -> Optional[AvailabilityPrompt]:
        return db.query(AvailabilityPrompt).filter(AvailabilityPrompt.id == prompt_id).first()

    @staticmethod
    def get_for_week(db: Session, group_id: str, week: str) -> Optional[AvailabilityPrompt]:
        return (
            db.query(AvailabilityPrompt)
            .filter(AvailabilityPrompt.group_id == group_id, AvailabilityPrompt.week_identifier == week)
            .first()
        )

    @staticmethod
    def get_open_for_week(db: Session, group_id: str, week: str) -> Optional[AvailabilityPrompt]:
        return (
            db.query(AvailabilityPrompt)
            .filter(
                AvailabilityPrompt.group_id == group_id,
                AvailabilityPrompt.week_identifier == week,
                AvailabilityPrompt.status.in_(OPEN_STATUSES),
            )
            .first()
        )

    @staticmethod
    def create_prompt(db: Session, prompt_data: dict) -> AvailabilityPrompt:
        """Insert a prompt; an IntegrityError on (group, week) propagates to the caller"""
        prompt = AvailabilityPrompt(**prompt_data)
        db.add(prompt)
        db.commit()
        db.refresh(prompt)
        return prompt

    @staticmethod
    def delete_for_week(db: Session, group_id: str, week: str) -> int:
        prompts = (
            db.query(AvailabilityPrompt)
            .filter(AvailabilityPrompt.group_id == group_id, AvailabilityPrompt.week_identifier == week)
            .all()
        )
        for prompt in prompts:
            db.delete(prompt)
        db.commit()
        return len(prompts)

    @staticmethod
    def count_active(db: Session) -> int:
        return db.query(AvailabilityPrompt).filter(AvailabilityPrompt.status == PROMPT_ACTIVE).count()

    # ------------------------------------------------------------------
    # Groups and members
    # ------------------------------------------------------------------

    @staticmethod
    def get_group(db: Session, group_id: str) -> Optional[Group]:
        return db.query(Group).filter(Group.id == group_id).first()

    @staticmethod
    def get_settings(db: Session, settings_id: str) -> Optional[GroupPromptSettings]:
        return db.query(GroupPromptSettings).filter(GroupPromptSettings.id == settings_id).first()

    @staticmethod
    def get_settings_for_group(db: Session, group_id: str) -> Optional[GroupPromptSettings]:
        return db.query(GroupPromptSettings).filter(GroupPromptSettings.group_id == group_id).first()

    @staticmethod
    def get_members(db: Session, group_id: str) -> list[tuple[User, str]]:
        """(user, role) for every member of the group, ordered by user id"""
        rows = (
            db.query(User, GroupMembership.role)
            .join(GroupMembership, GroupMembership.user_id == User.id)
            .filter(GroupMembership.group_id == group_id)
            .order_by(User.id)
            .all()
        )
        return [(user, role) for user, role in rows]

    @staticmethod
    def get_admins(db: Session, group_id: str) -> list[User]:
        return (
            db.query(User)
            .join(GroupMembership, GroupMembership.user_id == User.id)
            .filter(GroupMembership.group_id == group_id, GroupMembership.role.in_(ADMIN_ROLES))
            .order_by(User.id)
            .all()
        )

    @staticmethod
    def get_membership(db: Session, group_id: str, user_id: str) -> Optional[GroupMembership]:
        return (
            db.query(GroupMembership)
            .filter(GroupMembership.group_id == group_id, GroupMembership.user_id == user_id)
            .first()
        )

    @staticmethod
    def get_user(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()


class ResponseRepository:
    """Repository for availability responses"""

    @staticmethod
    def get_for_user(db: Session, prompt_id: str, user_id: str) -> Optional[AvailabilityResponse]:
        return (
            db.query(AvailabilityResponse)
            .filter(AvailabilityResponse.prompt_id == prompt_id, AvailabilityResponse.user_id == user_id)
            .first()
        )

    @staticmethod
    def list_for_prompt(db: Session, prompt_id: str) -> list[AvailabilityResponse]:
        return db.query(AvailabilityResponse).filter(AvailabilityResponse.prompt_id == prompt_id).all()

    @staticmethod
    def create_placeholder(db: Session, prompt_id: str, user_id: str) -> AvailabilityResponse:
        """Tracking row for reminders sent before the user has submitted (caller commits)"""
        response = AvailabilityResponse(
            prompt_id=prompt_id,
            user_id=user_id,
            time_slots=[],
            submitted_at=None,
            reminder_count=0,
        )
        db.add(response)
        db.flush()
        return response

    @staticmethod
    def count_submitted_since(db: Session, since: datetime) -> int:
        return (
            db.query(AvailabilityResponse)
            .filter(
                AvailabilityResponse.submitted_at.isnot(None),
                AvailabilityResponse.submitted_at >= since,
            )
            .count()
        )
