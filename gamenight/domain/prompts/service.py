"""Prompt service - Business logic for prompts, submissions and manual reminders"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...email_service import build_reminder_email
from ...models import (
    ADMIN_ROLES,
    PROMPT_ACTIVE,
    PROMPT_CLOSED,
    PROMPT_PENDING,
    AvailabilityPrompt,
    AvailabilityResponse,
    AvailabilitySuggestion,
    GroupPromptSettings,
)
from ...timeutils import is_valid_timezone, local_to_utc, to_naive_utc, utcnow
from ..suggestions.service import SuggestionService
from ..tokens.codec import SigningContext
from ..tokens.service import TokenService
from .lifecycle import TERMINAL_STATUSES, LifecycleError, PromptAlreadyExists, transition
from .repository import PromptRepository, ResponseRepository
from .schemas import AvailabilitySubmission, ReminderResult, RespondentStatus
from .weeks import week_identifier

logger = logging.getLogger(__name__)


class SubmissionRejected(LifecycleError):
    """Prompt is not in a state that accepts availability"""


class ReminderNotAllowed(LifecycleError):
    """Manual reminder cannot be sent for this prompt or user"""


class ReminderCooldown(ReminderNotAllowed):
    def __init__(self, user_id: str, next_available: datetime):
        self.user_id = user_id
        self.next_available = next_available
        super().__init__("Cannot remind user more than once per 24 hours")


class ReminderDeliveryFailed(Exception):
    pass


def resolve_deadline_hours(settings: Optional[GroupPromptSettings]) -> int:
    if settings and settings.default_deadline_hours:
        return settings.default_deadline_hours
    return config.DEFAULT_DEADLINE_HOURS


def normalise_slots(submission: AvailabilitySubmission) -> list[dict]:
    """
    Keep slots as submitted and add their UTC instants.

    Raises:
        ValueError: unparseable boundaries or a slot that ends before it starts
    """
    if submission.is_unavailable:
        return []

    slots = []
    for slot in submission.time_slots:
        start_utc = local_to_utc(slot.start, submission.user_timezone)
        end_utc = local_to_utc(slot.end, submission.user_timezone)
        if end_utc <= start_utc:
            raise ValueError("Each time slot must end after it starts")
        slots.append(
            {
                "start": slot.start,
                "end": slot.end,
                "start_utc": start_utc.isoformat(),
                "end_utc": end_utc.isoformat(),
                "preference": slot.preference,
            }
        )
    return sorted(slots, key=lambda s: (s["start_utc"], s["end_utc"]))


class PromptService:
    """Service layer for prompt business logic"""

    def __init__(self, db: Session, signing: Optional[SigningContext] = None, mailer=None):
        self.db = db
        self.signing = signing
        self.mailer = mailer
        self.repo = PromptRepository()
        self.responses = ResponseRepository()

    def get_prompt(self, prompt_id: str) -> Optional[AvailabilityPrompt]:
        return self.repo.get_by_id(self.db, prompt_id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_prompt(
        self,
        group_id: str,
        *,
        deadline: Optional[datetime] = None,
        game_id: Optional[str] = None,
        custom_message: Optional[str] = None,
        auto_schedule_enabled: bool = False,
        blind_voting_enabled: bool = False,
        settings: Optional[GroupPromptSettings] = None,
        timezone: str = "UTC",
        now: Optional[datetime] = None,
    ) -> AvailabilityPrompt:
        """
        Create a pending prompt for the group's current ISO week.

        Raises:
            PromptAlreadyExists: a prompt for this group and week is already stored,
                including when a concurrent writer wins the unique constraint
        """
        now = to_naive_utc(now) if now else utcnow()
        week = week_identifier(now, timezone)

        existing = self.repo.get_for_week(self.db, group_id, week)
        if existing:
            raise PromptAlreadyExists(group_id, week, existing.id)

        if deadline is None:
            deadline = now + timedelta(hours=resolve_deadline_hours(settings))

        prompt_data = {
            "group_id": group_id,
            "game_id": game_id,
            "prompt_date": now,
            "deadline": to_naive_utc(deadline),
            "status": PROMPT_PENDING,
            "week_identifier": week,
            "created_by_settings_id": settings.id if settings else None,
            "custom_message": custom_message,
            "auto_schedule_enabled": auto_schedule_enabled,
            "blind_voting_enabled": blind_voting_enabled,
        }
        try:
            prompt = self.repo.create_prompt(self.db, prompt_data)
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"ℹ️ Prompt for group {group_id} week {week} created concurrently")
            raise PromptAlreadyExists(group_id, week) from e

        logger.info(f"📝 Created prompt {prompt.id} for group {group_id} ({week})")
        return prompt

    def clear_week(self, group_id: str, week: str) -> int:
        """Remove any prompt stored for the group/week so it can be recreated"""
        removed = self.repo.delete_for_week(self.db, group_id, week)
        if removed:
            logger.warning(f"🗑️ Cleared {removed} prompt(s) for group {group_id} week {week}")
        return removed

    def activate(self, prompt: AvailabilityPrompt) -> AvailabilityPrompt:
        transition(prompt, PROMPT_ACTIVE)
        self.db.commit()
        self.db.refresh(prompt)
        return prompt

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    def close_prompt(self, prompt: AvailabilityPrompt) -> list[AvailabilitySuggestion]:
        """
        Move active -> closed and freeze suggestions from the responses present now.

        Raises:
            InvalidTransition: the prompt is not active
        """
        transition(prompt, PROMPT_CLOSED)
        # aggregate_responses commits the status change together with the suggestions
        suggestions = SuggestionService(self.db).aggregate_responses(prompt)
        logger.info(f"🔒 Closed prompt {prompt.id} with {len(suggestions)} suggestions")
        return suggestions

    # ------------------------------------------------------------------
    # Respondents
    # ------------------------------------------------------------------

    def list_respondents(
        self,
        prompt: AvailabilityPrompt,
        viewer_id: str,
        viewer_role: str,
        now: Optional[datetime] = None,
    ) -> list[RespondentStatus]:
        """Member response status, with slot counts hidden under blind voting"""
        now = now or utcnow()
        responses = {r.user_id: r for r in self.responses.list_for_prompt(self.db, prompt.id)}

        viewer_response = responses.get(viewer_id)
        viewer_has_responded = bool(viewer_response and viewer_response.submitted_at)
        poll_closed = prompt.status in TERMINAL_STATUSES or prompt.deadline < now
        is_admin = viewer_role in ADMIN_ROLES

        respondents = []
        for user, _role in self.repo.get_members(self.db, prompt.group_id):
            response = responses.get(user.id)
            has_responded = bool(response and response.submitted_at)
            show_slots = (
                not prompt.blind_voting_enabled
                or poll_closed
                or viewer_has_responded
                or is_admin
                or user.id == viewer_id
            )
            slot_count = len(response.time_slots or []) if response else 0
            respondents.append(
                RespondentStatus(
                    user_id=user.id,
                    username=user.username or "Unknown",
                    has_responded=has_responded,
                    slot_count=slot_count if show_slots else None,
                    submitted_at=response.submitted_at if has_responded else None,
                    last_reminded_at=response.last_reminded_at if response else None,
                )
            )

        respondents.sort(key=lambda r: (not r.has_responded, r.username.lower()))
        return respondents

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def submit_response(
        self,
        prompt_id: str,
        user_id: str,
        token_id: Optional[str],
        submission: AvailabilitySubmission,
        now: Optional[datetime] = None,
    ) -> tuple[AvailabilityResponse, bool, bool]:
        """
        Full-replace upsert of the user's response. Returns (response, updated, late).

        Closed prompts still store the submission, flagged late; the frozen
        suggestion set is left untouched.

        Raises:
            SubmissionRejected: prompt missing, pending or converted
            ValueError: invalid timezone or slots
        """
        now = now or utcnow()
        prompt = self.repo.get_by_id(self.db, prompt_id)
        if not prompt:
            raise SubmissionRejected("This availability prompt no longer exists.")
        if prompt.status not in (PROMPT_ACTIVE, PROMPT_CLOSED):
            raise SubmissionRejected("This availability prompt is not accepting responses.")
        if not is_valid_timezone(submission.user_timezone):
            raise ValueError("Unknown timezone")
        if not submission.is_unavailable and not submission.time_slots:
            raise ValueError("Time slots are required unless marking as unavailable")

        slots = normalise_slots(submission)
        late = prompt.status == PROMPT_CLOSED
        values = {
            "time_slots": slots,
            "user_timezone": submission.user_timezone,
            "submitted_at": now,
            "magic_token_used": token_id,
            "is_late": late,
        }

        response = self.responses.get_for_user(self.db, prompt_id, user_id)
        updated = response is not None
        if response is None:
            response = AvailabilityResponse(prompt_id=prompt_id, user_id=user_id, **values)
            self.db.add(response)
            try:
                self.db.commit()
            except IntegrityError:
                # Lost the (prompt, user) race: apply the submission to the winner's row
                self.db.rollback()
                response = self.responses.get_for_user(self.db, prompt_id, user_id)
                updated = True

        if updated:
            for key, value in values.items():
                setattr(response, key, value)
            self.db.commit()
        self.db.refresh(response)

        logger.info(
            f"✅ {'Updated' if updated else 'Stored'} availability for user {user_id} "
            f"on prompt {prompt_id} ({len(slots)} slots{', late' if late else ''})"
        )
        return response, updated, late

    def get_own_response(self, prompt_id: str, user_id: str) -> Optional[AvailabilityResponse]:
        return self.responses.get_for_user(self.db, prompt_id, user_id)

    # ------------------------------------------------------------------
    # Manual reminders
    # ------------------------------------------------------------------

    async def send_manual_reminder(
        self, prompt: AvailabilityPrompt, target_user_id: str, now: Optional[datetime] = None
    ) -> ReminderResult:
        """
        Admin-triggered reminder with a per-user cooldown. Does not count toward
        the staged reminder limit.

        Raises:
            ReminderCooldown: the user was reminded within the cooldown window
            ReminderNotAllowed: prompt closed, user not a member or already submitted
            ReminderDeliveryFailed: the email transport reported failure
        """
        now = now or utcnow()
        if prompt.status not in (PROMPT_PENDING, PROMPT_ACTIVE):
            raise ReminderNotAllowed("Cannot send reminders for closed prompts")

        response = self.responses.get_for_user(self.db, prompt.id, target_user_id)
        cooldown = timedelta(hours=config.MANUAL_REMINDER_COOLDOWN_HOURS)
        if response and response.last_reminded_at and now - response.last_reminded_at < cooldown:
            raise ReminderCooldown(target_user_id, response.last_reminded_at + cooldown)
        if response and response.submitted_at:
            raise ReminderNotAllowed("User has already submitted their availability")

        if not self.repo.get_membership(self.db, prompt.group_id, target_user_id):
            raise ReminderNotAllowed("User is not a member of this group")
        user = self.repo.get_user(self.db, target_user_id)
        if not user or not user.email:
            raise ReminderNotAllowed("User has no email address")

        token = TokenService(self.db, self.signing).issue(user, prompt, now=now)
        message = build_reminder_email(
            recipient=user.email,
            user_name=user.username or "there",
            group_name=prompt.group.name,
            prompt_id=prompt.id,
            token=token,
            deadline=prompt.deadline,
            stage="manual",
        )
        try:
            result = await self.mailer.send(message)
        except asyncio.TimeoutError as e:
            logger.error(f"❌ Manual reminder to {target_user_id} timed out")
            raise ReminderDeliveryFailed("Email provider timed out") from e
        if not result.success:
            logger.error(f"❌ Manual reminder to {target_user_id} failed: {result.error}")
            raise ReminderDeliveryFailed(result.error or "Failed to send reminder email")

        if response is None:
            response = self.responses.create_placeholder(self.db, prompt.id, target_user_id)
        response.last_reminded_at = now
        self.db.commit()

        logger.info(f"📨 Manual reminder sent to {target_user_id} for prompt {prompt.id}")
        return ReminderResult(success=True, message=f"Reminder sent to {user.username or user.email}")
