"""
Prompt dispatcher
Creates a group's weekly prompt, mints a link per member, emails them and activates
the prompt. Shared by the cadence job and the manual HTTP paths.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from ...email_service import build_prompt_email
from ...models import PROMPT_ACTIVE, PROMPT_PENDING, AvailabilityPrompt, GroupPromptSettings
from ...timeutils import to_naive_utc, utcnow
from ..prompts.lifecycle import PromptAlreadyExists
from ..prompts.repository import PromptRepository
from ..prompts.service import PromptService
from ..prompts.weeks import week_identifier
from ..tokens.service import TokenService
from .retry import PermanentJobError

logger = logging.getLogger(__name__)


class DispatchResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    prompt: Optional[AvailabilityPrompt] = None
    created: bool = False
    skipped_reason: Optional[str] = None
    tokens_issued: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    reminder_stages: list[str] = []

    def summary(self) -> dict:
        return {
            "status": "created" if self.created else "skipped",
            "prompt_id": self.prompt.id if self.prompt else None,
            "reason": self.skipped_reason,
            "tokens_issued": self.tokens_issued,
            "emails_sent": self.emails_sent,
            "emails_failed": self.emails_failed,
            "reminder_stages": self.reminder_stages,
        }


def _template_flag(settings: Optional[GroupPromptSettings], key: str, default=None):
    if settings and isinstance(settings.template_config, dict):
        return settings.template_config.get(key, default)
    return default


class PromptDispatcher:
    def __init__(self, db: Session, services):
        self.db = db
        self.services = services
        self.repo = PromptRepository()
        self.prompts = PromptService(db, services.signing, services.mailer)
        self.tokens = TokenService(db, services.signing)

    def _load_settings(self, group_id: str, settings_id: Optional[str]) -> Optional[GroupPromptSettings]:
        if not settings_id:
            return self.repo.get_settings_for_group(self.db, group_id)
        settings = self.repo.get_settings(self.db, settings_id)
        if not settings or settings.group_id != group_id:
            raise PermanentJobError(f"GroupPromptSettings {settings_id} not found for group {group_id}")
        return settings

    async def create_and_send(
        self,
        group_id: str,
        settings_id: Optional[str] = None,
        timezone: Optional[str] = None,
        *,
        deadline: Optional[datetime] = None,
        game_id: Optional[str] = None,
        custom_message: Optional[str] = None,
        auto_schedule_enabled: Optional[bool] = None,
        blind_voting_enabled: Optional[bool] = None,
        clear_existing: bool = False,
        require_active_settings: bool = False,
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """
        Run the full prompt-creation path for one group.

        Idempotent per (group, ISO week): an existing active or closed prompt makes
        this a no-op; an existing pending prompt (left by an interrupted attempt) is
        resumed rather than duplicated.

        Raises:
            PermanentJobError: the group or the referenced settings do not exist
        """
        now = to_naive_utc(now) if now else utcnow()
        group = self.repo.get_group(self.db, group_id)
        if not group:
            raise PermanentJobError(f"Group {group_id} not found")

        settings = self._load_settings(group_id, settings_id)
        if require_active_settings and settings is not None and not settings.is_active:
            logger.info(f"⏭️ Prompt settings {settings.id} inactive, not creating a prompt")
            return DispatchResult(skipped_reason="settings_inactive")

        tz_name = timezone or (settings.schedule_timezone if settings else None) or "UTC"
        week = week_identifier(now, tz_name)

        if clear_existing:
            self.prompts.clear_week(group_id, week)

        existing = self.repo.get_for_week(self.db, group_id, week)
        if existing and existing.status != PROMPT_PENDING:
            logger.info(f"⏭️ Prompt already exists for group {group_id} in {week}, skipping")
            result = DispatchResult(prompt=existing, skipped_reason="duplicate_week")
            if existing.status == PROMPT_ACTIVE:
                # A redelivered job may have activated the prompt without enqueueing its follow-ups
                await self._schedule_followups(existing, now, result)
            return result

        if existing:
            logger.warning(f"🔁 Resuming pending prompt {existing.id} for group {group_id} ({week})")
            prompt = existing
        else:
            try:
                prompt = self.prompts.create_prompt(
                    group_id,
                    deadline=deadline,
                    game_id=game_id,
                    custom_message=custom_message or _template_flag(settings, "message"),
                    auto_schedule_enabled=(
                        auto_schedule_enabled
                        if auto_schedule_enabled is not None
                        else bool(_template_flag(settings, "auto_schedule", settings is not None))
                    ),
                    blind_voting_enabled=(
                        blind_voting_enabled
                        if blind_voting_enabled is not None
                        else bool(_template_flag(settings, "blind_voting", False))
                    ),
                    settings=settings,
                    timezone=tz_name,
                    now=now,
                )
            except PromptAlreadyExists as e:
                logger.info(f"⏭️ {e}")
                return DispatchResult(
                    prompt=self.repo.get_for_week(self.db, group_id, week),
                    skipped_reason="duplicate_week",
                )

        result = DispatchResult(prompt=prompt, created=True)
        await self._send_links(prompt, group.name, now, result)

        self.prompts.activate(prompt)

        await self._schedule_followups(prompt, now, result)

        logger.info(
            f"✅ Prompt {prompt.id} active: {result.tokens_issued} tokens, "
            f"{result.emails_sent} emails sent, {result.emails_failed} failed"
        )
        return result

    async def _schedule_followups(self, prompt: AvailabilityPrompt, now: datetime, result: DispatchResult):
        """Deadline and reminder jobs; their ids are per prompt so repeats are dropped by the queue"""
        if self.services.queues is None:
            return
        await self.services.queues.schedule_deadline(prompt.id, prompt.deadline)
        result.reminder_stages = await self.services.queues.schedule_reminders(
            prompt.id, prompt.group_id, prompt.prompt_date, prompt.deadline, now=now
        )

    async def _send_links(self, prompt: AvailabilityPrompt, group_name: str, now: datetime, result: DispatchResult):
        """One token per member; email only members with a reachable address"""
        game_name = prompt.game.name if prompt.game else None
        for user, _role in self.repo.get_members(self.db, prompt.group_id):
            token = self.tokens.issue(user, prompt, now=now)
            result.tokens_issued += 1

            if not user.email or not user.email_notifications_enabled:
                logger.info(f"📭 No email for member {user.id}, token issued only")
                continue

            message = build_prompt_email(
                recipient=user.email,
                user_name=user.username or "there",
                group_name=group_name,
                prompt_id=prompt.id,
                token=token,
                deadline=prompt.deadline,
                custom_message=prompt.custom_message,
                game_name=game_name,
            )
            try:
                sent = await self.services.mailer.send(message)
            except asyncio.TimeoutError:
                sent = None
            if sent is not None and sent.success:
                result.emails_sent += 1
            else:
                result.emails_failed += 1
                logger.error(f"❌ Failed to send availability email to {user.email}")
