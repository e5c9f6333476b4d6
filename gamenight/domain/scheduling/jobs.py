"""
Orchestrator job handlers
Prompt creation, staged reminders, deadline enforcement and the cadence sync cron.

Each arq entry point opens its own session from ctx["services"] and closes it when done.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...email_service import build_no_consensus_email, build_reminder_email
from ...models import PROMPT_ACTIVE, AvailabilityPrompt
from ...timeutils import utcnow
from ..prompts.repository import PromptRepository, ResponseRepository
from ..prompts.service import PromptService
from ..suggestions.repository import SuggestionRepository
from ..suggestions.service import SuggestionService, resolve_min_participants
from ..tokens.service import TokenService
from .cadence import due_schedules
from .dispatcher import PromptDispatcher
from .queues import DEADLINE_FAMILY, PROMPT_FAMILY, REMINDER_FAMILY, prompt_job_id
from .retry import PermanentJobError, with_retry_policy

logger = logging.getLogger(__name__)


# ============================================================================
# Reminders
# ============================================================================


async def send_staged_reminders(
    db: Session, services, prompt_id: str, stage: str, now: Optional[datetime] = None
) -> dict:
    """
    Remind members who have not submitted, up to MAX_REMINDERS_PER_USER per prompt.
    A prompt that is no longer active makes this a no-op.
    """
    now = now or utcnow()
    repo = PromptRepository()
    responses = ResponseRepository()

    prompt = repo.get_by_id(db, prompt_id)
    if not prompt:
        raise PermanentJobError(f"Prompt {prompt_id} not found")
    if prompt.status != PROMPT_ACTIVE:
        logger.info(f"⏭️ Prompt {prompt_id} is {prompt.status}, skipping {stage} reminders")
        return {"status": "skipped", "reason": "prompt_not_active", "prompt_status": prompt.status}

    tokens = TokenService(db, services.signing)
    counts = {"sent": 0, "skipped_submitted": 0, "skipped_limit": 0, "skipped_no_email": 0, "failed": 0}

    for user, _role in repo.get_members(db, prompt.group_id):
        response = responses.get_for_user(db, prompt.id, user.id)
        if response and response.submitted_at:
            counts["skipped_submitted"] += 1
            continue
        if response and response.reminder_count >= config.MAX_REMINDERS_PER_USER:
            logger.info(f"⏭️ User {user.id} already received {response.reminder_count} reminders")
            counts["skipped_limit"] += 1
            continue
        if not user.email or not user.email_notifications_enabled:
            counts["skipped_no_email"] += 1
            continue

        # Fresh link: the original one may be close to expiry by now
        token = tokens.issue(user, prompt, now=now)
        message = build_reminder_email(
            recipient=user.email,
            user_name=user.username or "there",
            group_name=prompt.group.name,
            prompt_id=prompt.id,
            token=token,
            deadline=prompt.deadline,
            stage=stage,
        )
        try:
            sent = await services.mailer.send(message)
        except asyncio.TimeoutError:
            sent = None
        if sent is None or not sent.success:
            logger.error(f"❌ Failed to send {stage} reminder to {user.email}")
            counts["failed"] += 1
            continue

        if response is None:
            response = responses.create_placeholder(db, prompt.id, user.id)
        response.reminder_count = (response.reminder_count or 0) + 1
        response.last_reminded_at = now
        db.commit()
        counts["sent"] += 1

    logger.info(f"📨 {stage} reminders for prompt {prompt_id}: {counts}")
    return {"status": "completed", "stage": stage, "prompt_id": prompt_id, **counts}


# ============================================================================
# Deadline
# ============================================================================


async def notify_no_consensus(db: Session, services, prompt: AvailabilityPrompt) -> int:
    repo = PromptRepository()
    response_count = len(SuggestionRepository.submitted_responses(db, prompt.id))
    min_participants = resolve_min_participants(db, prompt)

    notified = 0
    for admin in repo.get_admins(db, prompt.group_id):
        if not admin.email or not admin.email_notifications_enabled:
            continue
        message = build_no_consensus_email(
            recipient=admin.email,
            admin_name=admin.username or "there",
            group_name=prompt.group.name,
            prompt_id=prompt.id,
            response_count=response_count,
            min_participants=min_participants,
        )
        try:
            result = await services.mailer.send(message)
        except asyncio.TimeoutError:
            logger.error(f"❌ No-consensus email to {admin.email} timed out")
            continue
        if result.success:
            notified += 1
        else:
            logger.error(f"❌ No-consensus email to {admin.email} failed: {result.error}")
    return notified


async def enforce_deadline(db: Session, services, prompt_id: str) -> dict:
    """
    Close the prompt, freeze its suggestions and, when auto-scheduling is on,
    convert the best viable suggestion or tell the admins nothing worked.
    """
    prompt_service = PromptService(db, services.signing, services.mailer)
    prompt = prompt_service.get_prompt(prompt_id)
    if not prompt:
        raise PermanentJobError(f"Prompt {prompt_id} not found")
    if prompt.status != PROMPT_ACTIVE:
        logger.info(f"⏭️ Prompt {prompt_id} is {prompt.status}, nothing to enforce")
        return {"status": "skipped", "reason": "prompt_not_active", "prompt_status": prompt.status}

    suggestions = prompt_service.close_prompt(prompt)
    outcome = {
        "status": "closed",
        "prompt_id": prompt_id,
        "suggestion_count": len(suggestions),
        "event_id": None,
        "admins_notified": 0,
    }

    if not prompt.auto_schedule_enabled:
        return outcome

    suggestion_service = SuggestionService(db)
    best = suggestion_service.best_suggestion(prompt.id)
    if best:
        event = suggestion_service.convert_suggestion(best, auto_scheduled=True)
        outcome.update(status="converted", event_id=event.id)
        logger.info(f"🎉 Auto-scheduled event {event.id} for prompt {prompt_id}")
    else:
        outcome["admins_notified"] = await notify_no_consensus(db, services, prompt)
        logger.info(f"🤷 No consensus for prompt {prompt_id}, notified {outcome['admins_notified']} admins")

    return outcome


# ============================================================================
# Cadence sync
# ============================================================================


async def enqueue_due_prompts(db: Session, services, now: Optional[datetime] = None) -> list[str]:
    """Enqueue a deferred prompt-creation job for each schedule firing soon"""
    now = now or utcnow()
    job_ids = []
    for settings, fire_at in due_schedules(db, now):
        job_id = prompt_job_id(settings.id, fire_at)
        await services.queues.enqueue_prompt_creation(
            settings.group_id,
            settings.id,
            settings.schedule_timezone,
            run_at=fire_at,
            job_id=job_id,
        )
        job_ids.append(job_id)
    return job_ids


# ============================================================================
# ARQ entry points
# ============================================================================


@with_retry_policy(PROMPT_FAMILY.retry)
async def create_prompt_job(ctx, group_id: str, settings_id: Optional[str], timezone: str = "UTC"):
    """Background task: create and send one group's weekly prompt"""
    services = ctx["services"]
    logger.info(f"🚀 Prompt job {ctx.get('job_id')} (try {ctx.get('job_try', 1)}) for group {group_id}")
    db = services.session_factory()
    try:
        result = await PromptDispatcher(db, services).create_and_send(
            group_id, settings_id, timezone, require_active_settings=True
        )
        return result.summary()
    finally:
        db.close()


@with_retry_policy(REMINDER_FAMILY.retry)
async def send_reminders_job(ctx, prompt_id: str, stage: str, group_id: Optional[str] = None):
    """Background task: send one reminder stage for a prompt"""
    services = ctx["services"]
    logger.info(f"🚀 Reminder job {ctx.get('job_id')} (try {ctx.get('job_try', 1)}): {stage} for {prompt_id}")
    db = services.session_factory()
    try:
        return await send_staged_reminders(db, services, prompt_id, stage)
    finally:
        db.close()


@with_retry_policy(DEADLINE_FAMILY.retry)
async def enforce_deadline_job(ctx, prompt_id: str):
    """Background task: close a prompt at its deadline"""
    services = ctx["services"]
    logger.info(f"🚀 Deadline job {ctx.get('job_id')} (try {ctx.get('job_try', 1)}) for {prompt_id}")
    db = services.session_factory()
    try:
        return await enforce_deadline(db, services, prompt_id)
    finally:
        db.close()


async def sync_prompt_schedules_job(ctx):
    """Cron task: turn upcoming weekly schedules into deferred prompt jobs"""
    services = ctx["services"]
    db = services.session_factory()
    try:
        job_ids = await enqueue_due_prompts(db, services)
        logger.info(f"🗓️ Cadence sync enqueued {len(job_ids)} prompt job(s)")
        return {"enqueued": job_ids}
    finally:
        db.close()
