"""
Admin operations for the scheduling orchestrator
Platform metrics and a manual prompt-job trigger for operational testing
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_group_admin
from ...database import get_db
from ...models import User
from ...services import AppServices, get_services
from ...timeutils import is_valid_timezone, utcnow
from ..prompts.repository import PromptRepository, ResponseRepository
from ..prompts.service import PromptService
from ..prompts.weeks import week_identifier
from ..tokens.repository import MagicTokenRepository
from .dispatcher import PromptDispatcher
from .retry import PermanentJobError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

METRICS_WINDOW_DAYS = 30


class QueueMetrics(BaseModel):
    available: bool
    counts: dict[str, int] = {}


class AdminMetricsResponse(BaseModel):
    periodDays: int
    tokensSent: int
    submissions: int
    submissionRate: float
    activePrompts: int
    queues: QueueMetrics


class TriggerPromptJobRequest(BaseModel):
    group_id: str
    settings_id: Optional[str] = None
    timezone: str = "UTC"
    clear_existing: bool = True


class TriggerPromptJobResponse(BaseModel):
    success: bool
    mode: str  # queued or inline
    job_id: Optional[str] = None
    cleared: int = 0
    result: Optional[dict] = None


async def collect_queue_metrics(services: AppServices) -> QueueMetrics:
    if services.queues is None:
        return QueueMetrics(available=False)
    try:
        counts = await asyncio.wait_for(services.queues.queue_counts(), timeout=5.0)
    except (RedisError, OSError, asyncio.TimeoutError) as e:
        logger.warning(f"⚠️ Could not read queue depths: {e}")
        return QueueMetrics(available=False)
    return QueueMetrics(available=True, counts=counts)


@router.get("/metrics", response_model=AdminMetricsResponse)
async def get_admin_metrics(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    """Tokens sent, submissions and queue depth over the last 30 days"""
    since = utcnow() - timedelta(days=METRICS_WINDOW_DAYS)
    tokens_sent = MagicTokenRepository.count_issued_since(db, since)
    submissions = ResponseRepository.count_submitted_since(db, since)

    return AdminMetricsResponse(
        periodDays=METRICS_WINDOW_DAYS,
        tokensSent=tokens_sent,
        submissions=submissions,
        submissionRate=round(submissions / tokens_sent, 4) if tokens_sent else 0.0,
        activePrompts=PromptRepository.count_active(db),
        queues=await collect_queue_metrics(services),
    )


@router.post("/trigger-prompt-job", response_model=TriggerPromptJobResponse)
async def trigger_prompt_job(
    data: TriggerPromptJobRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    """
    Re-run prompt creation for a group now.
    With clear_existing, this week's prompt is removed first so the job is not skipped.
    """
    require_group_admin(db, data.group_id, current_user)
    if not is_valid_timezone(data.timezone):
        raise HTTPException(status_code=400, detail=f"Unknown timezone: {data.timezone}")

    cleared = 0
    if data.clear_existing:
        week = week_identifier(utcnow(), data.timezone)
        cleared = PromptService(db).clear_week(data.group_id, week)

    if services.queues is not None:
        job = await services.queues.enqueue_prompt_creation(
            data.group_id, data.settings_id, data.timezone
        )
        if job is None:
            raise HTTPException(status_code=409, detail="A prompt job for this group is already queued")
        logger.info(f"🧪 Manual prompt job {job.job_id} queued by {current_user.id}")
        return TriggerPromptJobResponse(success=True, mode="queued", job_id=job.job_id, cleared=cleared)

    # No Redis: run the same path inline
    try:
        result = await PromptDispatcher(db, services).create_and_send(
            data.group_id, data.settings_id, data.timezone
        )
    except PermanentJobError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return TriggerPromptJobResponse(success=result.created, mode="inline", cleared=cleared, result=result.summary())
