"""
ARQ Background Workers for the scheduling orchestrator
One worker class per job family; each runs against its own queue:

    arq gamenight.worker.PromptWorkerSettings
    arq gamenight.worker.ReminderWorkerSettings
    arq gamenight.worker.DeadlineWorkerSettings
"""

import logging

from arq import cron, func

from . import config
from .database import SessionLocal
from .domain.scheduling.jobs import (
    create_prompt_job,
    enforce_deadline_job,
    send_reminders_job,
    sync_prompt_schedules_job,
)
from .domain.scheduling.queues import (
    CREATE_PROMPT_JOB,
    DEADLINE_FAMILY,
    ENFORCE_DEADLINE_JOB,
    PROMPT_FAMILY,
    REMINDER_FAMILY,
    SEND_REMINDERS_JOB,
    JobQueues,
    get_redis_settings,
)
from .domain.tokens.codec import SigningContext
from .email_service import ResendMailer
from .services import AppServices

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# Results are never purged: failed jobs stay in Redis for operator inspection
# and a re-enqueued job id is always rejected as a duplicate


async def startup(ctx):
    ctx["services"] = AppServices(
        session_factory=SessionLocal,
        signing=SigningContext.from_config(),
        mailer=ResendMailer(),
        queues=JobQueues(ctx["redis"]),
    )
    logger.info("🔧 Worker services ready")


async def shutdown(ctx):
    # The arq pool belongs to the worker; it closes it itself
    ctx.pop("services", None)
    logger.info("👋 Worker shutting down")


class PromptWorkerSettings:
    """Creates weekly prompts; also owns the hourly cadence sync"""

    functions = [
        func(create_prompt_job, name=CREATE_PROMPT_JOB, max_tries=PROMPT_FAMILY.retry.max_tries),
    ]
    cron_jobs = [
        cron(sync_prompt_schedules_job, minute=0, run_at_startup=True),
    ]
    queue_name = PROMPT_FAMILY.queue_name
    redis_settings = get_redis_settings()
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = PROMPT_FAMILY.max_jobs
    job_timeout = config.ARQ_JOB_TIMEOUT
    keep_result_forever = True


class ReminderWorkerSettings:
    """Sends staged reminders at low concurrency to respect email rate limits"""

    functions = [
        func(send_reminders_job, name=SEND_REMINDERS_JOB, max_tries=REMINDER_FAMILY.retry.max_tries),
    ]
    queue_name = REMINDER_FAMILY.queue_name
    redis_settings = get_redis_settings()
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = REMINDER_FAMILY.max_jobs
    job_timeout = config.ARQ_JOB_TIMEOUT
    keep_result_forever = True


class DeadlineWorkerSettings:
    """Closes prompts at their deadline and auto-schedules events"""

    functions = [
        func(enforce_deadline_job, name=ENFORCE_DEADLINE_JOB, max_tries=DEADLINE_FAMILY.retry.max_tries),
    ]
    queue_name = DEADLINE_FAMILY.queue_name
    redis_settings = get_redis_settings()
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = DEADLINE_FAMILY.max_jobs
    job_timeout = config.ARQ_JOB_TIMEOUT
    keep_result_forever = True


logger.info(
    f"🔧 ARQ workers configured: prompts={PROMPT_FAMILY.max_jobs}, "
    f"reminders={REMINDER_FAMILY.max_jobs}, deadlines={DEADLINE_FAMILY.max_jobs}"
)
