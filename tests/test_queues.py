"""
Job queue tests.

Tests cover:
- Reminder stage planning relative to the prompt window
- Deterministic job ids
- Enqueueing onto family queues with timezone-aware defer times
- Retry classification for job handlers
"""

from datetime import datetime, timedelta, timezone

import pytest
from arq import Retry
from sqlalchemy.exc import OperationalError

from gamenight.domain.scheduling.queues import (
    DEADLINE_FAMILY,
    PROMPT_FAMILY,
    REMINDER_FAMILY,
    JobQueues,
    deadline_job_id,
    plan_reminders,
    prompt_job_id,
    reminder_job_id,
)
from gamenight.domain.scheduling.retry import PermanentJobError, RetryPolicy, with_retry_policy

CREATED = datetime(2026, 10, 14, 12, 0)
DEADLINE = CREATED + timedelta(hours=72)


class RecordingRedis:
    """Minimal ArqRedis stand-in: enqueue_job returns None for a repeated job id"""

    def __init__(self):
        self.jobs = {}
        self.closed = False

    async def enqueue_job(self, function, *args, _job_id=None, _queue_name=None, _defer_until=None):
        if _job_id in self.jobs:
            return None
        self.jobs[_job_id] = {
            "function": function,
            "args": args,
            "queue": _queue_name,
            "defer_until": _defer_until,
        }
        return _job_id

    async def zcard(self, name):
        return sum(1 for job in self.jobs.values() if job["queue"] == name)

    async def close(self):
        self.closed = True


@pytest.mark.unit
class TestPlanReminders:
    def test_halfway_and_final(self):
        assert plan_reminders(CREATED, DEADLINE, CREATED) == [
            ("halfway", CREATED + timedelta(hours=36)),
            ("final", CREATED + timedelta(hours=64, minutes=48)),
        ]

    def test_stages_already_due_are_dropped(self):
        now = CREATED + timedelta(hours=40)
        assert [stage for stage, _ in plan_reminders(CREATED, DEADLINE, now)] == ["final"]

    def test_stage_too_close_to_now_is_dropped(self):
        now = CREATED + timedelta(hours=36) - timedelta(minutes=4)
        assert [stage for stage, _ in plan_reminders(CREATED, DEADLINE, now)] == ["final"]

    def test_short_window_keeps_only_halfway(self):
        deadline = CREATED + timedelta(minutes=10)
        # halfway at +5m, final at +9m: less than five minutes apart
        assert [stage for stage, _ in plan_reminders(CREATED, deadline, CREATED)] == ["halfway"]

    def test_past_deadline(self):
        assert plan_reminders(CREATED, DEADLINE, DEADLINE + timedelta(hours=1)) == []


@pytest.mark.unit
class TestJobIds:
    def test_ids_are_stable(self):
        assert reminder_job_id("halfway", "p1") == "reminder-halfway-p1"
        assert deadline_job_id("p1") == "deadline-p1"
        assert prompt_job_id("s1", datetime(2026, 10, 19, 18, 0)) == "prompt-s1-20261019T1800Z"

    def test_families_have_separate_queues(self):
        names = {PROMPT_FAMILY.queue_name, REMINDER_FAMILY.queue_name, DEADLINE_FAMILY.queue_name}
        assert len(names) == 3


@pytest.mark.unit
class TestJobQueues:
    @pytest.fixture
    def redis(self):
        return RecordingRedis()

    @pytest.fixture
    def queues(self, redis):
        return JobQueues(redis)

    async def test_deadline_job(self, queues, redis):
        await queues.schedule_deadline("p1", DEADLINE)

        job = redis.jobs["deadline-p1"]
        assert job["function"] == "enforce_deadline"
        assert job["args"] == ("p1",)
        assert job["queue"] == DEADLINE_FAMILY.queue_name
        assert job["defer_until"] == DEADLINE.replace(tzinfo=timezone.utc)

    async def test_reminder_jobs(self, queues, redis):
        stages = await queues.schedule_reminders("p1", "g1", CREATED, DEADLINE, now=CREATED)

        assert stages == ["halfway", "final"]
        halfway = redis.jobs["reminder-halfway-p1"]
        assert halfway["function"] == "send_reminders"
        assert halfway["args"] == ("p1", "halfway", "g1")
        assert halfway["queue"] == REMINDER_FAMILY.queue_name
        assert halfway["defer_until"] == (CREATED + timedelta(hours=36)).replace(tzinfo=timezone.utc)

    async def test_duplicate_job_id_is_ignored(self, queues, redis):
        assert await queues.schedule_deadline("p1", DEADLINE) is not None
        assert await queues.schedule_deadline("p1", DEADLINE + timedelta(hours=1)) is None
        assert redis.jobs["deadline-p1"]["defer_until"] == DEADLINE.replace(tzinfo=timezone.utc)

    async def test_prompt_creation_job(self, queues, redis):
        run_at = datetime(2026, 10, 19, 18, 0)
        await queues.enqueue_prompt_creation("g1", "s1", "Europe/Berlin", run_at=run_at, job_id="prompt-x")

        job = redis.jobs["prompt-x"]
        assert job["function"] == "create_prompt"
        assert job["args"] == ("g1", "s1", "Europe/Berlin")
        assert job["queue"] == PROMPT_FAMILY.queue_name

    async def test_immediate_prompt_job_is_not_deferred(self, queues, redis):
        await queues.enqueue_prompt_creation("g1", None)
        (job,) = redis.jobs.values()
        assert job["defer_until"] is None

    async def test_queue_counts(self, queues):
        await queues.schedule_deadline("p1", DEADLINE)
        await queues.schedule_deadline("p2", DEADLINE)
        assert await queues.queue_counts() == {"prompts": 0, "reminders": 0, "deadlines": 2}

    async def test_close(self, queues, redis):
        await queues.close()
        assert redis.closed


@pytest.mark.unit
class TestRetryPolicy:
    def test_exponential_backoff(self):
        policy = RetryPolicy(max_tries=4, base_delay=5)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [5, 10, 20]

    def test_fixed_backoff(self):
        policy = RetryPolicy(max_tries=2, base_delay=10, exponential=False)
        assert [policy.delay_for(n) for n in (1, 2)] == [10, 10]

    async def test_transient_error_is_retried(self):
        @with_retry_policy(RetryPolicy(max_tries=3, base_delay=5))
        async def job(ctx):
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))

        with pytest.raises(Retry) as exc:
            await job({"job_id": "j1", "job_try": 2})
        assert exc.value.defer_score == 10_000

    async def test_transient_error_surfaces_on_last_try(self):
        @with_retry_policy(RetryPolicy(max_tries=3, base_delay=5))
        async def job(ctx):
            raise ConnectionError("redis went away")

        with pytest.raises(ConnectionError):
            await job({"job_id": "j1", "job_try": 3})

    async def test_permanent_error_is_a_skip(self):
        @with_retry_policy(RetryPolicy(max_tries=3, base_delay=5))
        async def job(ctx):
            raise PermanentJobError("Group g1 not found")

        assert await job({"job_id": "j1", "job_try": 1}) == {"status": "skipped", "reason": "Group g1 not found"}

    async def test_other_errors_propagate(self):
        @with_retry_policy(RetryPolicy(max_tries=3, base_delay=5))
        async def job(ctx):
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await job({"job_id": "j1", "job_try": 1})

    async def test_success_passes_through(self):
        @with_retry_policy(RetryPolicy(max_tries=3, base_delay=5))
        async def job(ctx, value):
            return {"value": value}

        assert await job({}, 7) == {"value": 7}
