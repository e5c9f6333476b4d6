"""
HTTP route tests.

Tests cover:
- Magic link validation and the generic token error
- Token-authenticated submissions and pre-fill
- Admin prompt operations: create, respondents, reminders, close
- Suggestions: list, refresh and conversion
- Platform metrics and the manual prompt-job trigger
- Group membership checks
"""

import asyncio
from datetime import timedelta

import pytest

from gamenight.domain.prompts.weeks import week_identifier
from gamenight.domain.tokens.schemas import GENERIC_TOKEN_ERROR
from gamenight.domain.tokens.service import TokenService
from gamenight.models import (
    PROMPT_CLOSED,
    PROMPT_PENDING,
    TOKEN_REVOKED,
    AvailabilityPrompt,
    MagicToken,
)
from gamenight.timeutils import utcnow

from .conftest import make_prompt, make_response, make_user, slot

GENERIC_ERROR = {"error": GENERIC_TOKEN_ERROR, "action": "request_new"}


@pytest.fixture
def prompt(db, warriors):
    return make_prompt(db, warriors["group"], created=utcnow())


@pytest.fixture
def issue(db, signing):
    def issue_token(user, prompt):
        return TokenService(db, signing).issue(user, prompt)

    return issue_token


def saturday_slots(preference="if-need-be"):
    return [{"start": "2026-10-17T18:00:00", "end": "2026-10-17T21:00:00", "preference": preference}]


# --------------------
# Magic links
# --------------------


@pytest.mark.unit
class TestValidateRoute:
    def test_valid_token(self, client, prompt, warriors, issue):
        token = issue(warriors["bob"], prompt)

        response = client.post("/magic-auth/validate", json={"token": token})

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["prompt_id"] == prompt.id
        assert body["user"] == {"name": "Bob"}
        assert body["graceUsed"] is False

    def test_token_in_query_string(self, client, prompt, warriors, issue):
        token = issue(warriors["bob"], prompt)
        response = client.post("/magic-auth/validate", params={"token": token})
        assert response.status_code == 200

    @pytest.mark.parametrize("token", ["garbage", "a.b.c", ""])
    def test_invalid_token_is_generic(self, client, token):
        response = client.post("/magic-auth/validate", json={"token": token})
        assert response.status_code == 400
        assert response.json() == GENERIC_ERROR

    def test_revoked_token_is_generic(self, client, db, prompt, warriors, issue, signing):
        token = issue(warriors["bob"], prompt)
        record = db.query(MagicToken).one()
        TokenService(db, signing).revoke(record.token_id)

        response = client.post("/magic-auth/validate", json={"token": token})

        assert response.status_code == 400
        assert response.json() == GENERIC_ERROR


@pytest.mark.unit
class TestTokenAdminRoutes:
    def test_revoke_by_group_admin(self, client, current_user, db, prompt, warriors, issue):
        issue(warriors["bob"], prompt)
        record = db.query(MagicToken).one()
        current_user.user = warriors["alice"]

        response = client.post(f"/tokens/{record.token_id}/revoke")

        assert response.status_code == 200
        assert response.json() == {"token_id": record.token_id, "status": TOKEN_REVOKED}

    def test_revoke_requires_admin(self, client, current_user, db, prompt, warriors, issue):
        issue(warriors["bob"], prompt)
        record = db.query(MagicToken).one()
        current_user.user = warriors["bob"]

        assert client.post(f"/tokens/{record.token_id}/revoke").status_code == 403

    def test_revoke_unknown_token(self, client, current_user, warriors):
        current_user.user = warriors["alice"]
        assert client.post("/tokens/nope/revoke").status_code == 404

    def test_group_metrics_require_membership(self, client, current_user, db, warriors):
        current_user.user = make_user(db, "stranger")
        response = client.get("/tokens/metrics", params={"groupId": warriors["group"].id})
        assert response.status_code == 403

    def test_group_metrics(self, client, current_user, prompt, warriors, issue):
        issue(warriors["bob"], prompt)
        current_user.user = warriors["carol"]

        response = client.get("/tokens/metrics", params={"groupId": warriors["group"].id, "days": 7})

        assert response.status_code == 200
        assert response.json()["generation"]["total"] == 1

    def test_metrics_require_login(self, client):
        assert client.get("/tokens/metrics").status_code == 401


# --------------------
# Submissions
# --------------------


@pytest.mark.unit
class TestSubmissionRoutes:
    def test_submit_and_prefill(self, client, prompt, warriors, issue):
        token = issue(warriors["bob"], prompt)

        before = client.get(f"/availability-responses/{prompt.id}", params={"token": token})
        assert before.status_code == 200
        assert before.json() is None

        submitted = client.post(
            "/availability-responses",
            json={"token": token, "time_slots": saturday_slots("preferred"), "user_timezone": "UTC"},
        )
        assert submitted.status_code == 200
        assert submitted.json()["updated"] is False
        assert submitted.json()["late"] is False

        after = client.get(f"/availability-responses/{prompt.id}", params={"token": token})
        stored = after.json()["response"]
        assert stored["id"] == submitted.json()["response_id"]
        assert stored["time_slots"][0]["preference"] == "preferred"

    def test_resubmission_replaces(self, client, prompt, warriors, issue):
        token = issue(warriors["bob"], prompt)
        body = {"token": token, "time_slots": saturday_slots(), "user_timezone": "UTC"}

        first = client.post("/availability-responses", json=body)
        second = client.post("/availability-responses", json={**body, "is_unavailable": True, "time_slots": []})

        assert second.json()["updated"] is True
        assert second.json()["response_id"] == first.json()["response_id"]

    def test_late_submission_on_closed_prompt(self, client, db, prompt, warriors, issue):
        token = issue(warriors["bob"], prompt)
        prompt.status = PROMPT_CLOSED
        db.commit()

        response = client.post(
            "/availability-responses",
            json={"token": token, "time_slots": saturday_slots(), "user_timezone": "UTC"},
        )

        assert response.status_code == 200
        assert response.json()["late"] is True

    def test_pending_prompt_rejects(self, client, db, warriors, issue):
        pending = make_prompt(db, warriors["group"], status=PROMPT_PENDING, created=utcnow(), week="2026-W40")
        token = issue(warriors["bob"], pending)

        response = client.post(
            "/availability-responses",
            json={"token": token, "time_slots": saturday_slots(), "user_timezone": "UTC"},
        )

        assert response.status_code == 400

    def test_invalid_slots(self, client, prompt, warriors, issue):
        token = issue(warriors["bob"], prompt)
        inverted = [{"start": "2026-10-17T21:00:00", "end": "2026-10-17T18:00:00"}]

        response = client.post(
            "/availability-responses", json={"token": token, "time_slots": inverted, "user_timezone": "UTC"}
        )

        assert response.status_code == 400

    def test_bad_token_is_generic(self, client, prompt):
        response = client.post(
            "/availability-responses",
            json={"token": "garbage", "time_slots": saturday_slots(), "user_timezone": "UTC"},
        )
        assert response.status_code == 400
        assert response.json() == GENERIC_ERROR

    def test_prefill_token_for_another_prompt(self, client, db, prompt, warriors, issue):
        other = make_prompt(db, warriors["group"], created=utcnow(), week="2026-W41")
        token = issue(warriors["bob"], other)

        response = client.get(f"/availability-responses/{prompt.id}", params={"token": token})

        assert response.status_code == 400
        assert response.json() == GENERIC_ERROR


# --------------------
# Prompt administration
# --------------------


@pytest.mark.unit
class TestPromptAdminRoutes:
    def test_create_prompt_now(self, client, current_user, db, mailer, warriors):
        current_user.user = warriors["alice"]

        response = client.post(
            f"/groups/{warriors['group'].id}/prompts", json={"custom_message": "Pizza night"}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["created"] is True
        assert body["tokens_issued"] == 4
        assert body["emails_sent"] == 4
        assert body["prompt"]["status"] == "active"
        assert body["prompt"]["custom_message"] == "Pizza night"

        again = client.post(f"/groups/{warriors['group'].id}/prompts", json={})
        assert again.status_code == 409
        assert db.query(AvailabilityPrompt).count() == 1

    def test_create_prompt_requires_admin(self, client, current_user, warriors):
        current_user.user = warriors["bob"]
        assert client.post(f"/groups/{warriors['group'].id}/prompts", json={}).status_code == 403

    def test_respondents(self, client, current_user, db, prompt, warriors):
        make_response(db, prompt, warriors["bob"], [slot(utcnow(), utcnow() + timedelta(hours=2))])
        current_user.user = warriors["carol"]

        response = client.get(f"/prompts/{prompt.id}/respondents")

        assert response.status_code == 200
        rows = response.json()
        assert [r["user_id"] for r in rows] == ["bob", "alice", "carol", "dave"]
        assert rows[0]["has_responded"] is True
        assert rows[0]["slot_count"] == 1

    def test_respondents_for_non_member(self, client, current_user, db, prompt):
        current_user.user = make_user(db, "stranger")
        assert client.get(f"/prompts/{prompt.id}/respondents").status_code == 403

    def test_unknown_prompt(self, client, current_user, warriors):
        current_user.user = warriors["alice"]
        assert client.get("/prompts/nope/respondents").status_code == 404

    def test_manual_reminder(self, client, current_user, mailer, prompt, warriors):
        current_user.user = warriors["alice"]

        response = client.post(f"/prompts/{prompt.id}/remind/dave")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert mailer.recipients() == ["dave@example.com"]

    def test_manual_reminder_cooldown(self, client, current_user, db, mailer, prompt, warriors):
        make_response(
            db, prompt, warriors["bob"], [], submitted_at=None, last_reminded_at=utcnow() - timedelta(hours=1)
        )
        current_user.user = warriors["alice"]

        response = client.post(f"/prompts/{prompt.id}/remind/bob")

        assert response.status_code == 429
        assert response.json()["next_reminder_available"].endswith("Z")
        assert mailer.sent == []

    def test_manual_reminder_after_submission(self, client, current_user, db, prompt, warriors):
        make_response(db, prompt, warriors["bob"], [slot(utcnow(), utcnow() + timedelta(hours=2))])
        current_user.user = warriors["alice"]

        assert client.post(f"/prompts/{prompt.id}/remind/bob").status_code == 400

    def test_manual_reminder_delivery_failure(self, client, current_user, mailer, prompt, warriors):
        mailer.fail_for.add("dave@example.com")
        current_user.user = warriors["alice"]

        assert client.post(f"/prompts/{prompt.id}/remind/dave").status_code == 502

    def test_manual_reminder_timeout(self, client, current_user, mocker, mailer, prompt, warriors):
        mocker.patch.object(mailer, "send", side_effect=asyncio.TimeoutError)
        current_user.user = warriors["alice"]

        response = client.post(f"/prompts/{prompt.id}/remind/dave")

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to send reminder email"

    def test_close_prompt(self, client, current_user, db, prompt, warriors):
        start = utcnow() + timedelta(days=2)
        make_response(db, prompt, warriors["alice"], [slot(start, start + timedelta(hours=2))])
        make_response(db, prompt, warriors["bob"], [slot(start, start + timedelta(hours=2))])
        current_user.user = warriors["alice"]

        response = client.post(f"/prompts/{prompt.id}/close")

        assert response.status_code == 200
        assert response.json() == {"prompt_id": prompt.id, "status": "closed", "suggestionCount": 1}
        assert client.post(f"/prompts/{prompt.id}/close").status_code == 409

    def test_close_requires_admin(self, client, current_user, prompt, warriors):
        current_user.user = warriors["dave"]
        assert client.post(f"/prompts/{prompt.id}/close").status_code == 403


# --------------------
# Suggestions
# --------------------


@pytest.fixture
def overlapping(db, prompt, warriors):
    start = utcnow().replace(hour=18, minute=0) + timedelta(days=3)
    make_response(db, prompt, warriors["alice"], [slot(start, start + timedelta(hours=3))])
    make_response(db, prompt, warriors["bob"], [slot(start + timedelta(hours=1), start + timedelta(hours=3))])
    return prompt


@pytest.mark.unit
class TestSuggestionRoutes:
    def test_refresh_then_list(self, client, current_user, overlapping, warriors):
        current_user.user = warriors["alice"]

        refreshed = client.post(f"/prompts/{overlapping.id}/suggestions/refresh")
        assert refreshed.status_code == 200
        assert refreshed.json()["suggestionCount"] == 2

        current_user.user = warriors["dave"]
        listed = client.get(f"/prompts/{overlapping.id}/suggestions")
        assert listed.status_code == 200
        body = listed.json()
        assert body["status"] == "active"
        assert body["suggestions"][0]["participant_user_ids"] == ["alice", "bob"]
        assert body["suggestions"][0]["rank"] == 1

        filtered = client.get(f"/prompts/{overlapping.id}/suggestions", params={"meets_minimum": True})
        assert len(filtered.json()["suggestions"]) == 1

    def test_refresh_on_closed_prompt(self, client, current_user, db, overlapping, warriors):
        overlapping.status = PROMPT_CLOSED
        db.commit()
        current_user.user = warriors["alice"]

        assert client.post(f"/prompts/{overlapping.id}/suggestions/refresh").status_code == 409

    def test_refresh_requires_admin(self, client, current_user, overlapping, warriors):
        current_user.user = warriors["bob"]
        assert client.post(f"/prompts/{overlapping.id}/suggestions/refresh").status_code == 403

    def test_convert_after_close(self, client, current_user, overlapping, warriors):
        current_user.user = warriors["alice"]
        client.post(f"/prompts/{overlapping.id}/close")
        best = client.get(f"/prompts/{overlapping.id}/suggestions").json()["suggestions"][0]

        converted = client.post(f"/suggestions/{best['id']}/convert")

        assert converted.status_code == 201
        body = converted.json()
        assert body["prompt_id"] == overlapping.id
        assert body["start_time"] == best["suggested_start"]
        assert client.post(f"/suggestions/{best['id']}/convert").status_code == 409

    def test_convert_while_active(self, client, current_user, overlapping, warriors):
        current_user.user = warriors["alice"]
        client.post(f"/prompts/{overlapping.id}/suggestions/refresh")
        best = client.get(f"/prompts/{overlapping.id}/suggestions").json()["suggestions"][0]

        assert client.post(f"/suggestions/{best['id']}/convert").status_code == 409

    def test_convert_unknown(self, client, current_user, warriors):
        current_user.user = warriors["alice"]
        assert client.post("/suggestions/nope/convert").status_code == 404


# --------------------
# Platform admin
# --------------------


@pytest.mark.unit
class TestAdminRoutes:
    def test_metrics(self, client, current_user, db, prompt, warriors, issue):
        issue(warriors["bob"], prompt)
        issue(warriors["carol"], prompt)
        make_response(db, prompt, warriors["bob"], [], submitted_at=utcnow())
        current_user.user = warriors["dave"]

        response = client.get("/admin/metrics")

        assert response.status_code == 200
        body = response.json()
        assert body["periodDays"] == 30
        assert body["tokensSent"] == 2
        assert body["submissions"] == 1
        assert body["submissionRate"] == 0.5
        assert body["activePrompts"] == 1
        assert body["queues"] == {"available": True, "counts": {"prompts": 0, "reminders": 0, "deadlines": 0}}

    def test_metrics_without_queues(self, client, current_user, services, warriors):
        services.queues = None
        current_user.user = warriors["alice"]

        assert client.get("/admin/metrics").json()["queues"] == {"available": False, "counts": {}}

    def test_trigger_queues_a_job(self, client, current_user, queues, warriors):
        current_user.user = warriors["alice"]

        response = client.post("/admin/trigger-prompt-job", json={"group_id": warriors["group"].id})

        assert response.status_code == 200
        body = response.json()
        assert body["mode"] == "queued"
        assert body["job_id"] == queues.prompt_jobs[0]["job_id"]
        assert queues.prompt_jobs[0]["group_id"] == warriors["group"].id

    def test_trigger_clears_this_week(self, client, current_user, db, queues, warriors):
        make_prompt(db, warriors["group"], created=utcnow(), week=week_identifier(utcnow()))
        current_user.user = warriors["alice"]

        response = client.post("/admin/trigger-prompt-job", json={"group_id": warriors["group"].id})

        assert response.json()["cleared"] == 1
        assert db.query(AvailabilityPrompt).count() == 0

    def test_trigger_inline_without_queues(self, client, current_user, services, mailer, warriors):
        services.queues = None
        current_user.user = warriors["alice"]

        response = client.post("/admin/trigger-prompt-job", json={"group_id": warriors["group"].id})

        body = response.json()
        assert body["mode"] == "inline"
        assert body["success"] is True
        assert body["result"]["tokens_issued"] == 4
        assert len(mailer.sent) == 4

    def test_trigger_unknown_timezone(self, client, current_user, warriors):
        current_user.user = warriors["alice"]
        response = client.post(
            "/admin/trigger-prompt-job", json={"group_id": warriors["group"].id, "timezone": "Mars/Olympus"}
        )
        assert response.status_code == 400

    def test_trigger_requires_admin(self, client, current_user, warriors):
        current_user.user = warriors["carol"]
        response = client.post("/admin/trigger-prompt-job", json={"group_id": warriors["group"].id})
        assert response.status_code == 403


@pytest.mark.unit
def test_health(client):
    assert client.get("/health").status_code == 200
