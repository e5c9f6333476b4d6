"""
Token analytics reporting
Aggregates issuance and validation activity for the operator dashboard
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ...models import AvailabilityPrompt, MagicToken, TokenAnalytics
from ...timeutils import utcnow
from .codec import TokenCodec

logger = logging.getLogger(__name__)


def extract_token_id(token) -> Optional[str]:
    """Read the jti of a presented token without verifying it (analytics only)"""
    return TokenCodec.peek_token_id(token)


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def get_token_metrics(
    db: Session, group_id: Optional[str] = None, days: int = 7, now: Optional[datetime] = None
) -> dict[str, Any]:
    """
    Token generation and validation metrics over the trailing `days` window.

    When group_id is given, generation and validation figures are limited to
    tokens issued for that group's prompts.
    """
    now = now or utcnow()
    since = now - timedelta(days=days)

    tokens = db.query(MagicToken).filter(MagicToken.created_at >= since)
    if group_id:
        tokens = tokens.join(AvailabilityPrompt, AvailabilityPrompt.id == MagicToken.prompt_id).filter(
            AvailabilityPrompt.group_id == group_id
        )

    generated = tokens.count()
    expired_unused = tokens.filter(MagicToken.expires_at < now, MagicToken.usage_count == 0).count()

    attempts = db.query(TokenAnalytics).filter(TokenAnalytics.timestamp >= since)
    if group_id:
        group_token_ids = (
            select(MagicToken.token_id)
            .join(AvailabilityPrompt, AvailabilityPrompt.id == MagicToken.prompt_id)
            .where(AvailabilityPrompt.group_id == group_id)
        )
        attempts = attempts.filter(TokenAnalytics.token_id.in_(group_token_ids))

    total_validations = attempts.count()
    successful = attempts.filter(TokenAnalytics.validation_success.is_(True)).count()
    grace_used = attempts.filter(TokenAnalytics.grace_period_used.is_(True)).count()

    breakdown_rows = (
        attempts.filter(TokenAnalytics.validation_success.is_(False))
        .with_entities(TokenAnalytics.failure_reason, func.count(TokenAnalytics.id))
        .group_by(TokenAnalytics.failure_reason)
        .all()
    )
    failure_breakdown = {reason or "unknown": count for reason, count in breakdown_rows}

    day = func.date(TokenAnalytics.timestamp)
    daily_rows = (
        attempts.with_entities(
            day.label("day"),
            func.count(TokenAnalytics.id),
            func.sum(case((TokenAnalytics.validation_success.is_(True), 1), else_=0)),
        )
        .group_by(day)
        .order_by(day)
        .all()
    )
    daily = [
        {
            "date": str(row_day),
            "validations": count,
            "successful": int(ok or 0),
            "failed": count - int(ok or 0),
        }
        for row_day, count, ok in daily_rows
    ]

    logger.info(
        f"📊 Token metrics ({days}d, group={group_id or 'all'}): "
        f"{generated} generated, {total_validations} validations"
    )

    return {
        "period": {"days": days, "since": since.isoformat(), "until": now.isoformat()},
        "generation": {
            "total": generated,
            "perDay": round(generated / days, 2) if days else 0.0,
            "expiredUnused": expired_unused,
            "expiryRate": _rate(expired_unused, generated),
        },
        "validation": {
            "total": total_validations,
            "successful": successful,
            "failed": total_validations - successful,
            "successRate": _rate(successful, total_validations),
            "gracePeriodUsed": grace_used,
            "failureBreakdown": failure_breakdown,
        },
        "daily": daily,
    }
