"""
Magic token service
Issues availability form links and validates them with a bounded post-expiry grace window
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...models import TOKEN_REVOKED, AvailabilityPrompt, GroupPromptSettings, User
from ...timeutils import from_epoch, parse_iso_timestamp, to_naive_utc, utcnow
from .codec import SigningContext, TokenCodec, TokenDecodeError
from .repository import MagicTokenRepository, TokenAnalyticsRepository
from .schemas import (
    INVALID_TOKEN,
    TOKEN_EXPIRED,
    TOKEN_NOT_FOUND,
    TOKEN_REVOKED as REASON_REVOKED,
    TokenValidationResult,
)

logger = logging.getLogger(__name__)


def resolve_token_expiry_hours(db: Session, group_id: Optional[str]) -> int:
    """Group setting wins over the system default"""
    if group_id:
        settings = (
            db.query(GroupPromptSettings).filter(GroupPromptSettings.group_id == group_id).first()
        )
        if settings and settings.default_token_expiry_hours:
            return settings.default_token_expiry_hours
    return config.DEFAULT_TOKEN_EXPIRY_HOURS


class TokenService:
    """Service layer for magic token issuance, validation and revocation"""

    def __init__(
        self,
        db: Session,
        signing: SigningContext,
        grace_period_minutes: int = config.TOKEN_GRACE_PERIOD_MINUTES,
    ):
        self.db = db
        self.codec = TokenCodec(signing)
        self.repo = MagicTokenRepository()
        self.analytics = TokenAnalyticsRepository()
        self.grace_period = timedelta(minutes=grace_period_minutes)

    def issue(
        self,
        user: User,
        prompt: AvailabilityPrompt,
        expiry_hours: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Mint a signed token for (user, prompt) and persist its metadata"""
        if expiry_hours is None:
            expiry_hours = resolve_token_expiry_hours(self.db, prompt.group_id)

        issued_at = to_naive_utc(now).replace(microsecond=0) if now else utcnow()
        expires_at = issued_at + timedelta(hours=expiry_hours)
        token_id = secrets.token_hex(32)

        token = self.codec.encode(
            token_id=token_id,
            subject=user.id,
            name=user.username,
            prompt_id=prompt.id,
            expires_at=expires_at,
            issued_at=issued_at,
        )
        self.repo.create_token(self.db, token_id, user.id, prompt.id, expires_at)

        logger.info(f"🔑 Issued magic token for user {user.id} on prompt {prompt.id} ({expiry_hours}h)")
        return token

    def validate(
        self,
        token,
        form_loaded_at: Optional[Union[str, datetime]] = None,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TokenValidationResult:
        """
        Validate a presented token. Never raises for malformed input.

        Order of checks: signature/audience/issuer, stored record, revocation,
        expiry (with grace window). Every attempt is written to token analytics.
        """
        now = to_naive_utc(now) if now else utcnow()
        result = self._evaluate(token, form_loaded_at, now)

        if result.valid:
            self.repo.record_usage(self.db, result.token_record, now)
        else:
            logger.warning(f"⚠️ Magic token rejected: {result.reason}")

        self._track(token, result, ip_address, user_agent, now)
        return result

    def _evaluate(self, token, form_loaded_at, now: datetime) -> TokenValidationResult:
        try:
            claims = self.codec.decode(token)
        except TokenDecodeError:
            return TokenValidationResult(valid=False, reason=INVALID_TOKEN)

        record = self.repo.get_by_token_id(self.db, str(claims["jti"]))
        if not record:
            return TokenValidationResult(valid=False, reason=TOKEN_NOT_FOUND, claims=claims)

        if record.status == TOKEN_REVOKED:
            return TokenValidationResult(
                valid=False, reason=REASON_REVOKED, claims=claims, token_record=record
            )

        expires_at = from_epoch(claims["exp"])
        if now < expires_at:
            return TokenValidationResult(valid=True, claims=claims, token_record=record)

        # Grace applies only if the form was opened before expiry AND we are
        # still within the grace window after expiry. Both checks are required.
        loaded_at = (
            to_naive_utc(form_loaded_at)
            if isinstance(form_loaded_at, datetime)
            else parse_iso_timestamp(form_loaded_at)
        )
        if loaded_at is not None and loaded_at < expires_at and now <= expires_at + self.grace_period:
            logger.info(f"⏳ Grace period used for token {record.token_id[:8]}…")
            return TokenValidationResult(
                valid=True, claims=claims, token_record=record, grace_used=True
            )

        return TokenValidationResult(
            valid=False, reason=TOKEN_EXPIRED, claims=claims, token_record=record
        )

    def _track(self, token, result: TokenValidationResult, ip_address, user_agent, now: datetime):
        """Analytics must not change the validation outcome"""
        token_id = result.token_id or self.codec.peek_token_id(token)
        try:
            self.analytics.record_attempt(
                self.db,
                token_id=token_id,
                success=result.valid,
                reason=result.reason,
                ip_address=ip_address,
                user_agent=user_agent,
                grace_used=result.grace_used,
                timestamp=now,
            )
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to record token analytics: {e}")
            self.db.rollback()

    def revoke(self, token_id: str) -> bool:
        record = self.repo.get_by_token_id(self.db, token_id)
        if not record:
            return False
        if record.status != TOKEN_REVOKED:
            self.repo.revoke(self.db, record)
            logger.info(f"🚫 Revoked magic token {token_id[:8]}… for prompt {record.prompt_id}")
        return True

    def revoke_for_prompt(self, prompt_id: str, user_id: Optional[str] = None) -> int:
        count = self.repo.revoke_for_prompt(self.db, prompt_id, user_id)
        logger.info(f"🚫 Revoked {count} magic token(s) for prompt {prompt_id}")
        return count
