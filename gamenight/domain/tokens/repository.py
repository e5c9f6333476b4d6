"""Token store - Database operations for magic tokens and their analytics"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import TOKEN_ACTIVE, TOKEN_REVOKED, MagicToken, TokenAnalytics


class MagicTokenRepository:
    """Repository for magic token metadata"""

    @staticmethod
    def create_token(
        db: Session, token_id: str, user_id: str, prompt_id: str, expires_at: datetime
    ) -> MagicToken:
        record = MagicToken(
            token_id=token_id,
            user_id=user_id,
            prompt_id=prompt_id,
            expires_at=expires_at,
            status=TOKEN_ACTIVE,
            usage_count=0,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def get_by_token_id(db: Session, token_id: str) -> Optional[MagicToken]:
        return db.query(MagicToken).filter(MagicToken.token_id == token_id).first()

    @staticmethod
    def record_usage(db: Session, record: MagicToken, used_at: datetime) -> MagicToken:
        """Increment usage in the database so concurrent validations never lose a count"""
        db.query(MagicToken).filter(MagicToken.id == record.id).update(
            {
                MagicToken.usage_count: MagicToken.usage_count + 1,
                MagicToken.last_used_at: used_at,
            },
            synchronize_session=False,
        )
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def revoke(db: Session, record: MagicToken) -> MagicToken:
        record.status = TOKEN_REVOKED
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def revoke_for_prompt(db: Session, prompt_id: str, user_id: Optional[str] = None) -> int:
        query = db.query(MagicToken).filter(
            MagicToken.prompt_id == prompt_id, MagicToken.status == TOKEN_ACTIVE
        )
        if user_id:
            query = query.filter(MagicToken.user_id == user_id)
        count = query.update({MagicToken.status: TOKEN_REVOKED}, synchronize_session=False)
        db.commit()
        return count

    @staticmethod
    def count_issued_since(db: Session, since: datetime) -> int:
        return db.query(MagicToken).filter(MagicToken.created_at >= since).count()


class TokenAnalyticsRepository:
    """Append-only log of validation attempts"""

    @staticmethod
    def record_attempt(
        db: Session,
        token_id: Optional[str],
        success: bool,
        reason: Optional[str],
        ip_address: Optional[str],
        user_agent: Optional[str],
        grace_used: bool,
        timestamp: datetime,
    ) -> TokenAnalytics:
        entry = TokenAnalytics(
            token_id=token_id,
            validation_success=success,
            failure_reason=None if success else reason,
            ip_address=ip_address[:45] if ip_address else None,
            user_agent=user_agent[:500] if user_agent else None,
            grace_period_used=grace_used,
            timestamp=timestamp,
        )
        db.add(entry)
        db.commit()
        return entry
