import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base
from .timeutils import utcnow

# Prompt lifecycle states
PROMPT_PENDING = "pending"
PROMPT_ACTIVE = "active"
PROMPT_CLOSED = "closed"
PROMPT_CONVERTED = "converted"

# Magic token states
TOKEN_ACTIVE = "active"
TOKEN_REVOKED = "revoked"

# Group roles
ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
ADMIN_ROLES = (ROLE_OWNER, ROLE_ADMIN)


def generate_uuid():
    """Generate an opaque string identifier"""
    return str(uuid.uuid4())


# ============================================================================
# External collaborators - minimal rows read by the availability core
# ============================================================================


class User(Base):
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)  # Identity provider subject
    username = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    email_notifications_enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    memberships = relationship("GroupMembership", back_populates="user", cascade="all, delete-orphan")


class Group(Base):
    __tablename__ = "groups"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    memberships = relationship("GroupMembership", back_populates="group", cascade="all, delete-orphan")
    prompts = relationship("AvailabilityPrompt", back_populates="group", cascade="all, delete-orphan")
    prompt_settings = relationship(
        "GroupPromptSettings", back_populates="group", uselist=False, cascade="all, delete-orphan"
    )


class GroupMembership(Base):
    __tablename__ = "group_memberships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), default=ROLE_MEMBER, nullable=False)  # owner, admin, member

    group = relationship("Group", back_populates="memberships")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_membership"),)


class Game(Base):
    __tablename__ = "games"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    min_players = Column(Integer, nullable=True)
    playing_time_minutes = Column(Integer, nullable=True)


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    group_id = Column(String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    game_id = Column(String(36), ForeignKey("games.id", ondelete="SET NULL"), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    created_by_user_id = Column(String(128), nullable=True)  # None when auto-scheduled
    is_auto_scheduled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ============================================================================
# Availability core
# ============================================================================


class GroupPromptSettings(Base):
    __tablename__ = "group_prompt_settings"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    group_id = Column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    schedule_day_of_week = Column(Integer, nullable=True)  # 0 = Sunday ... 6 = Saturday
    schedule_time = Column(String(8), nullable=True)  # HH:MM or HH:MM:SS, local to schedule_timezone
    schedule_timezone = Column(String(64), default="UTC", nullable=False)
    default_deadline_hours = Column(Integer, default=72, nullable=False)
    default_token_expiry_hours = Column(Integer, default=168, nullable=False)
    min_participants = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    template_name = Column(String(255), nullable=True)
    template_config = Column(JSON, nullable=True)  # e.g. {"blind_voting": true, "message": "..."}
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    group = relationship("Group", back_populates="prompt_settings")


class AvailabilityPrompt(Base):
    __tablename__ = "availability_prompts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    group_id = Column(String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    game_id = Column(String(36), ForeignKey("games.id", ondelete="SET NULL"), nullable=True)
    prompt_date = Column(DateTime, default=utcnow, nullable=False)
    deadline = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), default=PROMPT_PENDING, nullable=False, index=True)
    week_identifier = Column(String(10), nullable=False)  # e.g. 2026-W42
    created_by_settings_id = Column(
        String(36), ForeignKey("group_prompt_settings.id", ondelete="SET NULL"), nullable=True
    )
    custom_message = Column(Text, nullable=True)
    auto_schedule_enabled = Column(Boolean, default=False, nullable=False)
    blind_voting_enabled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    group = relationship("Group", back_populates="prompts")
    game = relationship("Game")
    responses = relationship(
        "AvailabilityResponse", back_populates="prompt", cascade="all, delete-orphan"
    )
    suggestions = relationship(
        "AvailabilitySuggestion", back_populates="prompt", cascade="all, delete-orphan"
    )
    tokens = relationship("MagicToken", back_populates="prompt", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("group_id", "week_identifier", name="uq_prompt_group_week"),
    )


class AvailabilityResponse(Base):
    __tablename__ = "availability_responses"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    prompt_id = Column(
        String(36), ForeignKey("availability_prompts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # [{"start", "end", "start_utc", "end_utc", "preference"}] - start/end as submitted
    time_slots = Column(JSON, default=list, nullable=False)
    user_timezone = Column(String(64), default="UTC", nullable=False)
    submitted_at = Column(DateTime, nullable=True)  # None for reminder placeholder rows
    magic_token_used = Column(String(128), nullable=True)
    is_late = Column(Boolean, default=False, nullable=False)
    last_reminded_at = Column(DateTime, nullable=True)
    reminder_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    prompt = relationship("AvailabilityPrompt", back_populates="responses")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("prompt_id", "user_id", name="uq_response_prompt_user"),)


class AvailabilitySuggestion(Base):
    __tablename__ = "availability_suggestions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    prompt_id = Column(
        String(36), ForeignKey("availability_prompts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    suggested_start = Column(DateTime, nullable=False)
    suggested_end = Column(DateTime, nullable=False)
    participant_count = Column(Integer, default=0, nullable=False)
    participant_user_ids = Column(JSON, default=list, nullable=False)
    preferred_count = Column(Integer, default=0, nullable=False)
    meets_minimum = Column(Boolean, default=False, nullable=False, index=True)
    score = Column(Float, default=0.0, nullable=False)
    rank = Column(Integer, nullable=False)
    converted_to_event_id = Column(
        String(36), ForeignKey("events.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)

    prompt = relationship("AvailabilityPrompt", back_populates="suggestions")

    __table_args__ = (Index("ix_suggestion_window", "suggested_start", "suggested_end"),)


class MagicToken(Base):
    __tablename__ = "magic_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(String(128), unique=True, nullable=False)  # jti claim
    user_id = Column(String(128), nullable=False, index=True)
    prompt_id = Column(
        String(36), ForeignKey("availability_prompts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(String(20), default=TOKEN_ACTIVE, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    usage_count = Column(Integer, default=0, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    prompt = relationship("AvailabilityPrompt", back_populates="tokens")


class TokenAnalytics(Base):
    __tablename__ = "token_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(String(128), nullable=True)  # None when the token could not be parsed
    validation_success = Column(Boolean, nullable=False)
    failure_reason = Column(String(50), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    grace_period_used = Column(Boolean, default=False, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (Index("ix_token_analytics_dashboard", "timestamp", "validation_success"),)
