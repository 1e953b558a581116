from __future__ import annotations

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, Float, ForeignKey,
    UniqueConstraint, Index, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on Postgres, plain JSON on SQLite (tests / local dev)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# ──────────────────────────────────────────────────────────────────────────────
# Core
# ──────────────────────────────────────────────────────────────────────────────
class User(Base):
    __tablename__ = "users"
    id           = Column(Integer, primary_key=True)
    display_name = Column(String(160), nullable=True)
    created_at   = Column(DateTime, default=datetime.utcnow, nullable=False)

    plan         = relationship("PlanProgress", back_populates="user", uselist=False,
                                cascade="all, delete-orphan")


class PlanProgress(Base):
    """Current position of a user in the programme. One row per user."""
    __tablename__ = "plan_progress"
    id                 = Column(Integer, primary_key=True)
    user_id            = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    start_date         = Column(Date, nullable=False)
    current_week       = Column(Integer, nullable=False, default=1)
    current_phase      = Column(Integer, nullable=False, default=1)
    current_targets    = Column(JSONType, nullable=False)      # {"steps":..,"water":..,"sleep":..,"mood":..}
    focus              = Column(Text, nullable=True)
    week_extensions    = Column(Integer, nullable=False, default=0)
    last_assessment_at = Column(DateTime, nullable=True)
    progression_log    = Column(JSONType, nullable=True)       # append-only list of transitions
    created_at         = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at         = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user               = relationship("User", back_populates="plan")

# ──────────────────────────────────────────────────────────────────────────────
# Habit data
# ──────────────────────────────────────────────────────────────────────────────
class DailyPillarMetric(Base):
    __tablename__ = "daily_pillar_metrics"
    __table_args__ = (
        UniqueConstraint("user_id", "day", "pillar", name="uq_daily_metric_user_day_pillar"),
        Index("ix_daily_metric_user_day", "user_id", "day"),
    )
    id         = Column(Integer, primary_key=True)
    user_id    = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    day        = Column(Date, nullable=False)
    pillar     = Column(String(16), nullable=False)     # steps | water | sleep | mood
    actual     = Column(Float, nullable=True)
    target     = Column(Float, nullable=True)
    source     = Column(String(32), nullable=True)     # manual | device | backfill
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

# ──────────────────────────────────────────────────────────────────────────────
# Weekly assessment
# ──────────────────────────────────────────────────────────────────────────────
class PendingAssessment(Base):
    """The single undecided (or escalated) assessment shown to a user."""
    __tablename__ = "pending_assessments"
    id              = Column(Integer, primary_key=True)
    user_id         = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    assessment_week = Column(Integer, nullable=False)
    week_number     = Column(Integer, nullable=False)
    status          = Column(String(16), nullable=False, default="pending")   # pending | escalated
    payload         = Column(JSONType, nullable=False)
    created_at      = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at      = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class WeeklyPerformanceHistory(Base):
    """Insert-only record of a graded week and the decision taken for it."""
    __tablename__ = "weekly_performance_history"
    __table_args__ = (
        UniqueConstraint("user_id", "assessment_week", name="uq_weekly_history_user_week"),
        Index("ix_weekly_history_user_week_phase", "user_id", "week_number", "phase_number"),
    )
    id                         = Column(Integer, primary_key=True)
    user_id                    = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assessment_week            = Column(Integer, nullable=False)
    week_number                = Column(Integer, nullable=False)
    phase_number               = Column(Integer, nullable=False)
    start_date                 = Column(Date, nullable=False)
    end_date                   = Column(Date, nullable=False)

    steps_achievement_avg      = Column(Float, nullable=False, default=0)
    water_achievement_avg      = Column(Float, nullable=False, default=0)
    sleep_achievement_avg      = Column(Float, nullable=False, default=0)
    mood_achievement_avg       = Column(Float, nullable=False, default=0)
    overall_achievement_avg    = Column(Float, nullable=False, default=0)

    consistency_days           = Column(Integer, nullable=False, default=0)
    total_tracking_days        = Column(Integer, nullable=False, default=0)

    progression_recommendation = Column(String(16), nullable=False)   # advance | extend | reset
    user_decision              = Column(String(32), nullable=False)   # accepted | override_advance | coach_consultation
    applied_transition         = Column(String(16), nullable=True)    # null while escalated
    executed_by                = Column(String(16), nullable=False, default="user")
    confidence                 = Column(Integer, nullable=True)
    decision_reasoning         = Column(JSONType, nullable=True)
    targets_at_assessment      = Column(JSONType, nullable=True)

    strongest_pillar           = Column(String(16), nullable=True)
    weakest_pillar             = Column(String(16), nullable=True)

    assessed_at                = Column(DateTime, nullable=False)
    created_at                 = Column(DateTime, default=datetime.utcnow, nullable=False)

# ──────────────────────────────────────────────────────────────────────────────
# Background jobs + audit
# ──────────────────────────────────────────────────────────────────────────────
class BackgroundJob(Base):
    __tablename__ = "background_jobs"
    __table_args__ = (
        Index("ix_background_jobs_status_available_at", "status", "available_at"),
    )
    id           = Column(Integer, primary_key=True)
    kind         = Column(String(64), nullable=False, index=True)
    status       = Column(String(16), nullable=False, default="pending")   # pending|running|retry|done|error
    user_id      = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    payload      = Column(JSONType, nullable=True)
    result       = Column(JSONType, nullable=True)
    error        = Column(Text, nullable=True)
    attempts     = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime, nullable=True)
    locked_at    = Column(DateTime, nullable=True)
    locked_by    = Column(String(120), nullable=True)
    created_at   = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at   = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class JobAudit(Base):
    __tablename__ = "job_audits"
    id         = Column(Integer, primary_key=True)
    user_id    = Column(Integer, nullable=True, index=True)
    job_name   = Column(String(120), nullable=True)
    status     = Column(String(32), nullable=True)    # started|ok|error
    payload    = Column(JSONType, nullable=True)
    error      = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
