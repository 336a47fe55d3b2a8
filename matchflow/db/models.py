"""
Database Models
===============
Engagement = current stage of one client-trainer pair
EngagementEventLog = immutable history (audit log)
EventReceipt = which collaborator events were already applied
ClientJourney = client-level funnel position
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase

from matchflow.core.engagement_states import EngagementStage, JourneyStage


def utcnow():
    return datetime.now(timezone.utc)


def _in_enum(column: str, enum) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum)
    return f"{column} IN ({values})"


class Base(DeclarativeBase):
    pass


class Engagement(Base):
    """
    One row per (client, trainer). No row means "browsing".
    Rows are never deleted.
    """
    __tablename__ = "client_trainer_engagements"
    __table_args__ = (
        CheckConstraint(_in_enum("stage", EngagementStage), name="ck_engagement_stage"),
    )

    client_id = Column(String(64), primary_key=True)
    trainer_id = Column(String(64), primary_key=True, index=True)

    # FSM stage - only EngagementFSM writes this
    stage = Column(String(32), nullable=False, default=EngagementStage.BROWSING.value)
    notes = Column(Text, nullable=True)

    # Milestones, each stamped once
    liked_at = Column(DateTime(timezone=True), nullable=True)
    discovery_completed_at = Column(DateTime(timezone=True), nullable=True)
    matched_at = Column(DateTime(timezone=True), nullable=True)
    became_client_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Optimistic concurrency
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class EngagementEventLog(Base):
    """
    Append-only. Every applied transition creates a row here.
    """
    __tablename__ = "engagement_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(String(64), nullable=False, index=True)
    trainer_id = Column(String(64), nullable=False)

    # What happened?
    from_stage = Column(String(32), nullable=False)
    event = Column(String(64), nullable=False)
    to_stage = Column(String(32), nullable=False)

    # Who said so?
    source = Column(String(32), nullable=False)
    source_ref = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=True)

    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class EventReceipt(Base):
    """
    Marks (source, entity id, status) as applied so re-delivery is a no-op.
    """
    __tablename__ = "engagement_event_receipts"
    __table_args__ = (
        UniqueConstraint("source", "source_ref", "status", name="uq_event_receipt"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source = Column(String(32), nullable=False)
    source_ref = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False)
    client_id = Column(String(64), nullable=False)
    trainer_id = Column(String(64), nullable=False)
    received_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class ClientJourney(Base):
    """
    Client-level funnel position. Also used as the per-client lock row.
    """
    __tablename__ = "client_journeys"
    __table_args__ = (
        CheckConstraint(
            "stage IS NULL OR " + _in_enum("stage", JourneyStage),
            name="ck_client_journey_stage",
        ),
    )

    client_id = Column(String(64), primary_key=True)
    stage = Column(String(32), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
