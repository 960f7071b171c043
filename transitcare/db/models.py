import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from transitcare.db.base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class ProtocolAssignment(Base):
    __tablename__ = "protocol_assignments"
    id = Column(Integer, primary_key=True)
    episode_id = Column(String, nullable=False)
    condition_code = Column(String, nullable=False)
    education_tier = Column(String, nullable=False, default="MEDIUM")
    risk_level = Column(String, nullable=True)
    rules = Column(JSON, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        # At most one active assignment per episode
        Index(
            "uq_protocol_assignment_active_episode",
            "episode_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )


class AgentInteraction(Base):
    __tablename__ = "agent_interactions"
    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String, nullable=False)
    episode_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="IN_PROGRESS")
    rules_snapshot = Column(JSON(none_as_null=True))
    last_sequence = Column(Integer, nullable=False, default=0)
    summary = Column(Text)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index("idx_interaction_patient", "patient_id", "started_at"),
        Index("idx_interaction_episode", "episode_id"),
    )


class AgentMessage(Base):
    __tablename__ = "agent_messages"
    id = Column(Integer, primary_key=True)
    interaction_id = Column(String(36), ForeignKey("agent_interactions.id"), nullable=False)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    sequence_number = Column(Integer, nullable=False)
    tool_name = Column(String)
    tool_args = Column(JSON(none_as_null=True))
    tool_results = Column(JSON(none_as_null=True))
    decision_hint = Column(JSON(none_as_null=True))
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("interaction_id", "sequence_number", name="uq_message_sequence"),
    )


class EscalationTask(Base):
    __tablename__ = "escalation_tasks"
    id = Column(String(36), primary_key=True, default=new_id)
    episode_id = Column(String, nullable=False)
    interaction_id = Column(String(36), ForeignKey("agent_interactions.id"), nullable=True)
    severity = Column(String, nullable=False)
    priority = Column(String, nullable=False)
    reason_codes = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False, default="OPEN")
    sla_due_at = Column(DateTime, nullable=False)
    assigned_to = Column(String)
    picked_up_at = Column(DateTime)
    resolution_outcome = Column(String)
    resolution_notes = Column(Text)
    resolved_at = Column(DateTime)
    resolved_by = Column(String)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_task_status_due", "status", "sla_due_at"),
        Index("idx_task_episode", "episode_id"),
    )
