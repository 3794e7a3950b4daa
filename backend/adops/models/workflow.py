"""
Workflow configuration and execution records
Rules (triggers), their version snapshots, the execution log and tenant settings.
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Boolean, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from adops.database import Base


class ExecutionStatus(str, Enum):
    """Outcome of one rule evaluation"""
    RUNNING = "running"     # key claimed, actions in progress
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"         # unexpected failure outside the actions


class WorkflowTrigger(Base):
    """
    Tenant-configured rule: event filter, optional condition tree, ordered actions
    Never physically deleted; delete means is_enabled=False
    """
    __tablename__ = "workflow_triggers"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    event = Column(String(50), nullable=False, index=True)
    condition = Column(JSON)                        # None = always
    actions = Column(JSON, nullable=False, default=list)
    is_enabled = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=100)   # higher runs first
    version = Column(Integer, nullable=False, default=1)
    execution_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime)
    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    versions = relationship("WorkflowTriggerVersion", back_populates="trigger",
                            order_by="WorkflowTriggerVersion.version")

    def snapshot(self):
        """Configuration fields captured in a version row"""
        return {
            "name": self.name,
            "description": self.description,
            "event": self.event,
            "condition": self.condition,
            "actions": self.actions,
            "is_enabled": self.is_enabled,
            "priority": self.priority,
        }


class WorkflowTriggerVersion(Base):
    """Append-only snapshot of every trigger configuration write"""
    __tablename__ = "workflow_trigger_versions"
    __table_args__ = (
        UniqueConstraint("trigger_id", "version", name="uq_trigger_version"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    trigger_id = Column(Integer, ForeignKey("workflow_triggers.id"), nullable=False)
    version = Column(Integer, nullable=False)
    snapshot = Column(JSON, nullable=False)
    changed_by = Column(Integer)
    changed_at = Column(DateTime, default=datetime.utcnow)
    change_reason = Column(Text)

    trigger = relationship("WorkflowTrigger", back_populates="versions")


class TriggerExecutionLog(Base):
    """
    Exactly one row per (trigger, entity, event)
    The row is inserted as "running" before any action runs and finalized
    afterwards; the unique constraint is the idempotency key.
    """
    __tablename__ = "trigger_execution_logs"
    __table_args__ = (
        UniqueConstraint("trigger_id", "entity_id", "event", name="uq_trigger_execution"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    trigger_id = Column(Integer, ForeignKey("workflow_triggers.id"), nullable=False)
    event = Column(String(50), nullable=False)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)       # ExecutionStatus
    action_results = Column(JSON, default=list)
    error_message = Column(Text)
    executed_at = Column(DateTime, default=datetime.utcnow)


class WorkflowSetting(Base):
    """Per-tenant workflow setting (JSON value under a dotted key)"""
    __tablename__ = "workflow_settings"
    __table_args__ = (
        UniqueConstraint("organization_id", "key", name="uq_workflow_setting"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    value = Column(JSON, nullable=False)
    updated_by = Column(Integer)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
