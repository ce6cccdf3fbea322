from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
import uuid

from .database import Base
from .schema import ChecklistDefinition, RunStatus, TemplateStatus, parse_definition
from .utils import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class Machine(Base):
    __tablename__ = "machines"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False, index=True)
    location = Column(String, nullable=True)
    work_centre = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    runs = relationship("ChecklistRun", back_populates="machine")


class ChecklistTemplate(Base):
    __tablename__ = "checklist_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=TemplateStatus.DRAFT.value, index=True)
    version = Column(Integer, nullable=False, default=1)
    machine_id = Column(String(36), ForeignKey("machines.id"), nullable=True, index=True)
    frequency = Column(String(20), nullable=True)
    json_definition = Column(JSON, nullable=False, default=dict)
    # item ids that were removed from the definition and may not come back
    retired_item_ids = Column(JSON, nullable=False, default=list)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    machine = relationship("Machine")
    runs = relationship("ChecklistRun", back_populates="template")

    @property
    def definition(self) -> ChecklistDefinition:
        return parse_definition(self.json_definition, self.id)

    @property
    def is_active(self) -> bool:
        return self.status == TemplateStatus.ACTIVE.value


class ChecklistRun(Base):
    __tablename__ = "checklist_runs"
    __table_args__ = (
        Index("ix_checklist_runs_pair", "template_id", "machine_id", "started_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    template_id = Column(String(36), ForeignKey("checklist_templates.id"), nullable=False)
    machine_id = Column(String(36), ForeignKey("machines.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    status = Column(String(20), nullable=False, default=RunStatus.IN_PROGRESS.value, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    job_number = Column(String, nullable=True)
    part_number = Column(String, nullable=True)
    program_name = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    template = relationship("ChecklistTemplate", back_populates="runs")
    machine = relationship("Machine", back_populates="runs")
    answers = relationship("ChecklistAnswer", back_populates="run", order_by="ChecklistAnswer.answered_at")

    @property
    def is_open(self) -> bool:
        return self.status == RunStatus.IN_PROGRESS.value


class ChecklistAnswer(Base):
    __tablename__ = "checklist_answers"
    __table_args__ = (
        UniqueConstraint("run_id", "item_id", name="uq_checklist_answers_run_item"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    run_id = Column(String(36), ForeignKey("checklist_runs.id"), nullable=False, index=True)
    section_id = Column(String, nullable=True)
    item_id = Column(String, nullable=False)
    value = Column(JSON, nullable=True)
    passed = Column(Boolean, nullable=False, default=True)
    comment = Column(Text, nullable=True)
    photo_url = Column(String, nullable=True)
    answered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    run = relationship("ChecklistRun", back_populates="answers")


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), nullable=True)
    action_type = Column(String(40), nullable=False)
    entity_type = Column(String(40), nullable=False)
    entity_id = Column(String(36), nullable=False)
    machine_id = Column(String(36), nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
