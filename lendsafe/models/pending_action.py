import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID

from lendsafe.db.base import Base


class PendingAction(Base):
    __tablename__ = "pending_actions"
    __table_args__ = (
        Index(
            "uq_pending_actions_open_request",
            "bank_id",
            "action_type",
            "dedupe_key",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'PROCESSING')"),
        ),
        Index("ix_pending_actions_bank_status", "bank_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action_type = Column(String(64), nullable=False)
    payload = Column(JSONB, nullable=False)
    bank_id = Column(String(64), ForeignKey("banks.id", ondelete="RESTRICT"), nullable=False)
    target_model = Column(String(64), nullable=False)
    dedupe_key = Column(String(320), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING", server_default="PENDING")
    requested_by_id = Column(UUID(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False)
    requested_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    reviewed_by_id = Column(UUID(as_uuid=True), ForeignKey("user_profiles.id"), nullable=True)
    review_remarks = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    target_record_id = Column(String(255), nullable=True)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    failure_detail = Column(Text, nullable=True)
    failure_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_failed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
