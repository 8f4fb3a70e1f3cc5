import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from lendsafe.db.base import Base


class RoleAssignment(Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        # One active (user, role, bank) at a time; global roles have a NULL bank.
        Index(
            "uq_user_roles_active",
            "user_id",
            "role",
            text("coalesce(bank_id, '')"),
            unique=True,
            postgresql_where=text("revoked_at IS NULL"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role = Column(String(50), nullable=False)
    bank_id = Column(String(64), ForeignKey("banks.id", ondelete="CASCADE"), nullable=True, index=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    assigned_by_id = Column(UUID(as_uuid=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by_id = Column(UUID(as_uuid=True), nullable=True)

    user = relationship("UserProfile", back_populates="role_assignments", foreign_keys=[user_id])
