from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Boolean, Index, ForeignKey, Text
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from db.session import Base


class AuditLog(Base):
    """Append-only record of security and data-handling events"""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)
    admin_email = Column(String(255), index=True, nullable=True)
    event_type = Column(String(100), index=True, nullable=False)
    entity = Column(String(100), nullable=True)
    entity_id = Column(String(64), nullable=True)
    old_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)
    details = Column("metadata", JSON, default=dict)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    success = Column(Boolean, default=True, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), index=True)

    __table_args__ = (
        Index("ix_audit_event_type_created_at", "event_type", "created_at"),
        Index("ix_audit_user_created_at", "user_id", "created_at"),
    )
