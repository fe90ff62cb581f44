from datetime import datetime
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Index, Text
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from sqlalchemy.orm import relationship
from db.session import Base


class Commission(Base):
    __tablename__ = "commissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    earner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    source_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    billing_history_id = Column(Integer, ForeignKey("billing_history.id"), nullable=True)
    type = Column(String(20), default="SUBSCRIPTION", nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    percentage = Column(Numeric(5, 4), nullable=False)
    status = Column(String(20), default="PENDING", nullable=False)
    # set while the row is reserved by (or paid through) a withdrawal request
    withdrawal_request_id = Column(Integer, ForeignKey("withdrawal_requests.id"), index=True, nullable=True)
    available_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=datetime.utcnow)

    source = relationship("User", foreign_keys=[source_id], lazy="raise")

    __table_args__ = (
        Index("ix_commissions_earner_status", "earner_id", "status"),
        Index("ix_commissions_status_created", "status", "created_at"),
        Index("ix_commissions_billing_earner", "billing_history_id", "earner_id", unique=True),
    )


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), default="PENDING", nullable=False)
    # denormalized copy of the bank data at request time
    bank_data = Column(JSON, nullable=False)
    admin_notes = Column(Text, nullable=True)
    carry_commission_id = Column(Integer, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=datetime.utcnow)

    user = relationship("User", lazy="raise")

    __table_args__ = (
        Index("ix_withdrawals_user_status", "user_id", "status"),
    )
