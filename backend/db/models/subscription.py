from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, ForeignKey, Index, Text
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from sqlalchemy.orm import relationship
from db.session import Base


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, default="")
    price = Column(Numeric(10, 2), nullable=False)
    billing_cycle = Column(String(20), default="MONTHLY", nullable=False)
    benefits = Column(JSON, default=list)
    # fraction, e.g. 0.15; falls back to the configured default when null
    commission_percentage = Column(Numeric(5, 4), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=datetime.utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), index=True, nullable=False)
    status = Column(String(20), default="PENDING", index=True, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    next_billing_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=datetime.utcnow)

    user = relationship("User", back_populates="subscription", lazy="raise")
    plan = relationship("SubscriptionPlan", lazy="joined")


class BillingHistory(Base):
    __tablename__ = "billing_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), index=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), default="PENDING", nullable=False)
    payment_method = Column(String(50), nullable=True)
    external_reference = Column(String(255), unique=True, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), index=True)

    __table_args__ = (
        Index("ix_billing_history_subscription_created", "subscription_id", "created_at"),
    )
