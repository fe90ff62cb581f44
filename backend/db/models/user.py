from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, Date, DateTime, Index, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from sqlalchemy.orm import relationship
from db.session import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    # not unique: anonymized accounts share the sentinel cpf; registration rejects live duplicates
    cpf = Column(String(11), index=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    birth_date = Column(Date, nullable=True)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    referral_code = Column(String(8), unique=True, index=True, nullable=False)
    referred_by_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token = Column(String(255), nullable=True)
    email_verification_token_expires = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=datetime.utcnow)

    referred_by = relationship("User", remote_side=[id], lazy="raise")
    subscription = relationship("Subscription", back_populates="user", uselist=False, lazy="raise")

    __table_args__ = (
        Index("ix_users_referred_by_created", "referred_by_id", "created_at"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    street = Column(String(255), nullable=False)
    number = Column(String(20), nullable=False)
    complement = Column(String(255), nullable=True)
    neighborhood = Column(String(100), nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(2), nullable=False)
    zip_code = Column(String(8), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=datetime.utcnow)


class BankData(Base):
    __tablename__ = "bank_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    bank_code = Column(String(10), nullable=False)
    bank_name = Column(String(100), nullable=False)
    agency = Column(String(10), nullable=False)
    account = Column(String(20), nullable=False)
    account_type = Column(String(20), nullable=False)  # corrente | poupanca
    holder_name = Column(String(255), nullable=False)
    holder_cpf = Column(String(11), nullable=False)
    pix_key = Column(String(255), nullable=True)
    pix_key_type = Column(String(20), nullable=True)  # cpf | email | phone | random
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=datetime.utcnow)

    def snapshot(self) -> dict:
        """Point-in-time copy stored on withdrawal requests"""
        return {
            "bank_code": self.bank_code,
            "bank_name": self.bank_name,
            "agency": self.agency,
            "account": self.account,
            "account_type": self.account_type,
            "holder_name": self.holder_name,
            "holder_cpf": self.holder_cpf,
            "pix_key": self.pix_key,
            "pix_key_type": self.pix_key_type,
        }


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    email_notifications = Column(Boolean, default=True, nullable=False)
    push_notifications = Column(Boolean, default=False, nullable=False)
    marketing_emails = Column(Boolean, default=False, nullable=False)
    preferred_categories = Column(JSON, default=list)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
