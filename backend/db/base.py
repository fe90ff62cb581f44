from db.session import Base, engine
from db.models.user import User, Address, BankData, UserPreferences
from db.models.subscription import SubscriptionPlan, Subscription, BillingHistory
from db.models.commission import Commission, WithdrawalRequest
from db.models.coupon import Coupon, UserCoupon
from db.models.order import Product, Order, OrderItem
from db.models.lgpd import UserConsent, DataSubjectRequest
from db.models.audit_log import AuditLog
from db.models.password_reset_otp import PasswordResetOTP
import logging
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

async def initialize_database():
    """Create tables only. Seed plans, products and coupons through the admin API."""
    try:
        assert isinstance(engine, AsyncEngine)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise e
