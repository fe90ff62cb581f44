from db.models.user import User as UserModel
from db.models.subscription import Subscription, SubscriptionPlan, BillingHistory
from db.models.commission import Commission
from core.config import settings
from config import config
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import Optional
from services.state_machine import CommissionStatus, CommissionType
from services.audit_service import log_event, AuditEventType
from utils.helpers import calculate_commission, paginate
from utils.timing import timeit
import logging

logger = logging.getLogger(__name__)


def referral_link(user: UserModel) -> dict:
    return {
        "referral_code": user.referral_code,
        "referral_link": f"{settings.FRONTEND_URL}/register?ref={user.referral_code}",
    }


async def count_referrals(user_id: int, db: AsyncSession) -> tuple[int, int]:
    """Total referred users and those with an ACTIVE subscription"""
    total = (await db.execute(
        select(func.count(UserModel.id)).where(UserModel.referred_by_id == user_id)
    )).scalar_one()
    active = (await db.execute(
        select(func.count(UserModel.id))
        .join(Subscription, Subscription.user_id == UserModel.id)
        .where(UserModel.referred_by_id == user_id, Subscription.status == "ACTIVE")
    )).scalar_one()
    return int(total or 0), int(active or 0)


async def list_referrals(user: UserModel, db: AsyncSession, page: int = 1, limit: int = 10, status: Optional[str] = None) -> dict:
    filters = [UserModel.referred_by_id == user.id]
    if status == "active":
        filters.append(Subscription.status == "ACTIVE")
    elif status == "inactive":
        filters.append(or_(Subscription.id.is_(None), Subscription.status != "ACTIVE"))

    base = (
        select(UserModel, Subscription, SubscriptionPlan)
        .outerjoin(Subscription, Subscription.user_id == UserModel.id)
        .outerjoin(SubscriptionPlan, SubscriptionPlan.id == Subscription.plan_id)
        .where(*filters)
    )
    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
    rows = (await db.execute(
        base.order_by(UserModel.created_at.desc(), UserModel.id.desc()).offset((page - 1) * limit).limit(limit)
    )).all()

    referrals = []
    for referred, subscription, plan in rows:
        referrals.append({
            "id": referred.id,
            "first_name": referred.first_name,
            "last_name": referred.last_name,
            "created_at": referred.created_at,
            "subscription": {
                "status": subscription.status,
                "start_date": subscription.start_date,
                "plan": {"name": plan.name, "price": plan.price} if plan else None,
            } if subscription else None,
        })
    return {"referrals": referrals, "pagination": paginate(page, limit, total)}


@timeit("award_referral_commission")
async def award_referral_commission(subscriber: UserModel, billing: BillingHistory, plan: SubscriptionPlan, db: AsyncSession) -> Optional[Commission]:
    """Create the PENDING commission owed to the subscriber's referrer for one paid bill.

    Runs inside the payment transaction; the caller commits. At most one
    commission exists per billing row (unique index on billing_history_id, earner_id).
    """
    if not subscriber.referred_by_id or subscriber.referred_by_id == subscriber.id:
        return None

    existing = await db.execute(
        select(Commission.id).where(
            Commission.billing_history_id == billing.id,
            Commission.earner_id == subscriber.referred_by_id,
        )
    )
    if existing.first() is not None:
        logger.info(f"Commission already recorded for billing {billing.id}")
        return None

    percentage = config.get_commission_percentage(plan.commission_percentage if plan else None)
    amount = calculate_commission(billing.amount, percentage)
    if amount <= 0:
        return None

    commission = Commission(
        earner_id=subscriber.referred_by_id,
        source_id=subscriber.id,
        billing_history_id=billing.id,
        type=CommissionType.SUBSCRIPTION,
        amount=amount,
        percentage=percentage,
        status=CommissionStatus.PENDING,
        created_at=datetime.utcnow(),
    )
    db.add(commission)
    await db.flush()
    log_event(
        db,
        AuditEventType.COMMISSION_EARNED,
        user_id=subscriber.referred_by_id,
        entity="commission",
        entity_id=commission.id,
        metadata={"source_id": subscriber.id, "billing_history_id": billing.id, "amount": amount, "percentage": percentage},
    )
    logger.info(f"Commission {commission.id} of {amount} created for user {subscriber.referred_by_id}")
    return commission
