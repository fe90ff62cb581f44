from db.models.user import User as UserModel
from db.models.subscription import SubscriptionPlan, Subscription, BillingHistory
from schemas.subscription_schema import (
    PlanCreate, Plan, Subscription as SubscriptionSchema, PaymentRecord, BillingEntry,
)
from schemas.commission_schema import Commission as CommissionSchema
from config import config
from fastapi import HTTPException, Request
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timedelta
from typing import Optional
from services.referral_service import award_referral_commission
from services.audit_service import log_event, log_admin_action, AuditEventType
from utils.helpers import to_money
from utils.timing import timeit
from utils.db import safe_commit
import logging

logger = logging.getLogger(__name__)


class SubscriptionStatus:
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


def serialize_subscription(subscription: Subscription) -> dict:
    return SubscriptionSchema.model_validate(subscription).model_dump()


async def list_plans(db: AsyncSession, include_inactive: bool = False) -> dict:
    query = select(SubscriptionPlan).order_by(SubscriptionPlan.price.asc())
    if not include_inactive:
        query = query.where(SubscriptionPlan.is_active.is_(True))
    plans = (await db.execute(query)).scalars().all()
    return {"plans": [Plan.model_validate(p).model_dump() for p in plans]}


async def create_plan(admin: UserModel, data: PlanCreate, db: AsyncSession, request: Request = None) -> dict:
    plan = SubscriptionPlan(**data.model_dump())
    db.add(plan)
    await db.flush()
    log_admin_action(db, admin.email, "plan_created", entity="subscription_plan", entity_id=plan.id,
                     new_data=data.model_dump(), request=request)
    await safe_commit(db, client_error_message="Já existe um plano com este nome")
    return {"plan": Plan.model_validate(plan).model_dump()}


async def _get_user_subscription(user_id: int, db: AsyncSession, for_update: bool = False) -> Optional[Subscription]:
    query = select(Subscription).where(Subscription.user_id == user_id)
    if for_update:
        query = query.with_for_update()
    return (await db.execute(query)).scalars().first()


async def get_current_subscription(user: UserModel, db: AsyncSession) -> dict:
    subscription = await _get_user_subscription(user.id, db)
    if subscription is None:
        return {"subscription": None}
    history = (await db.execute(
        select(BillingHistory)
        .where(BillingHistory.subscription_id == subscription.id)
        .order_by(desc(BillingHistory.created_at), desc(BillingHistory.id))
        .limit(10)
    )).scalars().all()
    data = serialize_subscription(subscription)
    data["billing_history"] = [BillingEntry.model_validate(b).model_dump() for b in history]
    return {"subscription": data}


@timeit("subscribe")
async def subscribe(user: UserModel, plan_id: int, db: AsyncSession, request: Request = None) -> dict:
    """Create (or restart) the user's single subscription in PENDING until the first payment"""
    plan = (await db.execute(
        select(SubscriptionPlan).where(SubscriptionPlan.id == plan_id, SubscriptionPlan.is_active.is_(True))
    )).scalars().first()
    if not plan:
        raise HTTPException(status_code=404, detail="Plano não encontrado ou inativo")

    subscription = await _get_user_subscription(user.id, db, for_update=True)
    if subscription and subscription.status == SubscriptionStatus.ACTIVE:
        raise HTTPException(status_code=400, detail="Usuário já possui assinatura ativa")

    if subscription is None:
        subscription = Subscription(user_id=user.id, plan_id=plan.id, status=SubscriptionStatus.PENDING)
        db.add(subscription)
    else:
        subscription.plan_id = plan.id
        subscription.status = SubscriptionStatus.PENDING
        subscription.start_date = None
        subscription.end_date = None
        subscription.next_billing_date = None
    subscription.plan = plan
    await db.flush()

    log_event(db, AuditEventType.SUBSCRIPTION_CREATED, user_id=user.id, entity="subscription",
              entity_id=subscription.id, new_data={"plan_id": plan.id, "price": plan.price}, request=request)
    await safe_commit(db)
    return {"subscription": serialize_subscription(subscription)}


async def cancel_subscription(user: UserModel, db: AsyncSession, reason: Optional[str] = None, request: Request = None) -> dict:
    subscription = await _get_user_subscription(user.id, db, for_update=True)
    if not subscription:
        raise HTTPException(status_code=404, detail="Assinatura não encontrada")
    if subscription.status == SubscriptionStatus.CANCELED:
        raise HTTPException(status_code=400, detail="Assinatura já cancelada")

    old_status = subscription.status
    subscription.status = SubscriptionStatus.CANCELED
    subscription.end_date = datetime.utcnow()
    log_event(db, AuditEventType.SUBSCRIPTION_CANCELED, user_id=user.id, entity="subscription",
              entity_id=subscription.id, old_data={"status": old_status},
              new_data={"status": SubscriptionStatus.CANCELED}, metadata={"reason": reason}, request=request)
    await safe_commit(db)
    return {"subscription": serialize_subscription(subscription)}


@timeit("record_payment_success")
async def record_payment_success(admin: UserModel, subscription_id: int, payment: PaymentRecord, db: AsyncSession, request: Request = None) -> dict:
    """Book a successful charge: billing row, subscription activation, referral commission.

    Idempotent per external reference; a repeated reference returns the original
    billing row and creates nothing.
    """
    existing = (await db.execute(
        select(BillingHistory).where(BillingHistory.external_reference == payment.external_reference)
    )).scalars().first()
    if existing is not None:
        logger.info(f"Payment {payment.external_reference} already recorded as billing {existing.id}")
        return {"billing": BillingEntry.model_validate(existing).model_dump(), "commission": None, "duplicate": True}

    subscription = (await db.execute(
        select(Subscription).where(Subscription.id == subscription_id).with_for_update()
    )).scalars().first()
    if not subscription:
        raise HTTPException(status_code=404, detail="Assinatura não encontrada")
    if subscription.status == SubscriptionStatus.CANCELED:
        raise HTTPException(status_code=400, detail="Assinatura já cancelada")

    plan = subscription.plan
    amount = to_money(payment.amount if payment.amount is not None else plan.price)
    now = datetime.utcnow()

    billing = BillingHistory(
        subscription_id=subscription.id,
        amount=amount,
        status="PAID",
        payment_method=payment.payment_method,
        external_reference=payment.external_reference,
        paid_at=now,
    )
    db.add(billing)
    await db.flush()

    if subscription.start_date is None:
        subscription.start_date = now
    period_start = max(now, subscription.next_billing_date or now)
    subscription.next_billing_date = period_start + timedelta(days=config.get_billing_cycle_days(plan.billing_cycle))
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.end_date = None

    subscriber = await db.get(UserModel, subscription.user_id)
    commission = await award_referral_commission(subscriber, billing, plan, db)

    log_event(db, AuditEventType.PAYMENT_PROCESSED, user_id=subscription.user_id, admin_email=admin.email,
              entity="billing_history", entity_id=billing.id,
              metadata={"amount": amount, "method": payment.payment_method, "external_reference": payment.external_reference},
              request=request)
    await safe_commit(db, client_error_message="Pagamento já registrado")
    return {
        "billing": BillingEntry.model_validate(billing).model_dump(),
        "subscription": serialize_subscription(subscription),
        "commission": CommissionSchema.model_validate(commission).model_dump() if commission else None,
        "duplicate": False,
    }
