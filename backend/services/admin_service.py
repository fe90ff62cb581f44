from db.models.user import User as UserModel, Address, BankData
from db.models.subscription import Subscription, SubscriptionPlan, BillingHistory
from db.models.commission import Commission, WithdrawalRequest
from db.models.order import Order
from schemas.admin_schema import CommissionSettingsUpdate
from schemas.commission_schema import Commission as CommissionSchema
from schemas.subscription_schema import BillingEntry
from schemas.user_schema import Address as AddressSchema, BankData as BankDataSchema
from config import config
from fastapi import HTTPException, Request
from sqlalchemy import select, func, or_, desc
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from services.state_machine import CommissionStatus, WithdrawalStatus
from services.subscription_service import serialize_subscription
from services.user_service import serialize_user
from services.audit_service import log_event, log_admin_action, AuditEventType
from utils.helpers import to_money, paginate, mask_cpf
from utils.db import safe_commit
import logging

logger = logging.getLogger(__name__)


async def get_dashboard_stats(db: AsyncSession) -> dict:
    async def scalar(query):
        return (await db.execute(query)).scalar_one()

    return {
        "stats": {
            "total_users": int(await scalar(select(func.count(UserModel.id)))),
            "active_subscriptions": int(await scalar(
                select(func.count(Subscription.id)).where(Subscription.status == "ACTIVE")
            )),
            "total_revenue": to_money(await scalar(
                select(func.coalesce(func.sum(BillingHistory.amount), 0)).where(BillingHistory.status == "PAID")
            )),
            "pending_orders": int(await scalar(select(func.count(Order.id)).where(Order.status == "PENDING"))),
            "total_commissions": to_money(await scalar(
                select(func.coalesce(func.sum(Commission.amount), 0)).where(Commission.status == CommissionStatus.PAID)
            )),
            "pending_withdrawals": int(await scalar(
                select(func.count(WithdrawalRequest.id)).where(WithdrawalRequest.status == WithdrawalStatus.PENDING)
            )),
        }
    }


async def list_users(db: AsyncSession, page: int = 1, limit: int = 20, search: Optional[str] = None, status: Optional[str] = None) -> dict:
    filters = []
    if search and search.strip():
        like = f"%{search.strip()}%"
        filters.append(or_(
            UserModel.first_name.ilike(like),
            UserModel.last_name.ilike(like),
            UserModel.email.ilike(like),
            UserModel.cpf.like(like),
        ))
    if status == "active":
        filters.append(UserModel.is_active.is_(True))
    elif status == "inactive":
        filters.append(UserModel.is_active.is_(False))

    total = (await db.execute(select(func.count(UserModel.id)).where(*filters))).scalar_one()
    rows = (await db.execute(
        select(UserModel, Subscription, SubscriptionPlan)
        .outerjoin(Subscription, Subscription.user_id == UserModel.id)
        .outerjoin(SubscriptionPlan, SubscriptionPlan.id == Subscription.plan_id)
        .where(*filters)
        .order_by(desc(UserModel.created_at), desc(UserModel.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )).all()

    user_ids = [user.id for user, _, _ in rows]
    referral_counts, order_counts = {}, {}
    if user_ids:
        referral_counts = dict((await db.execute(
            select(UserModel.referred_by_id, func.count(UserModel.id))
            .where(UserModel.referred_by_id.in_(user_ids))
            .group_by(UserModel.referred_by_id)
        )).all())
        order_counts = dict((await db.execute(
            select(Order.user_id, func.count(Order.id)).where(Order.user_id.in_(user_ids)).group_by(Order.user_id)
        )).all())

    users = []
    for user, subscription, plan in rows:
        item = serialize_user(user)
        item["cpf"] = mask_cpf(user.cpf)
        item["subscription"] = {
            "status": subscription.status,
            "plan": {"name": plan.name, "price": plan.price} if plan else None,
        } if subscription else None
        item["referrals_count"] = int(referral_counts.get(user.id, 0))
        item["orders_count"] = int(order_counts.get(user.id, 0))
        users.append(item)
    return {"users": users, "pagination": paginate(page, limit, total)}


async def get_user_detail(user_id: int, db: AsyncSession, admin: UserModel = None, request: Request = None) -> dict:
    user = await db.get(UserModel, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")

    address = (await db.execute(select(Address).where(Address.user_id == user_id))).scalars().first()
    bank_data = (await db.execute(select(BankData).where(BankData.user_id == user_id))).scalars().first()
    subscription = (await db.execute(select(Subscription).where(Subscription.user_id == user_id))).scalars().first()

    subscription_data = None
    if subscription is not None:
        subscription_data = serialize_subscription(subscription)
        billing = (await db.execute(
            select(BillingHistory).where(BillingHistory.subscription_id == subscription.id)
            .order_by(desc(BillingHistory.created_at), desc(BillingHistory.id)).limit(10)
        )).scalars().all()
        subscription_data["billing_history"] = [BillingEntry.model_validate(b).model_dump() for b in billing]

    referrals = (await db.execute(
        select(UserModel, Subscription.status)
        .outerjoin(Subscription, Subscription.user_id == UserModel.id)
        .where(UserModel.referred_by_id == user_id)
        .order_by(desc(UserModel.created_at))
    )).all()
    commissions = (await db.execute(
        select(Commission).where(Commission.earner_id == user_id)
        .order_by(desc(Commission.created_at), desc(Commission.id)).limit(10)
    )).scalars().all()
    orders = (await db.execute(
        select(Order).where(Order.user_id == user_id).order_by(desc(Order.created_at), desc(Order.id)).limit(10)
    )).scalars().all()

    if bank_data is not None and admin is not None:
        log_event(db, AuditEventType.BANK_DATA_VIEWED, user_id=user_id, admin_email=admin.email,
                  entity="bank_data", entity_id=bank_data.id, request=request)
        await safe_commit(db)

    data = serialize_user(user)
    data.update({
        "address": AddressSchema.model_validate(address).model_dump() if address else None,
        "bank_data": BankDataSchema.model_validate(bank_data).model_dump() if bank_data else None,
        "subscription": subscription_data,
        "referrals": [
            {
                "id": referred.id,
                "first_name": referred.first_name,
                "last_name": referred.last_name,
                "email": referred.email,
                "created_at": referred.created_at,
                "subscription_status": sub_status,
            }
            for referred, sub_status in referrals
        ],
        "recent_commissions": [CommissionSchema.model_validate(c).model_dump() for c in commissions],
        "recent_orders": [
            {"id": o.id, "order_number": o.order_number, "total": o.total, "status": o.status, "created_at": o.created_at}
            for o in orders
        ],
    })
    return {"user": data}


async def set_user_active(admin: UserModel, user_id: int, is_active: bool, db: AsyncSession, request: Request = None) -> dict:
    user = await db.get(UserModel, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")
    if user.id == admin.id and not is_active:
        raise HTTPException(status_code=400, detail="Não é possível desativar a própria conta")

    old_value = user.is_active
    user.is_active = is_active
    log_event(
        db,
        AuditEventType.USER_REACTIVATED if is_active else AuditEventType.USER_DEACTIVATED,
        user_id=user.id,
        admin_email=admin.email,
        entity="user",
        entity_id=user.id,
        old_data={"is_active": old_value},
        new_data={"is_active": is_active},
        request=request,
    )
    await safe_commit(db)
    logger.info(f"User {user.id} is_active={is_active} set by {admin.email}")
    return {"user": serialize_user(user)}


def get_commission_settings() -> dict:
    return {
        "default_percentage": config.get_commission_percentage(),
        "release_days": config.get_commission_release_days(),
        "min_withdrawal_amount": config.get_min_withdrawal_amount(),
    }


async def update_commission_settings(admin: UserModel, data: CommissionSettingsUpdate, db: AsyncSession, request: Request = None) -> dict:
    old_settings = get_commission_settings()
    commission = {}
    if data.default_percentage is not None:
        commission["default_percentage"] = str(data.default_percentage)
    if data.release_days is not None:
        commission["release_days"] = data.release_days
    if commission:
        config.set_commission_config(commission)
    if data.min_withdrawal_amount is not None:
        config.set_min_withdrawal_amount(to_money(data.min_withdrawal_amount))

    new_settings = get_commission_settings()
    log_admin_action(db, admin.email, "commission_settings_updated", entity="config",
                     old_data=old_settings, new_data=new_settings, request=request)
    await safe_commit(db)
    return {"settings": new_settings}
