from db.models.user import User as UserModel
from db.models.coupon import Coupon, UserCoupon
from schemas.order_schema import CouponCreate, Coupon as CouponSchema
from fastapi import HTTPException, Request
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from services.audit_service import log_admin_action
from utils.helpers import to_money
from utils.db import safe_commit
import logging

logger = logging.getLogger(__name__)


def compute_discount(coupon: Coupon, cart_total) -> Decimal:
    """Discount for a cart; percentage coupons are capped by maximum_discount and no coupon exceeds the cart"""
    cart_total = to_money(cart_total)
    if coupon.type == "PERCENTAGE":
        discount = to_money(cart_total * Decimal(str(coupon.value)) / Decimal("100"))
        if coupon.maximum_discount is not None:
            discount = min(discount, to_money(coupon.maximum_discount))
    else:
        discount = to_money(coupon.value)
    return max(Decimal("0.00"), min(discount, cart_total))


def check_coupon_usable(coupon: Coupon, user_coupon: Optional[UserCoupon], cart_total, now: Optional[datetime] = None) -> None:
    """Raise 400 with the first failing rule, or return quietly"""
    now = now or datetime.utcnow()
    if user_coupon is None:
        raise HTTPException(status_code=404, detail="Cupom não encontrado")
    if not coupon.is_active:
        raise HTTPException(status_code=400, detail="Cupom inativo")
    if coupon.start_date and coupon.start_date.replace(tzinfo=None) > now:
        raise HTTPException(status_code=400, detail="Cupom ainda não está válido")
    if coupon.end_date and coupon.end_date.replace(tzinfo=None) < now:
        raise HTTPException(status_code=400, detail="Cupom expirado")
    if user_coupon.usage_count >= coupon.usage_limit_per_user:
        raise HTTPException(status_code=400, detail="Limite de uso do cupom atingido")
    if coupon.minimum_amount is not None and to_money(cart_total) < to_money(coupon.minimum_amount):
        raise HTTPException(status_code=400, detail=f"Valor mínimo para este cupom é R$ {to_money(coupon.minimum_amount)}")


async def find_user_coupon(user_id: int, code: str, db: AsyncSession, for_update: bool = False) -> tuple[Optional[Coupon], Optional[UserCoupon]]:
    coupon = (await db.execute(select(Coupon).where(Coupon.code == code.strip().upper()))).scalars().first()
    if coupon is None:
        return None, None
    query = select(UserCoupon).where(UserCoupon.user_id == user_id, UserCoupon.coupon_id == coupon.id)
    if for_update:
        query = query.with_for_update()
    user_coupon = (await db.execute(query)).scalars().first()
    return coupon, user_coupon


def _serialize_user_coupon(user_coupon: UserCoupon) -> dict:
    coupon = user_coupon.coupon
    data = CouponSchema.model_validate(coupon).model_dump()
    data["usage_count"] = user_coupon.usage_count
    data["remaining_uses"] = max(0, coupon.usage_limit_per_user - user_coupon.usage_count)
    data["last_used_at"] = user_coupon.last_used_at
    return data


async def list_user_coupons(user: UserModel, db: AsyncSession) -> dict:
    now = datetime.utcnow()
    rows = (await db.execute(
        select(UserCoupon)
        .join(Coupon, Coupon.id == UserCoupon.coupon_id)
        .where(
            UserCoupon.user_id == user.id,
            Coupon.is_active.is_(True),
            or_(Coupon.end_date.is_(None), Coupon.end_date >= now),
        )
        .order_by(Coupon.end_date.asc(), Coupon.id.asc())
    )).scalars().all()
    return {"coupons": [_serialize_user_coupon(uc) for uc in rows]}


async def validate_coupon(user: UserModel, code: str, cart_total, db: AsyncSession) -> dict:
    coupon, user_coupon = await find_user_coupon(user.id, code, db)
    if coupon is None:
        raise HTTPException(status_code=404, detail="Cupom não encontrado")
    check_coupon_usable(coupon, user_coupon, cart_total)
    discount = compute_discount(coupon, cart_total)
    return {
        "coupon": _serialize_user_coupon(user_coupon),
        "discount": discount,
        "final_total": to_money(to_money(cart_total) - discount),
    }


async def create_coupon(admin: UserModel, data: CouponCreate, db: AsyncSession, request: Request = None) -> dict:
    if data.type == "PERCENTAGE" and data.value > 100:
        raise HTTPException(status_code=400, detail="Percentual de desconto não pode exceder 100")
    if data.start_date and data.end_date and data.end_date <= data.start_date:
        raise HTTPException(status_code=400, detail="Data final deve ser posterior à data inicial")
    coupon = Coupon(**data.model_dump())
    db.add(coupon)
    await db.flush()
    log_admin_action(db, admin.email, "coupon_created", entity="coupon", entity_id=coupon.id,
                     new_data=data.model_dump(), request=request)
    await safe_commit(db, client_error_message="Já existe um cupom com este código")
    return {"coupon": CouponSchema.model_validate(coupon).model_dump()}


async def assign_coupon(admin: UserModel, coupon_id: int, user_ids: List[int], db: AsyncSession, request: Request = None) -> dict:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise HTTPException(status_code=404, detail="Cupom não encontrado")

    requested = set(user_ids)
    existing_users = set((await db.execute(select(UserModel.id).where(UserModel.id.in_(requested)))).scalars().all())
    already = set((await db.execute(
        select(UserCoupon.user_id).where(UserCoupon.coupon_id == coupon_id, UserCoupon.user_id.in_(requested))
    )).scalars().all())

    assigned = sorted(existing_users - already)
    for user_id in assigned:
        db.add(UserCoupon(user_id=user_id, coupon_id=coupon_id, usage_count=0))

    log_admin_action(db, admin.email, "coupon_assigned", entity="coupon", entity_id=coupon_id,
                     new_data={"user_ids": assigned}, request=request)
    await safe_commit(db)
    return {
        "assigned": assigned,
        "already_assigned": sorted(already),
        "not_found": sorted(requested - existing_users),
    }
