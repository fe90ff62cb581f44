from db.models.user import User as UserModel
from db.models.order import Product, Order, OrderItem
from schemas.order_schema import OrderCreate, Order as OrderSchema
from fastapi import HTTPException, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from decimal import Decimal
from typing import Optional
from services.coupon_service import find_user_coupon, check_coupon_usable, compute_discount
from services.product_service import CACHE_PREFIX
from services.audit_service import log_event, AuditEventType
from utils.cache import response_cache
from utils.helpers import generate_order_number, to_money, paginate
from utils.timing import timeit
from utils.db import safe_commit
import logging

logger = logging.getLogger(__name__)


def serialize_order(order: Order) -> dict:
    return OrderSchema.model_validate(order).model_dump()


@timeit("create_order")
async def create_order(user: UserModel, data: OrderCreate, db: AsyncSession, request: Request = None) -> dict:
    """Place an order in a single transaction.

    Products and the user's coupon row are locked so stock and coupon usage
    are checked and updated atomically.
    """
    quantities: dict[int, int] = {}
    for item in data.items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

    products = {
        p.id: p for p in (await db.execute(
            select(Product).where(Product.id.in_(quantities.keys())).with_for_update()
        )).scalars().all()
    }

    subtotal = Decimal("0.00")
    lines = []
    for product_id, quantity in quantities.items():
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise HTTPException(status_code=400, detail=f"Produto {product_id} não encontrado ou inativo")
        if product.track_stock and product.stock < quantity:
            raise HTTPException(status_code=400, detail=f"Estoque insuficiente para {product.name}")
        unit_price = to_money(product.price)
        line_total = to_money(unit_price * quantity)
        subtotal += line_total
        lines.append((product, quantity, unit_price, line_total))

    discount = Decimal("0.00")
    user_coupon = None
    if data.coupon_code:
        coupon, user_coupon = await find_user_coupon(user.id, data.coupon_code, db, for_update=True)
        if coupon is None:
            raise HTTPException(status_code=404, detail="Cupom não encontrado")
        check_coupon_usable(coupon, user_coupon, subtotal)
        discount = compute_discount(coupon, subtotal)

    shipping_cost = to_money(data.shipping_cost)
    order = Order(
        order_number=generate_order_number(),
        user_id=user.id,
        subtotal=to_money(subtotal),
        shipping_cost=shipping_cost,
        discount=discount,
        total=to_money(subtotal - discount + shipping_cost),
        status="PENDING",
        payment_status="PENDING",
        payment_method=data.payment_method,
        shipping_address=data.shipping_address,
        coupon_code=data.coupon_code if user_coupon else None,
        notes=data.notes,
        items=[
            OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price=unit_price,
                total_price=line_total,
            )
            for product, quantity, unit_price, line_total in lines
        ],
    )
    db.add(order)

    for product, quantity, _, _ in lines:
        if product.track_stock:
            product.stock -= quantity

    if user_coupon is not None:
        user_coupon.usage_count += 1
        user_coupon.last_used_at = datetime.utcnow()

    await db.flush()
    log_event(db, AuditEventType.ORDER_CREATED, user_id=user.id, entity="order", entity_id=order.id,
              new_data={"order_number": order.order_number, "total": order.total, "coupon_code": order.coupon_code},
              request=request)
    await safe_commit(db)
    response_cache.invalidate(CACHE_PREFIX)
    logger.info(f"Order {order.order_number} created for user {user.id} total={order.total}")
    return {"order": serialize_order(order)}


async def list_orders(user: UserModel, db: AsyncSession, page: int = 1, limit: int = 10, status: Optional[str] = None) -> dict:
    filters = [Order.user_id == user.id]
    if status:
        filters.append(Order.status == status)
    return await _paginated_orders(db, filters, page, limit)


async def get_order(user: UserModel, order_id: int, db: AsyncSession) -> dict:
    order = (await db.execute(
        select(Order).where(Order.id == order_id, Order.user_id == user.id)
    )).scalars().first()
    if not order:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    return {"order": serialize_order(order)}


async def list_orders_admin(db: AsyncSession, page: int = 1, limit: int = 20, status: Optional[str] = None, user_id: Optional[int] = None) -> dict:
    filters = []
    if status:
        filters.append(Order.status == status)
    if user_id:
        filters.append(Order.user_id == user_id)
    return await _paginated_orders(db, filters, page, limit)


async def _paginated_orders(db: AsyncSession, filters: list, page: int, limit: int) -> dict:
    total = (await db.execute(select(func.count(Order.id)).where(*filters))).scalar_one()
    orders = (await db.execute(
        select(Order).where(*filters).order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit).limit(limit)
    )).scalars().all()
    return {"orders": [serialize_order(o) for o in orders], "pagination": paginate(page, limit, total)}
