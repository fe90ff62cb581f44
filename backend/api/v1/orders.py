from fastapi import APIRouter, Depends, Query, Request
from typing import Optional
from schemas.order_schema import OrderCreate
from api.dependencies import get_current_user
from db.models.user import User as UserModel
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from services.order_service import create_order, list_orders, get_order
from utils.responses import success_response
from utils.timing import timeit

router = APIRouter(prefix="/api/orders")

@router.get("")
async def orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    current_user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_orders(current_user, db, page, limit, status))

@router.get("/{order_id}")
async def order(order_id: int, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await get_order(current_user, order_id, db))

@router.post("", status_code=201)
@timeit("place_order")
async def place_order(data: OrderCreate, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await create_order(current_user, data, db, request)
    return success_response(result, "Pedido criado com sucesso", status_code=201)
