from fastapi import APIRouter, Body, Depends, Request
from typing import Optional
from schemas.subscription_schema import SubscribeRequest
from api.dependencies import get_current_user
from db.models.user import User as UserModel
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from services.subscription_service import list_plans, get_current_subscription, subscribe, cancel_subscription
from utils.responses import success_response

router = APIRouter(prefix="/api/subscriptions")

@router.get("/plans")
async def plans(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await list_plans(db))

@router.get("/current")
async def current(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await get_current_subscription(current_user, db))

@router.post("/subscribe", status_code=201)
async def create_subscription(data: SubscribeRequest, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await subscribe(current_user, data.plan_id, db, request)
    return success_response(result, "Assinatura criada com sucesso", status_code=201)

@router.post("/cancel")
async def cancel(
    request: Request,
    reason: Optional[str] = Body(None, embed=True),
    current_user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    result = await cancel_subscription(current_user, db, reason, request)
    return success_response(result, "Assinatura cancelada com sucesso")
