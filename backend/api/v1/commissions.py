from fastapi import APIRouter, Depends, Query, Request
from typing import Optional
from schemas.commission_schema import WithdrawalCreate
from api.dependencies import get_current_user
from db.models.user import User as UserModel
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from services.commission_service import (
    get_summary, list_commissions, request_withdrawal, list_withdrawals, cancel_withdrawal,
)
from services.referral_service import list_referrals, referral_link
from utils.responses import success_response
from utils.timing import timeit

router = APIRouter(prefix="/api/commissions")

@router.get("/summary")
async def summary(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await get_summary(current_user, db))

@router.get("")
async def commissions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    type: Optional[str] = None,
    current_user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_commissions(current_user, db, page, limit, status, type))

@router.get("/referrals")
async def referrals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None, pattern="^(active|inactive)$"),
    current_user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_referrals(current_user, db, page, limit, status))

@router.post("/withdraw", status_code=201)
@timeit("withdraw")
async def withdraw(data: WithdrawalCreate, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await request_withdrawal(current_user, data.amount, db, request)
    return success_response(result, "Solicitação de saque criada com sucesso", status_code=201)

@router.get("/withdrawals")
async def withdrawals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_withdrawals(current_user, db, page, limit))

@router.post("/withdrawals/{withdrawal_id}/cancel")
async def cancel(withdrawal_id: int, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await cancel_withdrawal(current_user, withdrawal_id, db, request)
    return success_response(result, "Solicitação de saque cancelada com sucesso")

@router.get("/referral-link")
async def get_referral_link(current_user: UserModel = Depends(get_current_user)):
    return success_response(referral_link(current_user))
