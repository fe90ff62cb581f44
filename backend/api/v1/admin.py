from fastapi import APIRouter, Depends, Query, Request
from datetime import datetime, timedelta
from typing import Optional
from schemas.admin_schema import CommissionSettingsUpdate, UserStatusUpdate
from schemas.commission_schema import WithdrawalProcess, CommissionTransition
from schemas.subscription_schema import PlanCreate, PaymentRecord
from schemas.order_schema import ProductCreate, CouponCreate, CouponAssign
from api.dependencies import admin_required
from db.models.user import User as UserModel
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from services.admin_service import (
    get_dashboard_stats, list_users, get_user_detail, set_user_active,
    get_commission_settings, update_commission_settings,
)
from services.withdrawal_service import list_withdrawals_admin, process_withdrawal
from services.commission_service import list_all_commissions, transition_commission
from services.subscription_service import record_payment_success, list_plans, create_plan
from services.order_service import list_orders_admin
from services.product_service import create_product
from services.coupon_service import create_coupon, assign_coupon
from services.audit_service import get_logs, generate_security_report
from utils.responses import success_response
from utils.timing import timeit

router = APIRouter(prefix="/api/admin")

@router.get("/dashboard")
@timeit("admin_dashboard")
async def dashboard(admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    return success_response(await get_dashboard_stats(db))

@router.get("/users")
async def users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(active|inactive)$"),
    admin: UserModel = Depends(admin_required),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_users(db, page, limit, search, status))

@router.get("/users/{user_id}")
async def user_detail(user_id: int, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    return success_response(await get_user_detail(user_id, db, admin, request))

@router.patch("/users/{user_id}/status")
async def user_status(user_id: int, data: UserStatusUpdate, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    result = await set_user_active(admin, user_id, data.is_active, db, request)
    return success_response(result, "Status do usuário atualizado com sucesso")

@router.get("/withdrawals")
async def withdrawals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    admin: UserModel = Depends(admin_required),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_withdrawals_admin(db, page, limit, status))

@router.patch("/withdrawals/{withdrawal_id}")
@timeit("admin_process_withdrawal")
async def update_withdrawal(withdrawal_id: int, data: WithdrawalProcess, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    result = await process_withdrawal(admin, withdrawal_id, data.status, db, data.admin_notes, request)
    return success_response(result, "Solicitação de saque atualizada com sucesso")

@router.get("/orders")
async def orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    admin: UserModel = Depends(admin_required),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_orders_admin(db, page, limit, status, user_id))

@router.get("/commissions")
async def commissions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    earner_id: Optional[int] = None,
    admin: UserModel = Depends(admin_required),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_all_commissions(db, page, limit, status, earner_id))

@router.patch("/commissions/{commission_id}")
async def update_commission(commission_id: int, data: CommissionTransition, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    result = await transition_commission(admin, commission_id, data.status, db, request)
    return success_response(result, "Comissão atualizada com sucesso")

@router.post("/subscriptions/{subscription_id}/payments")
@timeit("admin_record_payment")
async def record_payment(subscription_id: int, data: PaymentRecord, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    result = await record_payment_success(admin, subscription_id, data, db, request)
    if result["duplicate"]:
        return success_response(result, "Pagamento já registrado")
    return success_response(result, "Pagamento registrado com sucesso", status_code=201)

@router.get("/plans")
async def plans(admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    return success_response(await list_plans(db, include_inactive=True))

@router.post("/plans", status_code=201)
async def new_plan(data: PlanCreate, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    return success_response(await create_plan(admin, data, db, request), "Plano criado com sucesso", status_code=201)

@router.post("/products", status_code=201)
async def new_product(data: ProductCreate, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    return success_response(await create_product(admin, data, db, request), "Produto criado com sucesso", status_code=201)

@router.post("/coupons", status_code=201)
async def new_coupon(data: CouponCreate, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    return success_response(await create_coupon(admin, data, db, request), "Cupom criado com sucesso", status_code=201)

@router.post("/coupons/{coupon_id}/assign")
async def coupon_assign(coupon_id: int, data: CouponAssign, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    result = await assign_coupon(admin, coupon_id, data.user_ids, db, request)
    return success_response(result, "Cupom atribuído com sucesso")

@router.get("/audit-logs")
async def audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: Optional[int] = None,
    event_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    admin: UserModel = Depends(admin_required),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await get_logs(db, user_id, event_type, start_date, end_date, page, limit))

@router.get("/security-report")
async def security_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    admin: UserModel = Depends(admin_required),
    db: AsyncSession = Depends(get_db_session),
):
    end_date = end_date or datetime.utcnow()
    start_date = start_date or end_date - timedelta(days=7)
    return success_response({"report": await generate_security_report(db, start_date, end_date)})

@router.get("/settings/commission")
async def commission_settings(admin: UserModel = Depends(admin_required)):
    return success_response({"settings": get_commission_settings()})

@router.put("/settings/commission")
async def put_commission_settings(data: CommissionSettingsUpdate, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    result = await update_commission_settings(admin, data, db, request)
    return success_response(result, "Configurações de comissão atualizadas com sucesso")
