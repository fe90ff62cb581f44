from fastapi import APIRouter, Depends
from schemas.order_schema import CouponValidate
from api.dependencies import get_current_user
from db.models.user import User as UserModel
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from services.coupon_service import list_user_coupons, validate_coupon
from utils.responses import success_response

router = APIRouter(prefix="/api/coupons")

@router.get("")
async def coupons(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await list_user_coupons(current_user, db))

@router.post("/validate")
async def validate(data: CouponValidate, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await validate_coupon(current_user, data.code, data.cart_total, db), "Cupom válido")
