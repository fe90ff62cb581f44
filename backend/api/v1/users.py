from fastapi import APIRouter, Depends, Request
from schemas.user_schema import UserUpdate, ChangePasswordRequest, AddressIn, BankDataIn, PreferencesIn
from api.dependencies import get_current_user
from db.models.user import User as UserModel
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from services.user_service import (
    serialize_user, update_user_profile, change_password, get_address, upsert_address,
    get_bank_data, upsert_bank_data, get_preferences, update_preferences, get_dashboard,
)
from services.referral_service import count_referrals
from utils.responses import success_response
from utils.timing import timeit

router = APIRouter(prefix="/api/user")

@router.get("/profile")
async def get_profile(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    total_referrals, active_referrals = await count_referrals(current_user.id, db)
    data = serialize_user(current_user)
    data["address"] = await get_address(current_user, db)
    data["referrals"] = {"total": total_referrals, "active": active_referrals}
    return success_response({"user": data})

@router.put("/profile")
async def update_profile(data: UserUpdate, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    user = await update_user_profile(current_user, data, db, request)
    return success_response({"user": user}, "Perfil atualizado com sucesso")

@router.put("/password")
@timeit("change_password")
async def update_password(data: ChangePasswordRequest, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await change_password(current_user, data, db, request)
    return success_response(message=result["message"])

@router.get("/address")
async def read_address(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response({"address": await get_address(current_user, db)})

@router.put("/address")
async def update_address(data: AddressIn, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    address = await upsert_address(current_user, data, db)
    return success_response({"address": address}, "Endereço atualizado com sucesso")

@router.get("/bank-data")
async def read_bank_data(request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response({"bank_data": await get_bank_data(current_user, db, request)})

@router.put("/bank-data")
async def update_bank_data(data: BankDataIn, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    bank_data = await upsert_bank_data(current_user, data, db, request)
    return success_response({"bank_data": bank_data}, "Dados bancários atualizados com sucesso")

@router.get("/preferences")
async def read_preferences(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response({"preferences": await get_preferences(current_user, db)})

@router.put("/preferences")
async def write_preferences(data: PreferencesIn, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    preferences = await update_preferences(current_user, data, db)
    return success_response({"preferences": preferences}, "Preferências atualizadas com sucesso")

@router.get("/dashboard")
@timeit("user_dashboard")
async def dashboard(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await get_dashboard(current_user, db))
