from fastapi import APIRouter, Depends, Request
from schemas.user_schema import (
    RegisterRequest, LoginRequest, RefreshRequest, VerifyEmailRequest, EmailRequest, ResetPasswordRequest,
)
from services.user_service import (
    register_user, login_user, refresh_access_token, verify_email, resend_verification_email,
    request_password_reset, reset_password_with_otp, serialize_user,
)
from services.audit_service import log_event, AuditEventType
from api.dependencies import get_current_user
from db.models.user import User as UserModel
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from utils.rate_limit import auth_limit
from utils.responses import success_response
from utils.timing import timeit
from utils.db import safe_commit

router = APIRouter(prefix="/api/auth")

@router.post("/register", status_code=201)
@auth_limit
@timeit("register")
async def register(request: Request, data: RegisterRequest, db: AsyncSession = Depends(get_db_session)):
    result = await register_user(data, db, request)
    return success_response(result, "Usuário cadastrado com sucesso! Verifique seu email.", status_code=201)

@router.post("/login")
@auth_limit
@timeit("login")
async def login(request: Request, data: LoginRequest, db: AsyncSession = Depends(get_db_session)):
    return success_response(await login_user(data.email, data.password, db, request), "Login realizado com sucesso")

@router.post("/refresh")
@timeit("refresh")
async def refresh(data: RefreshRequest, db: AsyncSession = Depends(get_db_session)):
    return success_response(await refresh_access_token(data.refresh_token, db))

@router.post("/logout")
async def logout(request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    # Tokens are stateless; the client discards them
    log_event(db, AuditEventType.LOGOUT, user_id=current_user.id, request=request)
    await safe_commit(db)
    return success_response(message="Logout realizado com sucesso")

@router.get("/me")
async def me(current_user: UserModel = Depends(get_current_user)):
    return success_response({"user": serialize_user(current_user)})

@router.post("/verify-email")
@timeit("verify_email")
async def verify_email_endpoint(data: VerifyEmailRequest, db: AsyncSession = Depends(get_db_session)):
    result = await verify_email(data.token, db)
    return success_response(message=result["message"])

@router.post("/resend-verification")
@auth_limit
async def resend_verification_endpoint(request: Request, data: EmailRequest, db: AsyncSession = Depends(get_db_session)):
    result = await resend_verification_email(data.email, db)
    return success_response(message=result["message"])

@router.post("/forgot-password")
@auth_limit
@timeit("forgot_password")
async def forgot_password(request: Request, data: EmailRequest, db: AsyncSession = Depends(get_db_session)):
    result = await request_password_reset(data.email, db, request)
    return success_response(message=result["message"])

@router.post("/reset-password")
@auth_limit
async def reset_password(request: Request, data: ResetPasswordRequest, db: AsyncSession = Depends(get_db_session)):
    result = await reset_password_with_otp(data.email, data.otp, data.new_password, db)
    return success_response(message=result["message"])
