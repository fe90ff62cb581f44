from schemas.user_schema import (
    RegisterRequest, UserUpdate, ChangePasswordRequest, User, AddressIn, Address,
    BankDataIn, BankData, PreferencesIn, Preferences,
)
from db.models.user import User as UserModel, Address as AddressModel, BankData as BankDataModel, UserPreferences
from db.models.password_reset_otp import PasswordResetOTP
from db.models.subscription import Subscription
from db.models.commission import Commission
from db.models.order import Order
from db.models.coupon import Coupon, UserCoupon
from core.security import get_password_hash, verify_password, create_token_pair, create_access_token, decode_token, REFRESH_TOKEN_TYPE
from core.config import settings
from fastapi import HTTPException, Request
from datetime import timedelta, datetime
from sqlalchemy import select, desc, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from jose import JWTError
from utils.timing import timeit
from utils.helpers import generate_referral_code, generate_verification_token, generate_otp_code, to_money
from utils.email import send_welcome_email, send_otp_email, send_verification_email
from utils.db import safe_commit
from services.audit_service import log_event, log_login_failed, AuditEventType
import logging

logger = logging.getLogger(__name__)

MAX_REFERRAL_CODE_ATTEMPTS = 10


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def serialize_user(user: UserModel) -> dict:
    return User.model_validate(user).model_dump()


async def get_user_by_email(email: str, db: AsyncSession):
    result = await db.execute(select(UserModel).where(UserModel.email == normalize_email(email)))
    return result.scalars().first()


async def generate_unique_referral_code(db: AsyncSession) -> str:
    """Generate a referral code not yet used by any user"""
    for _ in range(MAX_REFERRAL_CODE_ATTEMPTS):
        code = generate_referral_code()
        existing = await db.execute(select(UserModel.id).where(UserModel.referral_code == code))
        if existing.first() is None:
            return code
    logger.error("Exhausted attempts generating a unique referral code")
    raise HTTPException(status_code=500, detail="Erro interno do servidor")


async def resolve_referrer(referral_code: str, db: AsyncSession) -> UserModel:
    result = await db.execute(select(UserModel).where(UserModel.referral_code == referral_code.strip().upper()))
    referrer = result.scalars().first()
    if not referrer:
        raise HTTPException(status_code=400, detail="Código de indicação inválido")
    return referrer


@timeit("register_user")
async def register_user(data: RegisterRequest, db: AsyncSession, request: Request = None) -> dict:
    """Create an account, resolve its referrer and return the user with a token pair"""
    email = normalize_email(data.email)
    if await get_user_by_email(email, db):
        raise HTTPException(status_code=409, detail="Este email já está cadastrado")
    existing_cpf = await db.execute(select(UserModel.id).where(UserModel.cpf == data.cpf))
    if existing_cpf.first() is not None:
        raise HTTPException(status_code=409, detail="Este CPF já está cadastrado")

    referred_by_id = None
    if data.referral_code:
        referrer = await resolve_referrer(data.referral_code, db)
        referred_by_id = referrer.id

    verification_token = generate_verification_token()
    user = UserModel(
        email=email,
        cpf=data.cpf,
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        phone=data.phone,
        birth_date=data.birth_date,
        hashed_password=get_password_hash(data.password),
        referral_code=await generate_unique_referral_code(db),
        referred_by_id=referred_by_id,
        is_active=True,
        email_verified=False,
        email_verification_token=verification_token,
        email_verification_token_expires=datetime.utcnow() + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
    )
    db.add(user)
    await db.flush()
    db.add(UserPreferences(user_id=user.id, preferred_categories=[]))
    log_event(db, AuditEventType.USER_REGISTERED, user_id=user.id, entity="user", entity_id=user.id,
              metadata={"referred_by_id": referred_by_id}, request=request)
    await safe_commit(db, client_error_message="Este email ou CPF já está cadastrado")
    logger.info(f"User {user.id} registered (referred_by={referred_by_id})")

    try:
        send_welcome_email(user.email, user.first_name, verification_token)
    except Exception as e:
        logger.error(f"Welcome email failed for user {user.id}: {e}")

    return {"user": serialize_user(user), "tokens": create_token_pair(user)}


@timeit("login_user")
async def login_user(email: str, password: str, db: AsyncSession, request: Request = None) -> dict:
    user = await get_user_by_email(email, db)
    if not user or not verify_password(password, user.hashed_password):
        log_login_failed(db, email, "invalid_credentials", request=request)
        await safe_commit(db)
        raise HTTPException(status_code=401, detail="Email ou senha incorretos")
    if not user.is_active:
        log_login_failed(db, email, "account_disabled", request=request)
        await safe_commit(db)
        raise HTTPException(status_code=401, detail="Conta desativada. Entre em contato com o suporte.")

    log_event(db, AuditEventType.LOGIN_SUCCESS, user_id=user.id, request=request)
    await safe_commit(db)
    return {"user": serialize_user(user), "tokens": create_token_pair(user)}


async def refresh_access_token(refresh_token: str, db: AsyncSession) -> dict:
    """Exchange a refresh token for a new access token (stateless, no revocation list)"""
    try:
        payload = decode_token(refresh_token, expected_type=REFRESH_TOKEN_TYPE)
    except JWTError:
        raise HTTPException(status_code=401, detail="Token inválido.")
    user = await db.get(UserModel, int(payload["sub"]))
    if not user:
        raise HTTPException(status_code=401, detail="Usuário não encontrado")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Conta desativada")
    return {
        "access_token": create_access_token({"sub": str(user.id), "email": user.email}),
        "token_type": "bearer",
    }


async def verify_email(token: str, db: AsyncSession) -> dict:
    result = await db.execute(select(UserModel).where(UserModel.email_verification_token == token))
    user = result.scalars().first()
    if not user:
        raise HTTPException(status_code=400, detail="Token de verificação inválido ou expirado")
    if user.email_verified:
        return {"message": "Email já verificado"}
    if user.email_verification_token_expires and user.email_verification_token_expires < datetime.utcnow():
        raise HTTPException(status_code=400, detail="Token de verificação inválido ou expirado")

    user.email_verified = True
    user.email_verification_token = None
    user.email_verification_token_expires = None
    log_event(db, AuditEventType.EMAIL_VERIFIED, user_id=user.id)
    await safe_commit(db)
    return {"message": "Email verificado com sucesso!"}


async def resend_verification_email(email: str, db: AsyncSession) -> dict:
    user = await get_user_by_email(email, db)
    if not user:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")
    if user.email_verified:
        raise HTTPException(status_code=400, detail="Email já verificado")

    user.email_verification_token = generate_verification_token()
    user.email_verification_token_expires = datetime.utcnow() + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)
    await safe_commit(db)
    send_verification_email(user.email, user.email_verification_token)
    return {"message": "Email de verificação reenviado com sucesso!"}


@timeit("request_password_reset")
async def request_password_reset(email: str, db: AsyncSession, request: Request = None) -> dict:
    """Issue an OTP when the account exists; the answer never reveals whether it does"""
    user = await get_user_by_email(email, db)
    if user:
        otp_code = generate_otp_code()
        db.add(PasswordResetOTP(
            email=user.email,
            otp_code=otp_code,
            expires_at=datetime.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_OTP_EXPIRE_MINUTES),
        ))
        log_event(db, AuditEventType.PASSWORD_RESET_REQUESTED, user_id=user.id, request=request)
        await safe_commit(db)
        if not send_otp_email(user.email, otp_code):
            logger.warning(f"Password reset OTP for user {user.id} was not delivered")
    return {"message": "Se o email estiver cadastrado, você receberá instruções para redefinir sua senha."}


async def reset_password_with_otp(email: str, otp_code: str, new_password: str, db: AsyncSession) -> dict:
    """Verify the latest OTP for the email and set a new password"""
    email = normalize_email(email)
    latest = await db.execute(
        select(PasswordResetOTP)
        .where(PasswordResetOTP.email == email)
        .order_by(desc(PasswordResetOTP.created_at), desc(PasswordResetOTP.id))
        .limit(1)
    )
    otp_row = latest.scalars().first()
    if not otp_row or otp_row.otp_code != otp_code or otp_row.used_at is not None:
        raise HTTPException(status_code=400, detail="Código inválido ou expirado")
    if otp_row.expires_at and otp_row.expires_at < datetime.utcnow():
        raise HTTPException(status_code=400, detail="Código inválido ou expirado")

    user = await get_user_by_email(email, db)
    if not user:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")
    user.hashed_password = get_password_hash(new_password)
    otp_row.used_at = datetime.utcnow()
    log_event(db, AuditEventType.PASSWORD_RESET_COMPLETED, user_id=user.id)
    await safe_commit(db)
    return {"message": "Senha redefinida com sucesso!"}


async def update_user_profile(user: UserModel, user_update: UserUpdate, db: AsyncSession, request: Request = None) -> dict:
    changes = user_update.model_dump(exclude_unset=True)
    old_data = {field: getattr(user, field) for field in changes}
    for field, value in changes.items():
        setattr(user, field, value)
    log_event(db, AuditEventType.USER_UPDATED, user_id=user.id, entity="user", entity_id=user.id,
              old_data=old_data, new_data=changes, request=request)
    await safe_commit(db)
    return serialize_user(user)


async def change_password(user: UserModel, password_request: ChangePasswordRequest, db: AsyncSession, request: Request = None) -> dict:
    if not verify_password(password_request.current_password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Senha atual incorreta")
    user.hashed_password = get_password_hash(password_request.new_password)
    log_event(db, AuditEventType.PASSWORD_CHANGED, user_id=user.id, request=request)
    await safe_commit(db)
    return {"message": "Senha alterada com sucesso"}


async def get_address(user: UserModel, db: AsyncSession):
    result = await db.execute(select(AddressModel).where(AddressModel.user_id == user.id))
    address = result.scalars().first()
    return Address.model_validate(address).model_dump() if address else None


async def upsert_address(user: UserModel, data: AddressIn, db: AsyncSession) -> dict:
    result = await db.execute(select(AddressModel).where(AddressModel.user_id == user.id))
    address = result.scalars().first()
    if address is None:
        address = AddressModel(user_id=user.id, **data.model_dump())
        db.add(address)
    else:
        for field, value in data.model_dump().items():
            setattr(address, field, value)
    await safe_commit(db)
    return Address.model_validate(address).model_dump()


async def get_bank_data(user: UserModel, db: AsyncSession, request: Request = None):
    result = await db.execute(select(BankDataModel).where(BankDataModel.user_id == user.id))
    bank_data = result.scalars().first()
    if bank_data is None:
        return None
    log_event(db, AuditEventType.BANK_DATA_VIEWED, user_id=user.id, entity="bank_data", entity_id=bank_data.id, request=request)
    await safe_commit(db)
    return BankData.model_validate(bank_data).model_dump()


async def upsert_bank_data(user: UserModel, data: BankDataIn, db: AsyncSession, request: Request = None) -> dict:
    result = await db.execute(select(BankDataModel).where(BankDataModel.user_id == user.id))
    bank_data = result.scalars().first()
    if bank_data is None:
        bank_data = BankDataModel(user_id=user.id, **data.model_dump())
        db.add(bank_data)
        await db.flush()
        log_event(db, AuditEventType.BANK_DATA_ADDED, user_id=user.id, entity="bank_data", entity_id=bank_data.id,
                  new_data=data.model_dump(), request=request)
    else:
        old_data = bank_data.snapshot()
        for field, value in data.model_dump().items():
            setattr(bank_data, field, value)
        log_event(db, AuditEventType.BANK_DATA_UPDATED, user_id=user.id, entity="bank_data", entity_id=bank_data.id,
                  old_data=old_data, new_data=data.model_dump(), request=request)
    await safe_commit(db)
    return BankData.model_validate(bank_data).model_dump()


async def _get_or_create_preferences(user: UserModel, db: AsyncSession) -> UserPreferences:
    result = await db.execute(select(UserPreferences).where(UserPreferences.user_id == user.id))
    prefs = result.scalars().first()
    if prefs is None:
        prefs = UserPreferences(user_id=user.id, email_notifications=True, push_notifications=False,
                                marketing_emails=False, preferred_categories=[])
        db.add(prefs)
        await db.flush()
    return prefs


async def get_preferences(user: UserModel, db: AsyncSession) -> dict:
    prefs = await _get_or_create_preferences(user, db)
    await safe_commit(db)
    return Preferences.model_validate(prefs).model_dump()


async def update_preferences(user: UserModel, data: PreferencesIn, db: AsyncSession) -> dict:
    prefs = await _get_or_create_preferences(user, db)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(prefs, field, value)
    await safe_commit(db)
    return Preferences.model_validate(prefs).model_dump()


async def get_dashboard(user: UserModel, db: AsyncSession) -> dict:
    """Home screen data: subscription, earnings, referrals, recent orders and coupons"""
    subscription = (await db.execute(select(Subscription).where(Subscription.user_id == user.id))).scalars().first()
    total_commissions = (await db.execute(
        select(func.coalesce(func.sum(Commission.amount), 0))
        .where(Commission.earner_id == user.id, Commission.type == "SUBSCRIPTION", Commission.status != "CANCELED")
    )).scalar_one()
    total_referrals = (await db.execute(
        select(func.count(UserModel.id)).where(UserModel.referred_by_id == user.id)
    )).scalar_one()
    total_orders = (await db.execute(select(func.count(Order.id)).where(Order.user_id == user.id))).scalar_one()
    recent_orders = (await db.execute(
        select(Order).where(Order.user_id == user.id).order_by(desc(Order.created_at), desc(Order.id)).limit(5)
    )).scalars().all()
    coupons = (await db.execute(
        select(Coupon)
        .join(UserCoupon, UserCoupon.coupon_id == Coupon.id)
        .where(
            UserCoupon.user_id == user.id,
            UserCoupon.usage_count < Coupon.usage_limit_per_user,
            Coupon.is_active.is_(True),
            or_(Coupon.end_date.is_(None), Coupon.end_date >= datetime.utcnow()),
        )
    )).scalars().all()

    return {
        "user": {
            "first_name": user.first_name,
            "referral_code": user.referral_code,
            "subscription": {
                "status": subscription.status,
                "next_billing_date": subscription.next_billing_date,
                "plan": {"name": subscription.plan.name, "price": subscription.plan.price},
            } if subscription else None,
        },
        "stats": {
            "total_commissions": to_money(total_commissions),
            "total_referrals": int(total_referrals or 0),
            "total_orders": int(total_orders or 0),
        },
        "recent_orders": [
            {"id": o.id, "order_number": o.order_number, "total": o.total, "status": o.status, "created_at": o.created_at}
            for o in recent_orders
        ],
        "available_coupons": [
            {"code": c.code, "name": c.name, "type": c.type, "value": c.value, "end_date": c.end_date}
            for c in coupons
        ],
    }
