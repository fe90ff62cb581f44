from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from core.security import bearer_scheme, decode_token
from core.config import settings
from db.session import get_db_session
from db.models.user import User as UserModel
from sqlalchemy.ext.asyncio import AsyncSession
import logging

logger = logging.getLogger(__name__)

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> UserModel:
    """Resolve the bearer token to an active, email-verified user.

    jose errors propagate to the app-level translator (401 Token inválido/expirado).
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token de acesso requerido",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Token inválido.")

    user = await db.get(UserModel, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Usuário não encontrado")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Conta desativada")
    if not user.email_verified:
        raise HTTPException(status_code=401, detail="Email não verificado")
    return user

async def admin_required(current_user: UserModel = Depends(get_current_user)) -> UserModel:
    if not settings.is_admin_email(current_user.email):
        logger.warning(f"Admin access denied for user {current_user.id}")
        raise HTTPException(status_code=403, detail="Acesso negado. Privilégios de administrador requeridos.")
    return current_user
