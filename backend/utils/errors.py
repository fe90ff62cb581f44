from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError, InterfaceError
from jose import ExpiredSignatureError, JWTError
from slowapi.errors import RateLimitExceeded
from core.config import settings
from utils.responses import error_body
import logging

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Erro interno do servidor"
RATE_LIMIT_MESSAGE = "Muitas tentativas. Tente novamente mais tarde."


def _error_response(message: str, status_code: int, details=None, headers=None) -> JSONResponse:
    if not settings.is_development:
        details = None
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(error_body(message, status_code, details)),
        headers=headers,
    )


def _log(request: Request, exc: Exception, status_code: int) -> None:
    msg = f"{request.method} {request.url.path} -> {status_code}: {exc}"
    if status_code >= 500:
        logger.error(msg, exc_info=exc)
    else:
        logger.warning(msg)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    _log(request, exc, exc.status_code)
    message = exc.detail if isinstance(exc.detail, str) else INTERNAL_ERROR_MESSAGE
    details = None if isinstance(exc.detail, str) else exc.detail
    return _error_response(message, exc.status_code, details, getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _log(request, exc, 400)
    return _error_response("Dados de entrada inválidos.", 400, exc.errors())


async def integrity_error_handler(request: Request, exc: IntegrityError):
    _log(request, exc, 409)
    return _error_response("Dados duplicados. Este registro já existe.", 409, str(exc.orig))


async def no_result_handler(request: Request, exc: NoResultFound):
    _log(request, exc, 404)
    return _error_response("Registro não encontrado.", 404)


async def database_unavailable_handler(request: Request, exc: Exception):
    _log(request, exc, 503)
    return _error_response("Erro de conexão com o banco de dados.", 503)


async def expired_token_handler(request: Request, exc: ExpiredSignatureError):
    _log(request, exc, 401)
    return _error_response("Token expirado.", 401)


async def invalid_token_handler(request: Request, exc: JWTError):
    _log(request, exc, 401)
    return _error_response("Token inválido.", 401)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    _log(request, exc, 429)
    return _error_response(RATE_LIMIT_MESSAGE, 429, str(exc.detail))


async def unhandled_exception_handler(request: Request, exc: Exception):
    _log(request, exc, 500)
    return _error_response(INTERNAL_ERROR_MESSAGE, 500, str(exc))


def register_exception_handlers(app: FastAPI) -> None:
    """Translate every error into the {success: false, error: {...}} envelope."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(NoResultFound, no_result_handler)
    app.add_exception_handler(OperationalError, database_unavailable_handler)
    app.add_exception_handler(InterfaceError, database_unavailable_handler)
    # ExpiredSignatureError subclasses JWTError; the more specific handler wins
    app.add_exception_handler(ExpiredSignatureError, expired_token_handler)
    app.add_exception_handler(JWTError, invalid_token_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
